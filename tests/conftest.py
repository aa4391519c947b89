import numpy as np
import pytest
from GA import ImageEvolutionTask


class ScriptedRandom:
    """Random source replaying prepared values, for forcing exact operator decisions."""

    def __init__(self, random_values=(), integer_values=()):
        self.random_values = list(random_values)
        self.integer_values = list(integer_values)

    def random(self, size=None):
        value = self.random_values.pop(0)
        if size is None:
            return value
        return np.broadcast_to(np.asarray(value, dtype=float), size).copy()

    def integers(self, low, high=None, size=None):
        value = self.integer_values.pop(0)
        if size is None:
            return value
        return np.asarray(value)


@pytest.fixture
def scripted_random():
    return ScriptedRandom


@pytest.fixture
def target_color():
    return np.array([128, 64, 200], dtype=np.uint8)


@pytest.fixture
def uniform_task(target_color):
    return ImageEvolutionTask(np.tile(target_color, (8, 8, 1)))


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
