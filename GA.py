from __future__ import annotations
from dataclasses import dataclass
from functools import partial
from multiprocessing.pool import ThreadPool
import numpy as np
from tqdm import tqdm
from colour.difference.delta_e import delta_E_CIE1976

RGB_CHANNELS = 3
GENE_LENGTH = 8
GENE_SHAPE = (RGB_CHANNELS, GENE_LENGTH)

FITNESS_SCALE = 50.
EXACT_MATCH_RMSE = 1.
EXACT_MATCH_BONUS = 2.

CROSSOVER_METHODS = ('uniform', 'single_point')


def decode_channel(bits) -> int:
    """Decode a channel's bits (most significant first) into an unsigned 8-bit value."""
    value = 0
    for bit in bits:
        value = (value << 1) | int(bool(bit))

    return value


def encode_channel(value: int) -> np.ndarray:
    """Encode an unsigned 8-bit value as a channel's bits (most significant first)."""
    if not 0 <= value < 1 << GENE_LENGTH:
        raise ValueError(f'Channel value must be in [0, {(1 << GENE_LENGTH) - 1}], got {value}.')

    return np.array([(value >> shift) & 1 for shift in range(GENE_LENGTH - 1, -1, -1)], dtype=bool)


class ImageEvolutionTask:
    """
    Class representing the per-pixel image evolution task.

    Parameters
    ----------
    img : np.ndarray
        Target image of shape (N, N, 3). It is copied and kept read-only, every fitness evaluation borrows it.
    """

    def __init__(self, img: np.ndarray):
        img = np.array(img, dtype=np.uint8)

        if img.ndim != 3 or img.shape[0] != img.shape[1] or img.shape[2] != RGB_CHANNELS:
            raise ValueError(f'Target image must have a (N, N, {RGB_CHANNELS}) shape, got {img.shape}.')

        img.flags.writeable = False
        self.img = img
        self.size = img.shape[0]

    def get_shape(self) -> tuple[int, ...]:
        """Get the shape of the target image."""
        return self.img.shape

    def get_target_color(self, pos: tuple[int, int]) -> np.ndarray:
        """Get the target color at a given (row, column) position."""
        return self.img[pos[0], pos[1]]

    def rmse(self, values: np.ndarray, pos: tuple[int, int]) -> np.ndarray:
        """Root-mean-square error over the color channels between decoded value(s) and the target color."""
        values = np.asarray(values, dtype=np.float64)
        target = np.broadcast_to(self.get_target_color(pos).astype(np.float64), values.shape)
        return np.asarray(delta_E_CIE1976(values, target)) / np.sqrt(RGB_CHANNELS)

    def evaluate(self, values: np.ndarray, pos: tuple[int, int]) -> np.ndarray:
        """Calculate the fitness of a single (3,) value or of a (k, 3) batch of values."""
        rmse = self.rmse(values, pos)
        fitness = np.exp(-rmse / FITNESS_SCALE)
        return np.where(rmse < EXACT_MATCH_RMSE, fitness * EXACT_MATCH_BONUS, fitness)


class Chromosome:
    """
    Class representing a candidate color for one pixel.

    Parameters:
    ----------
    task : ImageEvolutionTask
        Image evolution task instance.
    pos : tuple[int, int]
        (row, column) position of the pixel the chromosome represents.
    gene : np.ndarray, optional
        Boolean array of shape (3, 8), one row of bits per RGB channel, most significant bit first.
        By default, it's drawn at random from `rng`.
    rng : np.random.Generator, optional
        Random source used for the random initialization.
    """

    def __init__(self, task: ImageEvolutionTask, pos: tuple[int, int], gene: np.ndarray = None,
                 rng: np.random.Generator = None):
        self.task = task
        self.pos = pos
        self._evaluation = None
        self._val = None

        if gene is None:
            if rng is None:
                raise ValueError('A random source is required to create a random chromosome.')
            gene = rng.random(GENE_SHAPE) < 0.5

        gene = np.array(gene, dtype=bool)
        if gene.shape != GENE_SHAPE:
            raise ValueError(f'Gene must have a {GENE_SHAPE} shape, got {gene.shape}.')

        gene.flags.writeable = False
        self.gene = gene

    def get_val(self) -> np.ndarray:
        """Decode the gene into an RGB value."""
        if self._val is None:
            self._val = np.array([decode_channel(channel) for channel in self.gene], dtype=np.uint8)

        return self._val

    def evaluate(self) -> float:
        """Calculate the fitness of the chromosome."""
        if self._evaluation is None:
            self._evaluation = float(self.task.evaluate(self.get_val(), self.pos))

        return self._evaluation

    @staticmethod
    def evaluate_all(chromosomes: list[Chromosome]) -> list[float]:
        """Calculate the fitness of chromosomes sharing one pixel, scoring the unevaluated ones in a single batch."""
        pending = [chromosome for chromosome in chromosomes if chromosome._evaluation is None]

        if pending:
            task, pos = pending[0].task, pending[0].pos
            fitnesses = task.evaluate(np.array([chromosome.get_val() for chromosome in pending]), pos)
            for chromosome, fitness in zip(pending, fitnesses):
                chromosome._evaluation = float(fitness)

        return [chromosome.evaluate() for chromosome in chromosomes]

    def copy(self) -> Chromosome:
        """Create a new chromosome with identical gene bits."""
        clone = Chromosome(self.task, self.pos, gene=self.gene)
        clone._evaluation = self._evaluation
        return clone

    def mutate(self, mutation_rate: float, forced_mutation_rate: float, rng: np.random.Generator) -> Chromosome:
        """Create a mutated copy of the chromosome.

        Every bit is flipped with `mutation_rate` probability. Afterwards, with `forced_mutation_rate` probability,
        one random bit is flipped once more, which may undo a flip made in the first pass.
        """
        gene = self.gene ^ (rng.random(GENE_SHAPE) < mutation_rate)

        if rng.random() < forced_mutation_rate:
            channel = rng.integers(RGB_CHANNELS)
            bit = rng.integers(GENE_LENGTH)
            gene[channel, bit] = not gene[channel, bit]

        return Chromosome(self.task, self.pos, gene=gene)


class PixelPopulation:
    """
    Class representing a population of chromosomes for a single pixel.

    Parameters:
    ----------
    task : ImageEvolutionTask
        Image evolution task instance.
    pos : tuple[int, int]
        (row, column) position of the pixel.
    rng : np.random.Generator
        Random source driving every random decision made for this pixel.
    population_size : int
        Configured size of the population, kept after every generation.
    population : list[Chromosome], optional
        Initial chromosomes. By default, `population_size` random chromosomes are created.
    """

    def __init__(
            self,
            task: ImageEvolutionTask,
            pos: tuple[int, int],
            rng: np.random.Generator,
            population_size: int,
            population: list[Chromosome] = None
    ):
        self.task = task
        self.pos = pos
        self.rng = rng
        self.size = population_size

        if population is None:
            self.population = [Chromosome(task=self.task, pos=self.pos, rng=self.rng) for _ in range(self.size)]
        else:
            self.population = population

    def evaluate(self) -> list[float]:
        """Evaluate all chromosomes at once and get their fitness values in pool order."""
        return Chromosome.evaluate_all(self.population)

    def stats(self) -> tuple[float, float, float]:
        """Get the (mean, max, min) fitness of the population."""
        fitnesses = self.evaluate()
        return float(np.mean(fitnesses)), max(fitnesses), min(fitnesses)

    def get_best(self) -> Chromosome:
        """Get the fittest chromosome, the first one in pool order on ties."""
        self.evaluate()
        return max(self.population, key=lambda chromosome: chromosome.evaluate())

    def tournament_selection(self, tournament_size: int) -> Chromosome:
        """Select a parent from the chromosome at index 0 and `tournament_size - 1` random draws."""
        best = self.population[0]
        best_fitness = best.evaluate()

        for _ in range(tournament_size - 1):
            candidate = self.population[self.rng.integers(len(self.population))]
            fitness = candidate.evaluate()
            if fitness > best_fitness:
                best = candidate
                best_fitness = fitness

        return best

    def crossover(
            self,
            crossover_rate: float,
            parent_1: Chromosome,
            parent_2: Chromosome,
            method: str = 'uniform'
    ) -> tuple[Chromosome, Chromosome]:
        """Create two children by exchanging bits between two parent chromosomes."""
        if self.rng.random() >= crossover_rate:
            return parent_1.copy(), parent_2.copy()

        if method == 'uniform':
            mask = self.rng.random(GENE_SHAPE) < 0.5

        elif method == 'single_point':
            crossover_points = self.rng.integers(1, GENE_LENGTH, size=RGB_CHANNELS)
            mask = np.arange(GENE_LENGTH) >= crossover_points.reshape((-1, 1))

        else:
            raise ValueError(f'Unknown crossover method: {method}.')

        child_1 = Chromosome(self.task, self.pos, gene=np.where(mask, parent_2.gene, parent_1.gene))
        child_2 = Chromosome(self.task, self.pos, gene=np.where(mask, parent_1.gene, parent_2.gene))
        return child_1, child_2

    def breed_offspring(
            self,
            tournament_size: int,
            elite_size: int,
            crossover_rate: float,
            mutation_rate: float,
            forced_mutation_rate: float,
            crossover_method: str = 'uniform'
    ) -> PixelPopulation:
        """Create a next population from the current one."""
        self.evaluate()
        self.population.sort(reverse=True, key=lambda chromosome: chromosome.evaluate())

        new_population = [chromosome.copy() for chromosome in self.population[:min(elite_size, len(self.population))]]

        while len(new_population) < self.size:
            parent_1 = self.tournament_selection(tournament_size)
            parent_2 = self.tournament_selection(tournament_size)
            child_1, child_2 = self.crossover(crossover_rate, parent_1, parent_2, crossover_method)

            new_population.append(child_1.mutate(mutation_rate, forced_mutation_rate, self.rng))
            if len(new_population) < self.size:
                new_population.append(child_2.mutate(mutation_rate, forced_mutation_rate, self.rng))

        return PixelPopulation(self.task, self.pos, self.rng, self.size, population=new_population[:self.size])


@dataclass
class Checkpoint:
    """Grid-wide diagnostics of one generation."""

    generation: int
    mean_fitness: float
    perfect_matches: int
    n_pixels: int
    sample_pos: tuple[int, int]
    sample_stats: tuple[float, float, float]

    @property
    def perfect_match_ratio(self) -> float:
        """Get the fraction of pixels whose best chromosome matches the target color exactly."""
        return self.perfect_matches / self.n_pixels

    def __str__(self) -> str:
        sample_mean, sample_max, sample_min = self.sample_stats
        return (f'Generation {self.generation}: mean fitness {self.mean_fitness:.4f}, '
                f'perfect matches {self.perfect_match_ratio * 100:.2f}% ({self.perfect_matches}/{self.n_pixels})\n'
                f'  Pixel {self.sample_pos} fitness - mean: {sample_mean:.4f}, '
                f'max: {sample_max:.4f}, min: {sample_min:.4f}')


class PopulationGrid:
    """
    Class representing an N x N grid of independent pixel populations.

    Parameters:
    ----------
    task : ImageEvolutionTask
        Image evolution task instance.
    population_size : int
        Size of every pixel population.
    seed : int, optional
        Seed of the run. Every pixel gets its own generator spawned from it,
        so results don't depend on the order in which pixels are processed.
    """

    def __init__(self, task: ImageEvolutionTask, population_size: int, seed: int = None):
        self.task = task
        self.size = task.size

        seeds = np.random.SeedSequence(seed).spawn(self.size * self.size)
        self.populations = [
            [PixelPopulation(self.task, (i, j), np.random.default_rng(seeds[i * self.size + j]), population_size)
             for j in range(self.size)]
            for i in range(self.size)
        ]

    @staticmethod
    def _breed_row(row: list[PixelPopulation], breed_params: dict) -> list[PixelPopulation]:
        """Breed the offspring of every population in a row."""
        return [population.breed_offspring(**breed_params) for population in row]

    def step(self, thread_pool: ThreadPool = None, **breed_params) -> None:
        """Replace every population with its offspring, row by row on `thread_pool` if given."""
        breed_row = partial(self._breed_row, breed_params=breed_params)

        if thread_pool is None:
            self.populations = [breed_row(row) for row in self.populations]
        else:
            self.populations = thread_pool.map(breed_row, self.populations)

    def render(self) -> np.ndarray:
        """Assemble an image from the best chromosome of every population."""
        frame = np.zeros(self.task.get_shape(), dtype=np.uint8)

        for i, row in enumerate(self.populations):
            for j, population in enumerate(row):
                frame[i, j] = population.get_best().get_val()

        return frame

    def evaluate(self, frame: np.ndarray = None) -> tuple[float, int]:
        """Get the mean fitness of the best chromosomes and the number of exactly matched pixels."""
        if frame is None:
            frame = self.render()

        mean_fitness = np.mean([[population.get_best().evaluate() for population in row] for row in self.populations])
        perfect_matches = int(np.sum(np.all(frame == self.task.img, axis=-1)))
        return float(mean_fitness), perfect_matches

    def checkpoint(self, generation: int, sample_pos: tuple[int, int], frame: np.ndarray = None) -> Checkpoint:
        """Collect the diagnostics of the current generation."""
        mean_fitness, perfect_matches = self.evaluate(frame)
        return Checkpoint(
            generation=generation,
            mean_fitness=mean_fitness,
            perfect_matches=perfect_matches,
            n_pixels=self.size * self.size,
            sample_pos=sample_pos,
            sample_stats=self.populations[sample_pos[0]][sample_pos[1]].stats()
        )


class GeneticAlgorithm:
    """
    Genetic algorithm class.

    Parameters:
    ----------
    population_size : int
        Number of chromosomes in every pixel population.
    tournament_size : int
        Number of candidates compared in a tournament selection (the chromosome at index 0 and random draws).
    elite_size : int
        Number of the fittest chromosomes carried over unchanged to the next generation.
    crossover_rate : float
        Probability of crossover between two selected parents.
    mutation_rate : float
        Probability of flipping each bit of a child's gene.
    forced_mutation_rate : float, optional
        Probability of flipping one extra random bit of a child's gene after the regular mutation.
    crossover_method : str, optional
        'uniform' (every bit swapped with 0.5 probability) or 'single_point' (tails of every channel swapped).
    """

    def __init__(
            self,
            population_size: int,
            tournament_size: int,
            elite_size: int,
            crossover_rate: float,
            mutation_rate: float,
            forced_mutation_rate: float = 0.1,
            crossover_method: str = 'uniform'
    ):
        if population_size < 1:
            raise ValueError('population_size must be positive.')

        if tournament_size < 1:
            raise ValueError('tournament_size must be positive.')

        if elite_size < 0:
            raise ValueError('elite_size must not be negative.')

        for name, rate in (('crossover_rate', crossover_rate), ('mutation_rate', mutation_rate),
                           ('forced_mutation_rate', forced_mutation_rate)):
            if not 0 <= rate <= 1:
                raise ValueError(f'{name} must be in [0, 1].')

        if crossover_method not in CROSSOVER_METHODS:
            raise ValueError(f'crossover_method must be one of {CROSSOVER_METHODS}.')

        self.population_size = population_size
        self.tournament_size = tournament_size
        self.elite_size = elite_size
        self.crossover_rate = crossover_rate
        self.mutation_rate = mutation_rate
        self.forced_mutation_rate = forced_mutation_rate
        self.crossover_method = crossover_method

    def get_breed_params(self) -> dict:
        """Get the parameters of a single generation step."""
        return {
            'tournament_size': self.tournament_size,
            'elite_size': self.elite_size,
            'crossover_rate': self.crossover_rate,
            'mutation_rate': self.mutation_rate,
            'forced_mutation_rate': self.forced_mutation_rate,
            'crossover_method': self.crossover_method
        }

    def fit(
            self,
            task: ImageEvolutionTask,
            n_iter: int,
            report_step: int = 25,
            sample_pos: tuple[int, int] = None,
            seed: int = None,
            n_workers: int = 1,
            verbose: bool = True
    ) -> tuple[np.ndarray, list[np.ndarray], list[Checkpoint]]:
        """Execute the genetic algorithm on a specified image evolution task.

        Returns the final image, one frame per generation and the checkpoints recorded
        every `report_step` generations (starting with the first one) and at the last generation.
        """
        if n_iter < 1:
            raise ValueError('n_iter must be positive.')

        if report_step < 1:
            raise ValueError('report_step must be positive.')

        if n_workers < 1:
            raise ValueError('n_workers must be positive.')

        if sample_pos is None:
            sample_pos = (task.size // 2, task.size // 2)

        if len(sample_pos) != 2 or not all(0 <= coordinate < task.size for coordinate in sample_pos):
            raise ValueError(f'sample_pos must be a (row, column) position inside the {task.size}x{task.size} image.')

        breed_params = self.get_breed_params()
        grid = PopulationGrid(task=task, population_size=self.population_size, seed=seed)
        frames = []
        history = []

        progress_bar = tqdm(desc='Image evolution', total=n_iter, disable=not verbose)
        thread_pool = ThreadPool(n_workers) if n_workers > 1 else None

        try:
            for generation in range(1, n_iter + 1):
                grid.step(thread_pool, **breed_params)
                frame = grid.render()
                frames.append(frame)

                if (generation - 1) % report_step == 0 or generation == n_iter:
                    checkpoint = grid.checkpoint(generation, sample_pos, frame)
                    history.append(checkpoint)
                    if verbose:
                        tqdm.write(str(checkpoint))

                progress_bar.update(1)

        finally:
            progress_bar.close()
            if thread_pool is not None:
                thread_pool.close()
                thread_pool.join()

        return frames[-1], frames, history
