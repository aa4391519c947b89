from itertools import product
import numpy as np
import pytest
from PIL import Image, ImageSequence
from utils import (
    PALETTE,
    build_palette,
    create_sample_image,
    frames_to_gif_images,
    load_target_image,
    quantize_frame,
    resize_image,
    save_evolution_progress_as_gif,
    save_image,
    select_frames
)


def test_palette_contract():
    palette = build_palette()
    assert palette == PALETTE
    assert len(palette) == 768

    for r, g, b in product(range(6), repeat=3):
        index = 36 * r + 6 * g + b
        assert 0 <= index <= 215
        assert tuple(palette[3 * index:3 * index + 3]) == (51 * r, 51 * g, 51 * b)

    assert palette[216 * 3:] == bytes(40 * 3)


def test_quantize_frame():
    frame = np.array([[[0, 0, 0], [255, 255, 255]], [[128, 64, 200], [25, 26, 0]]], dtype=np.uint8)

    assert quantize_frame(frame).tolist() == [[0, 215], [36 * 3 + 6 * 1 + 4, 6]]
    assert quantize_frame(frame).dtype == np.uint8


@pytest.mark.parametrize('n_frames, expected_indices', [
    (1, [0]),
    (50, list(range(50))),
    (51, list(range(51))),
    (120, list(range(0, 120, 2))),
    (149, list(range(0, 149, 2))),
    (150, list(range(0, 150, 3)))
])
def test_select_frames(n_frames, expected_indices):
    frames = list(range(n_frames))

    assert select_frames(frames) == expected_indices


def test_sample_image():
    img = create_sample_image(100)

    assert img.shape == (100, 100, 3) and img.dtype == np.uint8
    assert img[0, 0].tolist() == [0, 0, 0]
    assert img[10, 20].tolist() == [20 * 255 // 100, 10 * 255 // 100, 30 * 255 // 200]
    assert img[99, 99].tolist() == [252, 252, 252]


def test_resize_image():
    img = np.zeros((30, 20, 3), dtype=np.uint8)

    assert resize_image(img, 16).shape == (16, 16, 3)
    assert resize_image(img, 50).shape == (50, 50, 3)


def test_load_without_path_uses_sample():
    img, loaded = load_target_image(None, 16)

    assert not loaded
    assert np.array_equal(img, create_sample_image(16))


def test_load_missing_file_uses_sample(tmp_path):
    img, loaded = load_target_image(str(tmp_path / 'missing.png'), 16)

    assert not loaded
    assert np.array_equal(img, create_sample_image(16))


def test_load_unreadable_file_uses_sample(tmp_path):
    path = tmp_path / 'broken.png'
    path.write_bytes(b'definitely not an image')

    img, loaded = load_target_image(str(path), 16)

    assert not loaded
    assert np.array_equal(img, create_sample_image(16))


def test_load_image_resizes_to_rgb_square(tmp_path):
    path = tmp_path / 'gray.png'
    Image.fromarray(np.full((40, 24), 77, dtype=np.uint8)).save(path)

    img, loaded = load_target_image(str(path), 16)

    assert loaded
    assert img.shape == (16, 16, 3)
    assert np.all(img == 77)


def test_save_image(tmp_path):
    path = tmp_path / 'result.png'
    img = create_sample_image(8)

    save_image(img, str(path))

    with Image.open(path) as saved:
        assert np.array_equal(np.array(saved.convert('RGB')), img)


def test_gif_images_share_fixed_palette():
    frames = [np.full((4, 4, 3), value, dtype=np.uint8) for value in (0, 100, 200)]

    images = frames_to_gif_images(frames)

    assert len(images) == 3
    for img, frame in zip(images, frames):
        assert img.mode == 'P'
        assert bytes(img.getpalette()[:216 * 3]) == PALETTE[:216 * 3]
        assert np.array_equal(np.array(img), quantize_frame(frame))


def test_save_gif(tmp_path):
    path = tmp_path / 'progress.gif'
    colors = ([128, 64, 200], [0, 0, 0], [255, 255, 255])
    frames = [np.tile(np.array(color, dtype=np.uint8), (6, 6, 1)) for color in colors]

    save_evolution_progress_as_gif(frames, duration=200, output_path=str(path))

    with Image.open(path) as gif:
        assert gif.n_frames == 3
        assert gif.info['loop'] == 0
        assert gif.info['duration'] == 200
        assert gif.size == (6, 6)
        assert gif.convert('RGB').getpixel((0, 0)) == (153, 51, 204)


def test_save_gif_keeps_repeated_frames(tmp_path):
    path = tmp_path / 'converged.gif'
    still = np.tile(np.array([128, 64, 200], dtype=np.uint8), (6, 6, 1))
    frames = [still, still.copy(), still.copy(), np.zeros((6, 6, 3), dtype=np.uint8)]

    save_evolution_progress_as_gif(frames, duration=200, output_path=str(path))

    with Image.open(path) as gif:
        assert gif.n_frames == 4
        durations = [frame.info['duration'] for frame in ImageSequence.Iterator(gif)]

    assert durations == [200, 200, 200, 200]


def test_save_gif_writes_every_sampled_frame(tmp_path):
    path = tmp_path / 'long.gif'
    still = np.full((4, 4, 3), 255, dtype=np.uint8)

    save_evolution_progress_as_gif([still] * 120, duration=200, output_path=str(path))

    with Image.open(path) as gif:
        assert gif.n_frames == 60
        assert gif.info['loop'] == 0


def test_save_gif_requires_frames(tmp_path):
    with pytest.raises(ValueError):
        save_evolution_progress_as_gif([], duration=200, output_path=str(tmp_path / 'empty.gif'))
