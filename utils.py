import cv2
import numpy as np
from PIL import Image, GifImagePlugin

PALETTE_LEVELS = 6
PALETTE_STEP = 51
PALETTE_SIZE = 256


def resize_image(image: np.ndarray, size: int) -> np.ndarray:
    """Resize an image to a square of a given size."""
    (h, w) = image.shape[:2]
    interpolation = cv2.INTER_AREA if h * w >= size * size else cv2.INTER_CUBIC

    return cv2.resize(image, (size, size), interpolation=interpolation)


def create_sample_image(size: int) -> np.ndarray:
    """Generate a gradient image: red grows with the column, green with the row, blue with both."""
    rows, cols = np.indices((size, size))

    return np.stack((
        cols * 255 // size,
        rows * 255 // size,
        (rows + cols) * 255 // (size * 2)
    ), axis=-1).astype(np.uint8)


def load_target_image(path: str, size: int) -> tuple[np.ndarray, bool]:
    """Load an RGB image resized to a square of a given size.

    Falls back to the generated sample image when there is no path or the file can't be read.
    The second returned value tells whether the file was loaded.
    """
    if path is None:
        return create_sample_image(size), False

    try:
        with Image.open(path) as img:
            img_array = np.array(img.convert('RGB'))

    except (OSError, ValueError):
        return create_sample_image(size), False

    return resize_image(img_array, size), True


def build_palette() -> bytes:
    """Build the fixed 6x6x6 color palette padded to 256 entries."""
    palette = bytearray()

    for r in range(PALETTE_LEVELS):
        for g in range(PALETTE_LEVELS):
            for b in range(PALETTE_LEVELS):
                palette += bytes((r * PALETTE_STEP, g * PALETTE_STEP, b * PALETTE_STEP))

    palette += bytes(PALETTE_SIZE * 3 - len(palette))
    return bytes(palette)


PALETTE = build_palette()


def quantize_frame(frame: np.ndarray) -> np.ndarray:
    """Map every pixel of an RGB frame to its index in the fixed palette."""
    levels = np.minimum(np.rint(frame / PALETTE_STEP), PALETTE_LEVELS - 1).astype(np.uint8)

    return (levels[..., 0] * PALETTE_LEVELS ** 2 + levels[..., 1] * PALETTE_LEVELS + levels[..., 2]).astype(np.uint8)


def select_frames(frames: list[np.ndarray], max_frames: int = 50) -> list[np.ndarray]:
    """Keep every (len(frames) // max_frames)-th frame when there are more than `max_frames` frames."""
    step = len(frames) // max_frames if len(frames) > max_frames else 1

    return [frame for i, frame in enumerate(frames) if i % step == 0]


def frames_to_gif_images(frames: list[np.ndarray], max_frames: int = 50) -> list[Image.Image]:
    """Convert RGB frames to palette images sharing the fixed palette."""
    images = []

    for frame in select_frames(frames, max_frames):
        img = Image.fromarray(quantize_frame(frame))
        img.putpalette(PALETTE)
        images.append(img)

    return images


def save_evolution_progress_as_gif(
        frames: list[np.ndarray],
        duration: float,
        output_path: str,
        max_frames: int = 50
):
    """Save the evolution progress as a looping GIF animation.

    Frames are written one by one with the fixed palette, so a frame repeating the previous one
    stays a separate frame with its own duration.
    """
    if not frames:
        raise ValueError('At least one frame is required to create an animation.')

    images = frames_to_gif_images(frames, max_frames)
    header, _ = GifImagePlugin.getheader(images[0], info={'loop': 0, 'duration': duration})

    with open(output_path, 'wb') as fp:
        fp.write(b''.join(header))
        for img in images:
            fp.write(b''.join(GifImagePlugin.getdata(img, duration=duration)))
        fp.write(b';')


def save_image(img: np.ndarray, output_path: str):
    """Save an RGB image."""
    Image.fromarray(img).save(output_path)
