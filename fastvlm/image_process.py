"""
image_process.py - Turn caller pixels into the vision encoder's pixel_values.

FastVLM preprocessing: letterbox to image_size x image_size (no crop, black
padding), then pixel * rescale_factor, then (x - mean) / std per channel.
For FastVLM: rescale_factor=1/255, mean=[0,0,0], std=[1,1,1], i.e. [0,1] scaling.
"""

import logging

import numpy as np
from PIL import Image

from .config import IMAGE_SIZE
from .errors import ImageShapeError

logger = logging.getLogger(__name__)


def rgba_to_image(data, width, height, _retried=False):
    """Wrap an interleaved RGBA byte buffer as a PIL image.

    Buffers longer than width*height*4 are truncated (some capture APIs pad
    rows); shorter ones are rejected.
    """
    if width <= 0 or height <= 0:
        raise ImageShapeError(f"Invalid image dimensions {width}x{height}")

    data = bytes(data)
    expected_size = width * height * 4

    if len(data) != expected_size:
        if len(data) < expected_size or _retried:
            raise ImageShapeError(
                f"Image data length {len(data)} is less than expected size {expected_size}"
            )
        logger.warning(
            "Image data size mismatch: got %d, expected %d. Truncating padding.",
            len(data), expected_size,
        )
        return rgba_to_image(data[:expected_size], width, height, _retried=True)

    return Image.frombytes("RGBA", (width, height), data)


def load_image_rgba(path):
    """Load any Pillow-readable file, return (rgba_bytes, width, height)."""
    with Image.open(path) as img:
        rgba = img.convert("RGBA")
    return rgba.tobytes(), rgba.width, rgba.height


def fit_size(orig_width, orig_height, target_width, target_height):
    """Uniform scale so the whole image fits the target box."""
    # Integer math: the limiting side lands exactly on the target, the other floors
    if target_width * orig_height <= target_height * orig_width:
        new_width = target_width
        new_height = target_width * orig_height // orig_width
    else:
        new_height = target_height
        new_width = target_height * orig_width // orig_height
    # Never collapse a thin image to 0 px
    return max(1, new_width), max(1, new_height)


class ImageProcessor:
    def __init__(self, image_size=IMAGE_SIZE, image_mean=(0.0, 0.0, 0.0),
                 image_std=(1.0, 1.0, 1.0), rescale_factor=1.0 / 255.0):
        self.crop_size = (image_size, image_size)
        self.image_mean = np.asarray(image_mean, dtype=np.float32)
        self.image_std = np.asarray(image_std, dtype=np.float32)
        self.rescale_factor = np.float32(rescale_factor)

    def resize_with_padding(self, image, target_width, target_height):
        """Letterbox: scale to fit, center on a black canvas."""
        orig_width, orig_height = image.size
        new_width, new_height = fit_size(orig_width, orig_height, target_width, target_height)

        resized = image.resize((new_width, new_height), Image.Resampling.LANCZOS)

        canvas = Image.new("RGB", (target_width, target_height), (0, 0, 0))
        x_offset = (target_width - new_width) // 2
        y_offset = (target_height - new_height) // 2
        canvas.paste(resized, (x_offset, y_offset))
        return canvas

    def to_tensor(self, image):
        """RGB image -> [1, 3, H, W] float32, normalized per channel."""
        pixels = np.asarray(image, dtype=np.float32)  # [H, W, 3]
        pixels = (pixels * self.rescale_factor - self.image_mean) / self.image_std
        return np.ascontiguousarray(pixels.transpose(2, 0, 1)[None, ...], dtype=np.float32)

    def preprocess(self, image):
        """PIL image of any size/mode -> pixel_values [1, 3, S, S]."""
        rgb = image.convert("RGB")
        processed = self.resize_with_padding(rgb, *self.crop_size)
        pixel_values = self.to_tensor(processed)
        logger.debug("Preprocessed %dx%d image to %s", image.width, image.height, pixel_values.shape)
        return pixel_values
