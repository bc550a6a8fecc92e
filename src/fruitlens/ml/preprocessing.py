"""Image preprocessing pipeline.

Decodes uploaded bytes into an RGB bitmap (EXIF orientation applied, size
limits enforced), then center-crops and normalizes it into the NCHW float32
tensor the classifier expects.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fruitlens.ml.errors import InvalidInputError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


def decode_image(image_bytes: bytes, max_image_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into a read-only RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_image_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        InvalidInputError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise InvalidInputError("Empty image data")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_image_pixels:
                raise InvalidInputError(f"Image too large: {width}x{height} exceeds {max_image_pixels} pixels")
            img.load()
            oriented = ImageOps.exif_transpose(img)
            rgb = oriented.convert("RGB")
    except InvalidInputError:
        raise
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise InvalidInputError(f"Could not decode image: {exc}") from exc

    return as_bitmap(np.asarray(rgb, dtype=np.uint8))


def as_bitmap(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Validate an HxWx3 uint8 array and return a read-only view of it."""
    if image.ndim != 3 or image.shape[2] != 3:
        raise InvalidInputError(f"Expected an HxWx3 RGB image, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidInputError("Image has zero width or height")
    if image.dtype != np.uint8:
        raise InvalidInputError(f"Expected uint8 pixels, got {image.dtype}")

    view = image.view()
    view.flags.writeable = False
    return view


def center_crop(image: NDArray[np.uint8], size: int) -> NDArray[np.uint8]:
    """Scale the shorter side to ``size`` and crop the centered square."""
    height, width = image.shape[:2]
    scale = size / min(height, width)
    new_w = max(size, round(width * scale))
    new_h = max(size, round(height * scale))

    resized = Image.fromarray(np.ascontiguousarray(image)).resize((new_w, new_h), Image.Resampling.BILINEAR)
    left = (new_w - size) // 2
    top = (new_h - size) // 2
    cropped = resized.crop((left, top, left + size, top + size))
    return np.asarray(cropped, dtype=np.uint8)


def to_model_input(
    image: NDArray[np.uint8],
    size: int,
    mean: Sequence[float] = IMAGENET_MEAN,
    std: Sequence[float] = IMAGENET_STD,
) -> NDArray[np.float32]:
    """Center-crop, normalize, and lay out an image as a (1, 3, size, size) tensor."""
    cropped = center_crop(image, size).astype(np.float32) / 255.0
    normalized = (cropped - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
    chw = np.transpose(normalized, (2, 0, 1))
    return np.expand_dims(chw, axis=0).astype(np.float32)
