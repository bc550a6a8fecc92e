"""Tests for image decoding and center-crop preprocessing."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from fruitlens.ml.errors import InvalidInputError
from fruitlens.ml.preprocessing import as_bitmap, center_crop, decode_image, to_model_input


def _encode(img: Image.Image, fmt: str = "PNG", **save_kwargs: object) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


class TestDecodeImage:
    def test_decodes_png_to_rgb_uint8(self) -> None:
        bitmap = decode_image(_encode(Image.new("RGB", (30, 20), (255, 0, 0))), max_image_pixels=10_000)
        assert bitmap.shape == (20, 30, 3)
        assert bitmap.dtype == np.uint8
        assert tuple(bitmap[0, 0]) == (255, 0, 0)

    def test_converts_grayscale_and_alpha(self) -> None:
        gray = decode_image(_encode(Image.new("L", (8, 8), 100)), max_image_pixels=10_000)
        rgba = decode_image(_encode(Image.new("RGBA", (8, 8), (1, 2, 3, 4))), max_image_pixels=10_000)
        assert gray.shape == (8, 8, 3)
        assert rgba.shape == (8, 8, 3)

    def test_result_is_read_only(self) -> None:
        bitmap = decode_image(_encode(Image.new("RGB", (4, 4))), max_image_pixels=10_000)
        with pytest.raises(ValueError, match="read-only"):
            bitmap[0, 0, 0] = 1

    def test_applies_exif_orientation(self) -> None:
        img = Image.new("RGB", (40, 10), (0, 255, 0))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 CW on display
        bitmap = decode_image(_encode(img, "JPEG", exif=exif), max_image_pixels=10_000)
        assert bitmap.shape[:2] == (40, 10)

    def test_empty_bytes_rejected(self) -> None:
        with pytest.raises(InvalidInputError, match="Empty"):
            decode_image(b"", max_image_pixels=10_000)

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InvalidInputError, match="Could not decode"):
            decode_image(b"definitely not an image", max_image_pixels=10_000)

    def test_pixel_limit_enforced(self) -> None:
        with pytest.raises(InvalidInputError, match="too large"):
            decode_image(_encode(Image.new("RGB", (100, 100))), max_image_pixels=9_999)


class TestAsBitmap:
    def test_rejects_wrong_shape(self) -> None:
        with pytest.raises(InvalidInputError, match="HxWx3"):
            as_bitmap(np.zeros((4, 4, 4), dtype=np.uint8))

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(InvalidInputError, match="zero"):
            as_bitmap(np.zeros((0, 4, 3), dtype=np.uint8))

    def test_rejects_float_pixels(self) -> None:
        with pytest.raises(InvalidInputError, match="uint8"):
            as_bitmap(np.zeros((4, 4, 3), dtype=np.float32))

    def test_does_not_freeze_caller_array(self) -> None:
        original = np.zeros((4, 4, 3), dtype=np.uint8)
        as_bitmap(original)
        original[0, 0, 0] = 7
        assert original[0, 0, 0] == 7


class TestCenterCrop:
    def test_landscape_keeps_middle(self) -> None:
        image = np.zeros((10, 30, 3), dtype=np.uint8)
        image[:, 10:20] = 255  # white middle third
        cropped = center_crop(image, 10)
        assert cropped.shape == (10, 10, 3)
        assert cropped.min() == 255

    def test_portrait_keeps_middle(self) -> None:
        image = np.zeros((30, 10, 3), dtype=np.uint8)
        image[10:20, :] = 255
        cropped = center_crop(image, 10)
        assert cropped.shape == (10, 10, 3)
        assert cropped.min() == 255

    def test_small_image_upscaled(self) -> None:
        cropped = center_crop(np.zeros((5, 7, 3), dtype=np.uint8), 224)
        assert cropped.shape == (224, 224, 3)


class TestToModelInput:
    def test_nchw_float32_normalized(self) -> None:
        image = np.full((50, 80, 3), 255, dtype=np.uint8)
        tensor = to_model_input(image, 32, mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5))
        assert tensor.shape == (1, 3, 32, 32)
        assert tensor.dtype == np.float32
        assert np.allclose(tensor, 1.0)
