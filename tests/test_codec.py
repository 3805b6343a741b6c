"""
Tests for backends/utils.py — base64/PNG encoders and seed resolution.
"""

import base64
import io
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from backends.utils import encode_base64, resolve_seed, rgb_to_png
from conftest import PNG_MAGIC


@pytest.mark.parametrize("data, expected", [
    (b"", ""),
    (b"f", "Zg=="),
    (b"fo", "Zm8="),
    (b"foo", "Zm9v"),
    (b"foobar", "Zm9vYmFy"),
])
def test_encode_base64_rfc4648_vectors(data, expected):
    assert encode_base64(data) == expected


def test_encode_base64_uses_standard_alphabet():
    # 0xfb 0xff -> "+/8=" in the standard alphabet, "-_8=" in urlsafe
    assert encode_base64(b"\xfb\xff") == "+/8="


def test_rgb_to_png_roundtrips_pixels():
    pixels = np.arange(4 * 6 * 3, dtype=np.uint8).reshape(4, 6, 3)
    png = rgb_to_png(pixels.tobytes(), width=6, height=4)

    assert png.startswith(PNG_MAGIC)
    img = Image.open(io.BytesIO(png))
    assert img.size == (6, 4)
    assert img.mode == "RGB"
    assert np.array_equal(np.array(img), pixels)


def test_rgb_to_png_rejects_wrong_length():
    with pytest.raises(ValueError, match="expected 48"):
        rgb_to_png(b"\x00" * 47, width=4, height=4)


def test_rgb_to_png_is_pure():
    pixels = bytes(range(256)) * 3
    assert rgb_to_png(pixels, 16, 16) == rgb_to_png(pixels, 16, 16)


def test_base64_of_png_decodes_back():
    png = rgb_to_png(b"\x10\x20\x30" * 64, 8, 8)
    assert base64.b64decode(encode_base64(png)) == png


def test_resolve_seed_keeps_explicit_seed():
    assert resolve_seed(42) == 42
    assert resolve_seed(-7) == -7


def test_resolve_seed_zero_uses_wall_clock():
    with patch("backends.utils.time.time", return_value=1700000000.9):
        assert resolve_seed(0) == 1700000000
