"""Generic backend utilities: byte codecs and seed resolution."""

import base64
import io
import time

import numpy as np
from PIL import Image


def encode_base64(data: bytes) -> str:
    """Standard RFC 4648 alphabet, '=' padded."""
    return base64.b64encode(bytes(data)).decode("ascii")


def rgb_to_png(pixels: bytes, width: int, height: int) -> bytes:
    """
    Encode an interleaved RGB buffer as an in-memory PNG.

    Raises ValueError if the buffer is not exactly width*height*3 bytes.
    """
    expected = width * height * 3
    if len(pixels) != expected:
        raise ValueError(
            f"pixel buffer has {len(pixels)} bytes, expected {expected} ({width}x{height} RGB)"
        )
    arr = np.frombuffer(bytes(pixels), dtype=np.uint8).reshape(height, width, 3)
    img = Image.fromarray(arr)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def resolve_seed(seed: int) -> int:
    """0 means "derive from the wall clock"; resolve once per request."""
    if seed == 0:
        return int(time.time())
    return seed
