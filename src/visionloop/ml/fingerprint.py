"""Content fingerprints for processed images.

A fingerprint is the lowercase hex MD5 of the image's PNG encoding. It is
used to confirm that two runs classified bit-identical pixels, not for
security.
"""

from __future__ import annotations

import hashlib
import io
from typing import TYPE_CHECKING

from visionloop.ml.errors import FingerprintError

if TYPE_CHECKING:
    from PIL import Image


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def encode_png(image: Image.Image) -> bytes:
    """Encode an image losslessly as PNG."""
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise FingerprintError(f"Cannot encode image as PNG: {exc}") from exc
    return buffer.getvalue()


def fingerprint_image(image: Image.Image) -> str:
    return fingerprint_bytes(encode_png(image))
