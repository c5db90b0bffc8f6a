"""Image preprocessing: decoding, orientation, cropping, and model input tensors."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from visionloop.ml.model_manager import ModelSpec

Layout = Literal["NHWC", "NCHW"]


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> Image.Image:
    """Decode raw image bytes into an RGB Pillow image.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Reject images with more pixels than this.

    Returns:
        The decoded image in RGB mode.

    Raises:
        ValueError: If the image cannot be decoded or exceeds size limits.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if max_pixels is not None and img.width * img.height > max_pixels:
                raise ValueError(f"Image has {img.width * img.height} pixels, limit is {max_pixels}")
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc


def rotate(image: Image.Image, orientation: int) -> Image.Image:
    """Rotate an image clockwise by a multiple of 90 degrees."""
    if orientation % 90 != 0:
        raise ValueError(f"Orientation must be a multiple of 90, got {orientation}")
    if orientation % 360 == 0:
        return image
    # PIL rotates counter-clockwise.
    return image.rotate(-orientation, expand=True)


def center_crop_square(image: Image.Image) -> Image.Image:
    """Crop the largest centred square out of an image."""
    size = min(image.width, image.height)
    left = (image.width - size) // 2
    top = (image.height - size) // 2
    return image.crop((left, top, left + size, top + size))


def to_input_tensor(
    image: Image.Image,
    width: int,
    height: int,
    spec: ModelSpec,
    layout: Layout = "NHWC",
) -> NDArray[np.float32] | NDArray[np.uint8]:
    """Resize an RGB image and pack it into a batch of one for the model.

    Quantized models take raw uint8 pixels, float models take
    ``(pixel - mean) / std`` as float32.
    """
    resized = image.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
    pixels = np.asarray(resized, dtype=np.uint8)
    if layout == "NCHW":
        pixels = pixels.transpose(2, 0, 1)
    batch = pixels[np.newaxis, ...]

    if spec.quantized:
        return np.ascontiguousarray(batch)
    return ((batch.astype(np.float32) - spec.mean) / spec.std).astype(np.float32)
