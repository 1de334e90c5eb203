"""
Decoding and normalization of the reference photo and the paint-mask.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
from typing import Union

from PIL import Image, UnidentifiedImageError

from magicbook.common.errors import InputError

ImageUpload = Union[bytes, bytearray, str]


@dataclass(frozen=True)
class PreparedInputs:
    """Photo and mask resized to the same bounded edit resolution."""

    photo: Image.Image
    mask: Image.Image

    @property
    def size(self) -> tuple[int, int]:
        return self.photo.size


def _decode_data_url(value: str, label: str) -> bytes:
    text = value.strip()
    if not text.lower().startswith("data:"):
        raise InputError(f"{label} must be a data URL or raw image bytes.")
    header, _, payload = text.partition(",")
    if not payload or ";base64" not in header.lower():
        raise InputError(f"{label} data URL must be base64 encoded.")
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise InputError(f"{label} data URL carries invalid base64.") from exc


def decode_upload(upload: ImageUpload, *, label: str = "image") -> Image.Image:
    """Turn raw bytes or a ``data:`` URL into a fully loaded Pillow image."""
    data = _decode_data_url(upload, label) if isinstance(upload, str) else bytes(upload)
    if not data:
        raise InputError(f"{label} is empty.")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InputError(f"{label} could not be decoded as an image.") from exc
    return image


def bounded_size(size: tuple[int, int], max_side: int) -> tuple[int, int]:
    """Scale ``size`` down so its longer side is at most ``max_side``; never enlarge."""
    width, height = size
    scale = min(1.0, max_side / max(width, height))
    return max(1, int(width * scale + 0.5)), max(1, int(height * scale + 0.5))


def prepare_inputs(photo: ImageUpload, mask: ImageUpload, *, max_side: int = 1024) -> PreparedInputs:
    """
    Validate and normalize an uploaded photo/mask pair.

    Raises
    ------
    InputError
        When either image cannot be decoded or their dimensions differ.
    """
    photo_image = decode_upload(photo, label="photo")
    mask_image = decode_upload(mask, label="mask")

    if photo_image.size != mask_image.size:
        raise InputError(
            "Photo and mask sizes differ: "
            f"photo={photo_image.width}x{photo_image.height}, "
            f"mask={mask_image.width}x{mask_image.height}"
        )

    target = bounded_size(photo_image.size, max_side)
    photo_rgb = photo_image.convert("RGB")
    mask_rgba = mask_image.convert("RGBA")
    if target != photo_rgb.size:
        photo_rgb = photo_rgb.resize(target, Image.Resampling.LANCZOS)
        mask_rgba = mask_rgba.resize(target, Image.Resampling.LANCZOS)
    return PreparedInputs(photo=photo_rgb, mask=mask_rgba)


def transparent_mask(size: tuple[int, int]) -> Image.Image:
    """A fully transparent mask, letting the edit repaint the whole image."""
    return Image.new("RGBA", size, (0, 0, 0, 0))
