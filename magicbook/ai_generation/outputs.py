"""
Normalization of the loosely-typed image outputs returned by image backends.

Backends answer with a URL string, a data URI, bare base64, a list of any of
those, a mapping with a ``url`` key or an SDK file object exposing ``.url``.
:func:`parse_image_output` reduces all of them to one of two shapes.
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Mapping
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Callable, Union

import requests
from PIL import Image, UnidentifiedImageError

from magicbook.common.errors import GenerationError, ProviderTimeout, ProviderUnavailable

_BASE64_PAYLOAD = re.compile(r"^[A-Za-z0-9+/\s]+={0,2}$")
_MIN_BASE64_LENGTH = 16


@dataclass(frozen=True)
class UrlOutput:
    """The image is hosted remotely and must be downloaded."""

    url: str


@dataclass(frozen=True)
class InlineOutput:
    """The image bytes were returned inline."""

    data: bytes


ImageOutput = Union[UrlOutput, InlineOutput]
HttpGet = Callable[..., Any]


def _decode_base64(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise GenerationError("Image output carried an invalid base64 payload.") from exc


def _parse_string(value: str) -> ImageOutput:
    text = value.strip()
    lowered = text.lower()
    if lowered.startswith(("http://", "https://")):
        return UrlOutput(url=text)
    if lowered.startswith("data:"):
        header, _, payload = text.partition(",")
        if not payload or ";base64" not in header.lower():
            raise GenerationError("Image data URI must be base64 encoded.")
        return InlineOutput(data=_decode_base64(payload))
    compact = "".join(text.split())
    if len(compact) >= _MIN_BASE64_LENGTH and _BASE64_PAYLOAD.match(compact):
        return InlineOutput(data=_decode_base64(compact))
    raise GenerationError(f"Unrecognized image output string: {text[:80]!r}")


def parse_image_output(raw: Any) -> ImageOutput:
    """
    Reduce a backend output to :class:`UrlOutput` or :class:`InlineOutput`.

    Raises
    ------
    GenerationError
        When the value matches none of the recognized shapes.
    """
    if raw is None:
        raise GenerationError("Image backend returned no output.")

    if isinstance(raw, (UrlOutput, InlineOutput)):
        return raw

    if isinstance(raw, (bytes, bytearray)):
        data = bytes(raw)
        if not data:
            raise GenerationError("Image backend returned empty bytes.")
        return InlineOutput(data=data)

    if isinstance(raw, str):
        return _parse_string(raw)

    if isinstance(raw, (list, tuple)):
        if not raw:
            raise GenerationError("Image backend returned an empty list.")
        return parse_image_output(raw[0])

    if isinstance(raw, Mapping):
        url = raw.get("url")
        if isinstance(url, str) and url:
            return _parse_string(url)
        b64 = raw.get("b64_json")
        if isinstance(b64, str) and b64:
            return InlineOutput(data=_decode_base64(b64))
        raise GenerationError(f"Image output mapping has no usable field: {sorted(raw)}")

    url_attr = getattr(raw, "url", None)
    if isinstance(url_attr, str) and url_attr:
        return _parse_string(url_attr)

    raise GenerationError(f"Unsupported image output type: {type(raw).__name__}")


def decode_image(data: bytes) -> Image.Image:
    """Decode raw bytes with Pillow, fully loading the pixels."""
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise GenerationError("Image output could not be decoded.") from exc
    return image


def fetch_bytes(url: str, *, http_get: HttpGet = requests.get, timeout: float = 240.0) -> bytes:
    """Download ``url``; network trouble is reported as a transient provider failure."""
    try:
        response = http_get(url, timeout=timeout)
        response.raise_for_status()
    except requests.Timeout as exc:
        raise ProviderTimeout(f"Timed out downloading image output from {url}") from exc
    except requests.RequestException as exc:
        raise ProviderUnavailable(f"Failed to download image output from {url}: {exc}") from exc
    return response.content


def load_image_output(
    output: ImageOutput,
    *,
    http_get: HttpGet = requests.get,
    timeout: float = 240.0,
) -> Image.Image:
    """Materialize an :data:`ImageOutput` as a decoded Pillow image."""
    if isinstance(output, InlineOutput):
        return decode_image(output.data)
    return decode_image(fetch_bytes(output.url, http_get=http_get, timeout=timeout))
