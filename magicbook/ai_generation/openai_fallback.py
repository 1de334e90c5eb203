"""
Synchronous image-edit fallback through the OpenAI Images API.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import openai
from PIL import Image

from magicbook.common.errors import (
    InputError,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
)
from magicbook.common.llm import is_model_access_error

from .outputs import InlineOutput, UrlOutput, fetch_bytes, parse_image_output

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    openai.RateLimitError,
    openai.InternalServerError,
    openai.APIConnectionError,
)


def _image_size(path: Path) -> tuple[int, int]:
    try:
        with Image.open(path) as image:
            return image.size
    except (FileNotFoundError, OSError) as exc:
        raise InputError(f"Could not read image at '{path}'.") from exc


class OpenAIImageEditor:
    """
    Edit the reference photo into a storybook illustration with ``images.edit``.

    Parameters
    ----------
    api_key:
        OpenAI API key.
    models:
        Candidate models tried in order; a model-access error moves on to the next.
    size:
        Output size passed to the API (``"1024x1024"``).
    timeout:
        Per-request timeout in seconds.
    client:
        Optional pre-configured :class:`openai.OpenAI` client. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        models: Sequence[str] = ("dall-e-2",),
        size: str = "1024x1024",
        timeout: float = 180.0,
        client: openai.OpenAI | None = None,
    ) -> None:
        if not api_key and client is None:
            raise ValueError("OpenAI API key is required for the image-edit fallback.")
        self._models = tuple(m for m in models if m)
        self._size = size
        self._timeout = timeout
        self._client = client or openai.OpenAI(api_key=api_key, timeout=timeout)

    def edit(self, prompt: str, image_path: str | Path, mask_path: str | Path | None = None) -> bytes:
        """Return PNG bytes of the edited image."""
        image_file = Path(image_path)
        mask_file = Path(mask_path) if mask_path else None
        if mask_file is not None and not mask_file.exists():
            mask_file = None

        image_size = _image_size(image_file)
        if mask_file is not None:
            mask_size = _image_size(mask_file)
            if mask_size != image_size:
                raise InputError(
                    "Mask and image sizes differ: "
                    f"image={image_size[0]}x{image_size[1]}, mask={mask_size[0]}x{mask_size[1]}"
                )

        last_error: Exception | None = None
        for model in self._models:
            try:
                return self._edit_once(model, prompt, image_file, mask_file)
            except openai.APITimeoutError as exc:
                raise ProviderTimeout(f"Image edit timed out on {model}.") from exc
            except _TRANSIENT_ERRORS as exc:
                raise ProviderUnavailable(f"Image edit temporarily unavailable on {model}: {exc}") from exc
            except openai.OpenAIError as exc:
                if is_model_access_error(exc) or isinstance(
                    exc, (openai.NotFoundError, openai.PermissionDeniedError)
                ):
                    logger.warning("Image model %s unavailable, trying next candidate: %s", model, exc)
                    last_error = exc
                    continue
                raise ProviderError(f"Image edit failed on {model}: {exc}") from exc

        raise ProviderUnavailable(
            f"None of the image models are available ({', '.join(self._models)})."
        ) from last_error

    def _edit_once(self, model: str, prompt: str, image_file: Path, mask_file: Path | None) -> bytes:
        kwargs = {"model": model, "prompt": prompt, "size": self._size, "n": 1}
        if model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"

        with image_file.open("rb") as image_handle:
            if mask_file is not None:
                with mask_file.open("rb") as mask_handle:
                    response = self._client.images.edit(image=image_handle, mask=mask_handle, **kwargs)
            else:
                response = self._client.images.edit(image=image_handle, **kwargs)

        data = getattr(response, "data", None) or []
        if not data:
            raise ProviderError(f"Image edit on {model} returned no data.")
        first = data[0]
        output = parse_image_output(
            {"b64_json": getattr(first, "b64_json", None), "url": getattr(first, "url", None)}
        )
        if isinstance(output, InlineOutput):
            return output.data
        if isinstance(output, UrlOutput):
            return fetch_bytes(output.url, timeout=self._timeout)
        raise ProviderError(f"Image edit on {model} returned an unsupported output.")
