"""
Integration with Replicate predictions for storybook image generation.

Unlike ``replicate.run`` this module never blocks on a prediction: the caller
submits once and checks back later, which lets each inbound request perform a
single short step.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any

import httpx
import replicate
from PIL import Image

from magicbook.common.config import GatewayConfig
from magicbook.common.errors import (
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
    StorybookError,
)

logger = logging.getLogger(__name__)

HIGH_DEMAND_MARKERS = (
    "high demand",
    "temporarily unavailable",
    "e003",
    "service unavailable",
    "overloaded",
)

_RETRYABLE_STATUS = {429, 502, 503, 504}

TERMINAL_FAILURES = {"failed", "canceled"}


@dataclass(frozen=True)
class PredictionSnapshot:
    """Non-blocking view of a prediction: status plus raw output or error text."""

    id: str
    status: str
    output: Any = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def failed(self) -> bool:
        return self.status in TERMINAL_FAILURES


def is_high_demand_message(message: str | None) -> bool:
    text = str(message or "").lower()
    return any(marker in text for marker in HIGH_DEMAND_MARKERS)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify_replicate_error(exc: BaseException) -> StorybookError:
    """
    Map a Replicate or transport exception onto the provider error taxonomy.
    """
    if isinstance(exc, StorybookError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeout(f"Replicate request timed out: {exc}")
    status = _status_code(exc)
    if status in _RETRYABLE_STATUS or is_high_demand_message(str(exc)):
        return ProviderUnavailable(f"Replicate temporarily unavailable ({status or 'n/a'}): {exc}")
    if isinstance(exc, httpx.TransportError):
        return ProviderUnavailable(f"Replicate connection failed: {exc}")
    return ProviderError(f"Replicate request failed: {exc}")


def image_to_data_url(image: Image.Image | str | Path) -> str:
    """Encode a reference image as a PNG data URL accepted by ``image_input``."""
    if isinstance(image, (str, Path)):
        path = Path(image).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Input image not found at '{path}'.")
        with Image.open(path) as opened:
            return image_to_data_url(opened.copy())

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class ReplicatePredictionBackend:
    """
    Convenience wrapper around the Replicate predictions API.

    Parameters
    ----------
    config:
        Gateway settings: token, model, optional pinned version and the
        model-specific input knobs.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        client: replicate.Client | None = None,
    ) -> None:
        if not config.replicate_api_token and client is None:
            raise ValueError("Replicate API token is required. Set REPLICATE_API_TOKEN.")
        if not config.replicate_model and not config.replicate_version:
            raise ValueError("Replicate model identifier is required. Set REPLICATE_MODEL.")

        self._config = config
        self._client = client or replicate.Client(
            api_token=config.replicate_api_token,
            timeout=config.submit_timeout,
        )
        self._version_cache: dict[str, str] = {}

    @property
    def model_identifier(self) -> str:
        return self._config.replicate_model

    def resolve_version(self) -> str:
        """Return the pinned version, or the model's latest one (cached per model)."""
        if self._config.replicate_version:
            return self._config.replicate_version

        model = self._config.replicate_model
        cached = self._version_cache.get(model)
        if cached:
            return cached

        try:
            found = self._client.models.get(model)
        except Exception as exc:
            raise classify_replicate_error(exc) from exc

        latest = getattr(found, "latest_version", None)
        version_id = getattr(latest, "id", None)
        if not version_id:
            raise ProviderError(f"Could not resolve the latest version of '{model}'.")
        self._version_cache[model] = version_id
        return version_id

    def build_input(self, prompt: str, reference_image: Image.Image | str | Path) -> dict[str, Any]:
        return {
            "prompt": prompt,
            "image_input": [image_to_data_url(reference_image)],
            "aspect_ratio": self._config.replicate_aspect_ratio,
            "resolution": self._config.replicate_resolution,
            "output_format": self._config.replicate_output_format,
            "safety_filter_level": self._config.replicate_safety,
        }

    def submit(self, prompt: str, reference_image: Image.Image | str | Path) -> str:
        """Create a prediction and return its id without waiting for it."""
        version = self.resolve_version()
        payload = self.build_input(prompt, reference_image)
        try:
            prediction = self._client.predictions.create(version=version, input=payload)
        except Exception as exc:
            raise classify_replicate_error(exc) from exc

        prediction_id = str(getattr(prediction, "id", "") or "")
        if not prediction_id:
            raise ProviderError("Replicate did not return a prediction id.")
        logger.info("Submitted Replicate prediction %s (model %s)", prediction_id, self.model_identifier)
        return prediction_id

    def fetch(self, prediction_id: str) -> PredictionSnapshot:
        """Read the current state of a prediction once."""
        try:
            prediction = self._client.predictions.get(prediction_id)
        except Exception as exc:
            raise classify_replicate_error(exc) from exc

        return PredictionSnapshot(
            id=prediction_id,
            status=str(getattr(prediction, "status", "") or ""),
            output=getattr(prediction, "output", None),
            error=str(getattr(prediction, "error", "") or ""),
        )
