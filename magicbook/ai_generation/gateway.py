"""
Single entry point to every external generation service used by the pipeline.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import requests
from PIL import Image
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from magicbook.common.config import GatewayConfig
from magicbook.common.errors import (
    PredictionUnavailable,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
)
from magicbook.story_generation import ChildProfile, StoryPage, StoryTextGenerator

from .openai_fallback import OpenAIImageEditor
from .outputs import HttpGet, decode_image, load_image_output, parse_image_output
from .replicate_service import ReplicatePredictionBackend, is_high_demand_message

logger = logging.getLogger(__name__)

PENDING = "pending"
SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PollResult:
    """Outcome of a single non-blocking check; ``image`` is set once succeeded."""

    state: str
    image: Image.Image | None = None

    @property
    def done(self) -> bool:
        return self.state == SUCCEEDED


class ProviderGateway:
    """
    Wraps story text generation and the two image backends.

    The asynchronous Replicate backend is primary whenever a token is
    configured; otherwise image edits go through the synchronous OpenAI
    fallback.

    Parameters
    ----------
    config:
        Gateway settings.
    story_generator / primary / fallback:
        Optional pre-built collaborators. Mainly useful for testing.
    http_get:
        Callable used to download URL outputs (``requests.get`` signature).
    sleep / clock:
        Time hooks used by the retry backoff and :meth:`wait_for_image`.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        story_generator: StoryTextGenerator | None = None,
        primary: ReplicatePredictionBackend | None = None,
        fallback: OpenAIImageEditor | None = None,
        http_get: HttpGet = requests.get,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._story_generator = story_generator or StoryTextGenerator(
            models=config.text_models,
            api_key=config.openai_api_key or None,
            timeout=config.text_timeout,
        )
        if primary is None and config.primary_configured:
            primary = ReplicatePredictionBackend(config)
        self._primary = primary
        self._fallback = fallback
        self._http_get = http_get
        self._sleep = sleep
        self._clock = clock

    @property
    def uses_async_backend(self) -> bool:
        return self._primary is not None

    # ------------------------------------------------------------------ text

    def generate_story(self, child: ChildProfile, *, theme: str, page_count: int) -> list[StoryPage]:
        return self._story_generator.generate_pages(child, theme=theme, page_count=page_count)

    # ------------------------------------------------------------------ primary backend

    def submit_image(self, prompt: str, reference_image: Image.Image | str | Path) -> str:
        """
        Submit an image job and return its handle without waiting for the result.

        Transient failures are retried with linearly increasing waits. When the
        last attempt times out the failure is reported as ``ProviderError``;
        high-demand failures stay ``ProviderUnavailable``.
        """
        primary = self._require_primary()
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self._config.submit_attempts)),
            wait=wait_incrementing(
                start=self._config.backoff_seconds,
                increment=self._config.backoff_seconds,
            ),
            retry=retry_if_exception_type(ProviderUnavailable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(primary.submit, prompt, reference_image)
        except ProviderTimeout as exc:
            raise ProviderError(
                f"Image submission timed out after {self._config.submit_attempts} attempts."
            ) from exc

    def poll_image(self, handle: str) -> PollResult:
        """
        Check an image job once.

        A job that ended in a high-demand failure raises
        ``PredictionUnavailable``. Failures of the status check or of the
        output download raise plain ``ProviderUnavailable``: the job may
        still be running or already finished.
        """
        snapshot = self._require_primary().fetch(handle)

        if snapshot.succeeded:
            output = parse_image_output(snapshot.output)
            image = load_image_output(
                output,
                http_get=self._http_get,
                timeout=self._config.download_timeout,
            )
            return PollResult(state=SUCCEEDED, image=image)

        if snapshot.failed:
            message = snapshot.error or f"Prediction {handle} {snapshot.status}."
            if is_high_demand_message(message):
                raise PredictionUnavailable(message)
            raise ProviderError(message)

        return PollResult(state=PENDING)

    def wait_for_image(
        self,
        handle: str,
        *,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> Image.Image:
        """Poll on a fixed interval until the job finishes."""
        limit = self._config.wait_timeout if timeout is None else timeout
        step = self._config.wait_interval if interval is None else interval
        deadline = self._clock() + limit

        while True:
            result = self.poll_image(handle)
            if result.done and result.image is not None:
                return result.image
            if self._clock() >= deadline:
                raise ProviderTimeout(f"Image job {handle} did not finish within {limit:.0f}s.")
            self._sleep(step)

    # ------------------------------------------------------------------ fallback backend

    def edit_image(
        self,
        prompt: str,
        reference_image: str | Path,
        mask_image: str | Path | None = None,
    ) -> Image.Image:
        """Produce an illustration synchronously through the fallback backend."""
        fallback = self._fallback
        if fallback is None:
            if not self._config.openai_api_key:
                raise ProviderError("No image backend is configured.")
            fallback = OpenAIImageEditor(
                api_key=self._config.openai_api_key,
                models=self._config.image_models,
                size=self._config.image_size,
                timeout=self._config.fallback_timeout,
            )
            self._fallback = fallback
        return decode_image(fallback.edit(prompt, reference_image, mask_image))

    def _require_primary(self) -> Any:
        if self._primary is None:
            raise ProviderError("The asynchronous image backend is not configured.")
        return self._primary
