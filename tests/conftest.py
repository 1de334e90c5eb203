"""Shared fakes and fixtures for magicbook tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from magicbook.ai_generation import ProviderGateway
from magicbook.ai_generation.replicate_service import PredictionSnapshot
from magicbook.common.config import GatewayConfig, PipelineConfig
from magicbook.common.llm import ChatResult
from magicbook.persistence import LocalArtifactStorage, LocalManifestCache, ManifestStore
from magicbook.pipeline import BookJobService, BookRequest, Principal, StepExecutor
from magicbook.story_generation import ChildProfile, StoryTextGenerator


def png_bytes(size=(256, 256), color=(120, 170, 220), mode="RGB") -> bytes:
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def story_reply(page_count: int, name: str = "Mia") -> str:
    pages = [
        {"page": n, "title": f"Chapter {n}", "text": f"{name} explores a glowing planet on page {n}."}
        for n in range(1, page_count + 1)
    ]
    return json.dumps({"pages": pages})


class FakeCompletion:
    """Stands in for the LiteLLM completion callable."""

    def __init__(self, text: str | None = None, errors: dict[str, Exception] | None = None) -> None:
        self.text = text
        self.errors = errors or {}
        self.calls: list[dict] = []

    def __call__(self, *, model, messages, **kwargs) -> ChatResult:
        self.calls.append({"model": model, "messages": messages, **kwargs})
        if model in self.errors:
            raise self.errors[model]
        text = self.text
        if text is None:
            requirements = json.loads(messages[-1]["content"])["requirements"]
            text = story_reply(requirements["pages"])
        return ChatResult(text=text, raw={}, model=model)


class FakePrimary:
    """
    Scripted asynchronous backend.

    ``failing_handles`` predictions end in ``failure_message``; every prediction
    reports ``processing`` for ``polls_before_done`` checks before finishing.
    ``fetch_errors`` are raised by the next status checks, which then do not count.
    """

    def __init__(
        self,
        *,
        polls_before_done: int = 0,
        failing_handles: int = 0,
        failure_message: str = "Service is currently unavailable due to high demand (E003)",
        submit_errors: list[Exception] | None = None,
        fetch_errors: list[Exception] | None = None,
    ) -> None:
        self.polls_before_done = polls_before_done
        self.failing_handles = failing_handles
        self.failure_message = failure_message
        self.submit_errors = list(submit_errors or [])
        self.fetch_errors = list(fetch_errors or [])
        self.submitted: list[str] = []
        self.polls: dict[str, int] = {}

    def submit(self, prompt, reference_image) -> str:
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        handle = f"pred-{len(self.submitted) + 1}"
        self.submitted.append(handle)
        return handle

    def fetch(self, handle: str) -> PredictionSnapshot:
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        count = self.polls[handle] = self.polls.get(handle, 0) + 1
        if count <= self.polls_before_done:
            return PredictionSnapshot(id=handle, status="processing")
        if self.submitted.index(handle) < self.failing_handles:
            return PredictionSnapshot(id=handle, status="failed", error=self.failure_message)
        return PredictionSnapshot(id=handle, status="succeeded", output=[png_bytes()])


class FakeFallback:
    """Synchronous image editor returning a flat PNG, or raising scripted errors."""

    def __init__(self, errors: list[Exception] | None = None, always: Exception | None = None) -> None:
        self.errors = list(errors or [])
        self.always = always
        self.calls: list[tuple[str, Path, Path | None]] = []

    def edit(self, prompt, image_path, mask_path=None) -> bytes:
        self.calls.append((prompt, Path(image_path), Path(mask_path) if mask_path else None))
        if self.always is not None:
            raise self.always
        if self.errors:
            raise self.errors.pop(0)
        return png_bytes(color=(200, 160, 90))


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_gateway(*, primary=None, fallback=None, completion=None, **config) -> ProviderGateway:
    gateway_config = GatewayConfig(**config)
    generator = StoryTextGenerator(models=("gpt-test",), completion_fn=completion or FakeCompletion())
    return ProviderGateway(
        gateway_config,
        story_generator=generator,
        primary=primary,
        fallback=fallback,
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id="user-1", access_token="token-1")


@pytest.fixture
def work_root(tmp_path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def store(work_root) -> ManifestStore:
    return ManifestStore(LocalManifestCache(work_root))


@pytest.fixture
def storage(work_root) -> LocalArtifactStorage:
    return LocalArtifactStorage(work_root / "storage")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def build_service(store, storage, work_root, clock):
    """Factory returning ``(service, executor)`` wired to local tiers and the given gateway."""

    def _build(gateway: ProviderGateway, **pipeline) -> tuple[BookJobService, StepExecutor]:
        config = PipelineConfig(**pipeline)
        service = BookJobService(
            store=store,
            gateway=gateway,
            storage=storage,
            config=config,
            work_root=work_root,
        )
        executor = StepExecutor(
            store=store,
            gateway=gateway,
            storage=storage,
            config=config,
            work_root=work_root,
            locks=service.executor.locks,
            clock=clock,
        )
        return service, executor

    return _build


@pytest.fixture
def ready_job(principal):
    """Create a job and upload matching photo and mask; returns the job id."""

    def _ready(service: BookJobService, page_count: int = 8) -> str:
        request = BookRequest(child=ChildProfile(name="Mia", age=6, gender="girl"), theme="space", page_count=page_count)
        manifest = service.create_job(principal, request)
        service.upload_inputs(
            principal,
            manifest.id,
            png_bytes((256, 256)),
            png_bytes((256, 256), (0, 0, 0, 0), mode="RGBA"),
        )
        return manifest.id

    return _ready
