"""
Immutable configuration objects injected into the pipeline components.

Environment variables are read only by the ``from_env`` constructors so the
running pipeline never consults the process environment at call time.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_TEXT_MODEL = "gpt-4.1-mini"
TEXT_MODEL_FALLBACKS = ("gpt-4.1-mini", "gpt-4.1", "gpt-4o-mini", "gpt-4o")
DEFAULT_IMAGE_MODEL = "dall-e-2"
DEFAULT_REPLICATE_MODEL = "google/nano-banana-pro"

_SERVERLESS_MARKERS = ("VERCEL", "VERCEL_ENV", "AWS_LAMBDA_FUNCTION_NAME", "LAMBDA_TASK_ROOT")


def _text(environ: Mapping[str, str], name: str, default: str = "") -> str:
    value = str(environ.get(name, "") or "").strip()
    return value or default


def _number(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _text(environ, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be numeric, got {raw!r}") from exc


def _flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _text(environ, name).lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _dedupe(models: tuple[str, ...]) -> tuple[str, ...]:
    seen: list[str] = []
    for model in models:
        if model and model not in seen:
            seen.append(model)
    return tuple(seen)


@dataclass(frozen=True)
class GatewayConfig:
    """
    Settings for the provider gateway.

    Attributes
    ----------
    openai_api_key:
        Key used for story text (through LiteLLM) and for fallback image edits.
    text_models:
        Ordered candidates for story generation; the first available one wins.
    image_models:
        Ordered candidates for the synchronous image-edit fallback.
    replicate_api_token:
        When set, the asynchronous Replicate backend is the primary image backend.
    submit_attempts / backoff_seconds:
        Submission retries with linearly increasing waits (``backoff_seconds``,
        ``2 * backoff_seconds``, ...).
    """

    openai_api_key: str = ""
    text_models: tuple[str, ...] = TEXT_MODEL_FALLBACKS
    image_models: tuple[str, ...] = (DEFAULT_IMAGE_MODEL,)
    image_size: str = "1024x1024"
    replicate_api_token: str = ""
    replicate_model: str = DEFAULT_REPLICATE_MODEL
    replicate_version: str = ""
    replicate_resolution: str = "2K"
    replicate_aspect_ratio: str = "1:1"
    replicate_output_format: str = "png"
    replicate_safety: str = "block_only_high"
    text_timeout: float = 150.0
    submit_timeout: float = 120.0
    poll_timeout: float = 60.0
    download_timeout: float = 240.0
    fallback_timeout: float = 180.0
    submit_attempts: int = 3
    backoff_seconds: float = 2.0
    wait_interval: float = 1.2
    wait_timeout: float = 300.0

    @property
    def primary_configured(self) -> bool:
        return bool(self.replicate_api_token)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GatewayConfig":
        env = os.environ if environ is None else environ
        text_model = _text(env, "TEXT_MODEL", DEFAULT_TEXT_MODEL)
        image_model = _text(env, "IMAGE_MODEL", DEFAULT_IMAGE_MODEL)
        return cls(
            openai_api_key=_text(env, "OPENAI_API_KEY"),
            text_models=_dedupe((text_model, *TEXT_MODEL_FALLBACKS)),
            image_models=_dedupe((image_model, DEFAULT_IMAGE_MODEL)),
            replicate_api_token=_text(env, "REPLICATE_API_TOKEN"),
            replicate_model=_text(env, "REPLICATE_MODEL", DEFAULT_REPLICATE_MODEL),
            replicate_version=_text(env, "REPLICATE_VERSION"),
            replicate_resolution=_text(env, "REPLICATE_RESOLUTION", "2K"),
            replicate_aspect_ratio=_text(env, "REPLICATE_ASPECT_RATIO", "1:1"),
            replicate_output_format=_text(env, "REPLICATE_OUTPUT_FORMAT", "png"),
            replicate_safety=_text(env, "REPLICATE_SAFETY", "block_only_high"),
            submit_attempts=int(_number(env, "MAGICBOOK_SUBMIT_ATTEMPTS", 3)),
            backoff_seconds=_number(env, "MAGICBOOK_BACKOFF_SECONDS", 2.0),
        )


def pick_writable_root(environ: Mapping[str, str] | None = None) -> Path:
    """
    Choose where job files live; serverless hosts only allow the temp directory.
    """
    env = os.environ if environ is None else environ
    configured = _text(env, "MAGICBOOK_WORK_ROOT")
    if configured:
        return Path(configured).expanduser()
    tmp_root = Path(tempfile.gettempdir()) / "magicbook"
    if any(env.get(marker) for marker in _SERVERLESS_MARKERS):
        return tmp_root
    return Path.cwd() / "output"


@dataclass(frozen=True)
class PersistenceConfig:
    """Settings for the manifest store and the durable artifact storage."""

    work_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "magicbook")
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    table: str = "books"
    bucket: str = "books"
    require_remote: bool = True

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and (self.supabase_anon_key or self.supabase_service_role_key))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PersistenceConfig":
        env = os.environ if environ is None else environ
        return cls(
            work_root=pick_writable_root(env),
            supabase_url=_text(env, "SUPABASE_URL"),
            supabase_anon_key=_text(env, "SUPABASE_ANON_KEY"),
            supabase_service_role_key=_text(env, "SUPABASE_SERVICE_ROLE_KEY"),
            bucket=_text(env, "SUPABASE_BUCKET", "books"),
            require_remote=_flag(env, "MAGICBOOK_REQUIRE_REMOTE", True),
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Knobs of the step executor."""

    page_count: int = 8
    edit_max_side: int = 1024
    pending_max_age: float = 480.0
    max_provider_attempts: int = 2
    max_unavailable_attempts: int = 6
    page_size: str = "a4"
    cover_title: str = "My Magic Book"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineConfig":
        env = os.environ if environ is None else environ
        return cls(
            page_count=int(_number(env, "MAGICBOOK_PAGE_COUNT", 8)),
            pending_max_age=_number(env, "MAGICBOOK_PENDING_MAX_AGE", 480.0),
            max_provider_attempts=int(_number(env, "MAGICBOOK_MAX_PROVIDER_ATTEMPTS", 2)),
            max_unavailable_attempts=int(_number(env, "MAGICBOOK_MAX_UNAVAILABLE_ATTEMPTS", 6)),
            cover_title=_text(env, "MAGICBOOK_COVER_TITLE", "My Magic Book"),
        )
