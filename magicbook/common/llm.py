"""
LiteLLM-powered chat completion helper utilities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from litellm import exceptions as litellm_errors
from litellm import completion

from .errors import ProviderError, ProviderUnavailable

ChatMessage = Mapping[str, Any]

logger = logging.getLogger(__name__)

_MODEL_ACCESS_MARKERS = (
    "model_not_found",
    "does not have access",
    "you do not have access",
    '"param":"model"',
)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm_errors.RateLimitError,
    litellm_errors.ServiceUnavailableError,
    litellm_errors.Timeout,
    litellm_errors.APIConnectionError,
)


@dataclass
class ChatResult:
    """
    Structured response returned from an LLM chat completion.
    """

    text: str
    raw: Any
    model: str = ""


CompletionCallable = Callable[..., ChatResult]


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `completion` API and return the consolidated text.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    payload.update(extra_kwargs)

    response = completion(**payload)

    try:
        message = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError("Unexpected LiteLLM response format.") from exc

    text = str(message or "").strip()
    return ChatResult(text=text, raw=response, model=model)


def is_model_access_error(exc: BaseException) -> bool:
    """Return True when the error means "this model is not available to us"."""
    if isinstance(exc, (litellm_errors.NotFoundError, litellm_errors.PermissionDeniedError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _MODEL_ACCESS_MARKERS)


def complete_with_model_fallback(
    *,
    models: Sequence[str],
    messages: Sequence[ChatMessage],
    completion_fn: CompletionCallable = call_chat_completion,
    **kwargs: Any,
) -> ChatResult:
    """
    Try each candidate model in order until one answers.

    Model-access errors move on to the next candidate; any other error aborts
    immediately. When every candidate is unavailable, ``ProviderUnavailable``
    is raised.
    """
    if not models:
        raise ProviderError("No text models configured.")

    last_error: BaseException | None = None
    for model in models:
        try:
            return completion_fn(model=model, messages=messages, **kwargs)
        except (ProviderError, ProviderUnavailable):
            raise
        except Exception as exc:
            if is_model_access_error(exc):
                logger.warning("Model %s unavailable, trying next candidate: %s", model, exc)
                last_error = exc
                continue
            if isinstance(exc, _TRANSIENT_ERRORS):
                raise ProviderUnavailable(f"Text model {model} temporarily unavailable: {exc}") from exc
            raise ProviderError(f"Text generation failed on {model}: {exc}") from exc

    raise ProviderUnavailable(
        f"None of the text models are available ({', '.join(models)})."
    ) from last_error
