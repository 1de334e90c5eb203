"""
Service layer for producing paginated story text via LiteLLM-compatible models.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Sequence

from magicbook.common.errors import GenerationError
from magicbook.common.llm import (
    ChatResult,
    CompletionCallable,
    call_chat_completion,
    complete_with_model_fallback,
)

from .profile import ChildProfile
from .prompting import StoryPrompt, build_story_prompt

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class StoryPage:
    """
    A single page of story text: one normalized paragraph plus a short title.
    """

    page: int
    title: str
    text: str

    def as_dict(self) -> dict[str, Any]:
        return {"page": self.page, "title": self.title, "text": self.text}

    @classmethod
    def from_mapping(cls, data: Any) -> "StoryPage":
        return cls(
            page=int(data.get("page", 0)),
            title=str(data.get("title", "")),
            text=str(data.get("text", "")),
        )


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", str(text or "")).strip()


def limit_words(text: str, max_words: int) -> str:
    words = text.split(" ")
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]).rstrip(",;:") + "…"


class StoryTextGenerator:
    """
    Turns a child's profile and a theme into an ordered list of story pages.
    """

    def __init__(
        self,
        *,
        models: Sequence[str],
        api_key: str | None = None,
        completion_fn: CompletionCallable | None = None,
        timeout: float = 150.0,
    ) -> None:
        self._models = tuple(models)
        self._api_key = api_key or None
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._timeout = timeout

    @property
    def models(self) -> tuple[str, ...]:
        return self._models

    def generate_pages(
        self,
        child: ChildProfile,
        *,
        theme: str,
        page_count: int,
        temperature: float = 0.8,
    ) -> list[StoryPage]:
        """
        Invoke the configured models (with fallback) and normalize the pages.
        """
        prompt: StoryPrompt = build_story_prompt(child, theme=theme, page_count=page_count)

        result: ChatResult = complete_with_model_fallback(
            models=self._models,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            completion_fn=self._completion_fn,
            temperature=temperature,
            api_key=self._api_key,
            response_format={"type": "json_object"},
            timeout=self._timeout,
        )

        return normalize_story_pages(
            result.text,
            page_count=page_count,
            max_words=child.max_words_per_page,
        )


def normalize_story_pages(raw_text: str, *, page_count: int, max_words: int) -> list[StoryPage]:
    """
    Parse the model's JSON reply into pages renumbered 1..N.
    """
    if not raw_text:
        raise GenerationError("Model reply did not contain a story.")

    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise GenerationError("Failed to parse the story reply as JSON.") from exc

    entries = parsed.get("pages") if isinstance(parsed, dict) else None
    if not isinstance(entries, list) or not entries:
        raise GenerationError("Story reply must contain a non-empty 'pages' list.")

    ordered: list[tuple[int, StoryPage]] = []
    for index, item in enumerate(entries[:page_count], start=1):
        if not isinstance(item, dict):
            raise GenerationError(f"Invalid page payload: {item!r}")
        try:
            number = int(item.get("page") or index)
        except (TypeError, ValueError):
            number = index
        number = max(1, min(999, number))
        title = collapse_whitespace(item.get("title") or "") or f"Page {number}"
        text = limit_words(collapse_whitespace(item.get("text") or ""), max_words)
        ordered.append((number, StoryPage(page=number, title=title, text=text)))

    if len(ordered) < page_count:
        raise GenerationError(
            f"Story reply has {len(ordered)} pages, expected {page_count}."
        )

    ordered.sort(key=lambda pair: pair[0])
    return [
        StoryPage(page=position, title=page.title, text=page.text)
        for position, (_, page) in enumerate(ordered, start=1)
    ]
