"""
Prompt construction utilities for the story text generation step.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from .profile import ChildProfile
from .themes import theme_description


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the language model.
    """

    system: str
    user: str


def build_story_prompt(
    child: ChildProfile,
    *,
    theme: str,
    page_count: int,
) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a paginated story from the LLM.
    """
    max_words = child.max_words_per_page

    system_prompt = "\n".join(
        [
            "You are a children's book author.",
            "Write a short, positive story appropriate for the child's age.",
            "Return the story as PAGES (each page = one paragraph).",
            "Each page must have: page (number), title (short string), "
            "text (ONE PARAGRAPH, no line breaks).",
            "Approximate limit: up to ~55 words if the child is 7 or younger; up to ~75 otherwise.",
            "Rules:",
            "- The child's name must appear in the text and the child is the protagonist.",
            "- Simple, fun and magical language, with a small lesson.",
            f"- Use {child.gender} grammatical gender when referring to the child.",
            'Reply ONLY with valid JSON in the format: {"pages":[...]}',
        ]
    )

    user_payload = {
        "child": child.as_dict(),
        "theme": theme,
        "theme_desc": theme_description(theme),
        "requirements": {
            "pages": page_count,
            "max_words_per_page": max_words,
            "must_include_child_name_in_text": True,
            "one_paragraph_per_page": True,
        },
    }

    return StoryPrompt(system=system_prompt, user=json.dumps(user_payload, ensure_ascii=False))
