"""
Prompt construction utilities for storybook illustrations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from magicbook.story_generation.themes import normalize_style, theme_description

IDENTITY_LOCK = (
    "Use the child from the reference image as the main character.",
    "Keep ALL of the child's original features (face, hair, skin tone, traits). Do not alter identity.",
    "Keep the identity consistent across every page (same face, same hairstyle, same skin tone).",
)

NO_TEXT_RULE = "Do NOT write any text or captions in the generated image; text is applied afterwards."

COLORING_STYLE = (
    "Style: coloring book page.",
    "BLACK AND WHITE, well defined outlines, clean strokes, thicker lines.",
    "NO colors, NO gradients, NO shadows, NO painting, NO realistic textures.",
    "White (or very light) background with few background details.",
)

ILLUSTRATED_STYLE = (
    "Style: semi-realistic children's illustration, cheerful, pleasant colors, soft light.",
)


@dataclass(frozen=True)
class ImagePrompt:
    """Prompt sent to the image backend for a single cover or page."""

    text: str

    def __str__(self) -> str:
        return self.text


def _style_lines(style: str | None) -> Sequence[str]:
    return COLORING_STYLE if normalize_style(style) == "color" else ILLUSTRATED_STYLE


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"


def build_scene_prompt(
    paragraph: str,
    *,
    theme: str,
    child_name: str | None = None,
    style: str | None = None,
) -> ImagePrompt:
    """
    Build the prompt used to illustrate one story paragraph.

    Parameters
    ----------
    paragraph:
        Page text the scene should depict.
    theme:
        Theme key; its description grounds the setting.
    child_name:
        Optional name, passed as context only.
    style:
        ``color`` yields a black-and-white coloring page, anything else the
        colorful illustrated style.
    """
    text = " ".join(str(paragraph or "").split())
    if not text:
        raise ValueError("paragraph must be a non-empty string.")

    rules = [
        *IDENTITY_LOCK,
        f"Story theme: {theme_description(theme)}.",
        *_style_lines(style),
        "Composition: the child is naturally integrated into the scene, "
        "with action and emotion matching the text.",
        NO_TEXT_RULE,
    ]
    name = str(child_name or "").strip()
    if name:
        rules.append(f"Name (context): {name}.")

    sections = [
        f'TASK\nCreate ONE SCENE for this text:\n"{text}"',
        _format_bullet_section("IMPORTANT RULES", rules),
    ]
    return ImagePrompt(text="\n\n".join(sections))


def build_cover_prompt(
    *,
    theme: str,
    child_name: str | None = None,
    style: str | None = None,
) -> ImagePrompt:
    """Build the prompt for the book cover illustration."""
    rules = [
        *_style_lines(style),
        *IDENTITY_LOCK,
        f"Theme: {theme_description(theme)}.",
        "Cover scene: joyful, magical, positive, with the child featured in the center.",
        NO_TEXT_RULE,
    ]
    name = str(child_name or "").strip()
    if name:
        rules.append(f"Name (context): {name}.")

    sections = [
        "TASK\nCreate a children's book COVER.",
        _format_bullet_section("IMPORTANT RULES", rules),
    ]
    return ImagePrompt(text="\n\n".join(sections))
