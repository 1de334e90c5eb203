"""
Story generation utilities for crafting personalized storybook text.
"""

from .profile import ChildProfile
from .prompting import StoryPrompt, build_story_prompt
from .story_service import StoryPage, StoryTextGenerator, normalize_story_pages
from .themes import THEMES, normalize_style, theme_description, theme_label

__all__ = [
    "ChildProfile",
    "StoryPage",
    "StoryPrompt",
    "StoryTextGenerator",
    "THEMES",
    "build_story_prompt",
    "normalize_story_pages",
    "normalize_style",
    "theme_description",
    "theme_label",
]
