"""
AI image generation package for magicbook.
"""

from .gateway import PollResult, ProviderGateway
from .openai_fallback import OpenAIImageEditor
from .outputs import InlineOutput, UrlOutput, load_image_output, parse_image_output
from .prompting import ImagePrompt, build_cover_prompt, build_scene_prompt
from .replicate_service import ReplicatePredictionBackend, classify_replicate_error

__all__ = [
    "ImagePrompt",
    "InlineOutput",
    "OpenAIImageEditor",
    "PollResult",
    "ProviderGateway",
    "ReplicatePredictionBackend",
    "UrlOutput",
    "build_cover_prompt",
    "build_scene_prompt",
    "classify_replicate_error",
    "load_image_output",
    "parse_image_output",
]
