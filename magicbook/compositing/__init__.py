"""
Text compositing for storybook pages and covers.
"""

from .layout import COVER_PANEL, PAGE_PANEL, PanelGeometry, TextLayout, fit_text, wrap_lines
from .stamper import stamp

__all__ = [
    "COVER_PANEL",
    "PAGE_PANEL",
    "PanelGeometry",
    "TextLayout",
    "fit_text",
    "stamp",
    "wrap_lines",
]
