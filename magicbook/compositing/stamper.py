"""
Stamp story text onto illustrations with a semi-opaque rounded panel.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Sequence

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .layout import PANELS, PanelGeometry, TextLayout, fit_text

logger = logging.getLogger(__name__)

TEXT_COLOR = (15, 23, 42, 255)

_BOLD_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "LiberationSans-Bold.ttf",
    "Arial Bold.ttf",
    "Arial-Bold.ttf",
    "arialbd.ttf",
    "Helvetica-Bold.ttf",
)

_FONT_SEARCH_ROOTS = (
    Path("/usr/share/fonts"),
    Path("/usr/local/share/fonts"),
    Path("/Library/Fonts"),
    Path("/System/Library/Fonts"),
    Path.home() / "Library" / "Fonts",
    Path("C:/Windows/Fonts"),
)


@lru_cache(maxsize=1)
def _find_bold_font() -> str | None:
    for candidate in _BOLD_FONT_CANDIDATES:
        try:
            ImageFont.truetype(candidate, 12)
            return candidate
        except OSError:
            pass
    for root in _FONT_SEARCH_ROOTS:
        if not root.exists():
            continue
        for candidate in _BOLD_FONT_CANDIDATES:
            matches = sorted(root.rglob(candidate))
            if matches:
                return str(matches[0])
    logger.info("No bold TrueType font found; using Pillow's default font.")
    return None


@lru_cache(maxsize=64)
def load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    font_path = _find_bold_font()
    if font_path is not None:
        return ImageFont.truetype(font_path, size)
    return ImageFont.load_default(size=size)


def _resolve_geometry(kind: str | PanelGeometry) -> PanelGeometry:
    if isinstance(kind, PanelGeometry):
        return kind
    try:
        return PANELS[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown panel kind {kind!r}; expected one of {sorted(PANELS)}.") from exc


def _draw_lines(
    draw: ImageDraw.ImageDraw,
    lines: Sequence[str],
    *,
    x: int,
    top: int,
    gap: int,
    size: int,
) -> int:
    font = load_font(size)
    y = top
    for line in lines:
        draw.text((x, y), line, font=font, fill=TEXT_COLOR)
        y += gap
    return y


def render_layout(image: Image.Image, layout: TextLayout, geometry: PanelGeometry) -> Image.Image:
    """Composite the panel and the laid-out text over ``image``."""
    base = image.convert("RGBA")
    height = base.height
    box = layout.panel
    rect = (box.x, box.y, box.right, box.bottom)

    shadow = Image.new("RGBA", base.size, (0, 0, 0, 0))
    offset = max(1, round(height * geometry.shadow_offset))
    ImageDraw.Draw(shadow).rounded_rectangle(
        (box.x, box.y + offset, box.right, box.bottom + offset),
        radius=box.radius,
        fill=(0, 0, 0, round(255 * geometry.shadow_opacity)),
    )
    shadow = shadow.filter(ImageFilter.GaussianBlur(max(1, round(height * geometry.shadow_blur))))
    base = Image.alpha_composite(base, shadow)

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    draw.rounded_rectangle(rect, radius=box.radius, fill=(255, 255, 255, round(255 * geometry.opacity)))

    y = _draw_lines(
        draw,
        layout.title_lines,
        x=layout.text_x,
        top=layout.text_top,
        gap=layout.title_gap,
        size=layout.title_size,
    )
    if layout.title_lines and layout.body_lines:
        y += layout.spacer
    _draw_lines(
        draw,
        layout.body_lines,
        x=layout.text_x,
        top=y,
        gap=layout.body_gap,
        size=layout.body_size,
    )

    return Image.alpha_composite(base, overlay).convert("RGB")


def stamp(
    image: Image.Image,
    title: str,
    body: str,
    kind: str | PanelGeometry = "page",
) -> Image.Image:
    """
    Return a copy of ``image`` with ``title`` and ``body`` printed on a panel.

    ``kind`` selects the panel geometry: ``"page"`` for the large bottom band
    of interior pages or ``"cover"`` for the smaller top band.
    """
    geometry = _resolve_geometry(kind)
    width, height = image.size
    layout = fit_text(width, height, title, body, geometry)
    if layout.clipped:
        logger.warning("Text clipped to fit a %dx%d %s panel.", width, height, geometry.position)
    return render_layout(image, layout, geometry)
