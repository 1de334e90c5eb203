"""
Resolution-independent text panel layout for stamped pages.

Everything is expressed as fractions of the image size so the same geometry
works for 1024 px fallback edits and 2K primary outputs alike. Text is wrapped
with a monospace width estimate (average glyph width of 0.56 x font size) and
shrunk until it fits the panel.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

ELLIPSIS = "…"
AVG_GLYPH_WIDTH = 0.56
MIN_CHARS_PER_LINE = 18


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass(frozen=True)
class PanelGeometry:
    """
    Placement and typography of the semi-opaque text panel.

    Attributes
    ----------
    position:
        ``"bottom"`` (interior pages) or ``"top"`` (cover).
    pad / band_height / radius / inner_pad_x:
        Outer padding (fraction of width), band height (fraction of height),
        corner radius (fraction of the shorter side) and horizontal inner
        padding (fraction of the band width).
    top_pad / bottom_pad:
        Vertical inner padding as fractions of the band height.
    title_size / body_size:
        Starting font sizes as ``(fraction of height, min px, max px)``.
    title_floor / body_floor:
        Smallest font sizes as ``(fraction of height, absolute min px)``.
    """

    position: str
    pad: float
    band_height: float
    radius: float
    inner_pad_x: float
    top_pad: float
    bottom_pad: float
    title_size: tuple[float, int, int]
    body_size: tuple[float, int, int]
    title_floor: tuple[float, int]
    body_floor: tuple[float, int]
    title_chars_ratio: float = 0.82
    title_line_gap: float = 1.15
    body_line_gap: float = 1.28
    spacer: float = 0.55
    opacity: float = 0.50
    shadow_offset: float = 0.008
    shadow_blur: float = 0.01
    shadow_opacity: float = 0.25


PAGE_PANEL = PanelGeometry(
    position="bottom",
    pad=0.04,
    band_height=0.32,
    radius=0.03,
    inner_pad_x=0.045,
    top_pad=0.18,
    bottom_pad=0.16,
    title_size=(0.064, 34, 76),
    body_size=(0.052, 30, 60),
    title_floor=(0.0273, 10),
    body_floor=(0.0195, 8),
)

COVER_PANEL = PanelGeometry(
    position="top",
    pad=0.06,
    band_height=0.22,
    radius=0.035,
    inner_pad_x=0.06,
    top_pad=0.16,
    bottom_pad=0.12,
    title_size=(0.07, 34, 78),
    body_size=(0.043, 22, 48),
    title_floor=(0.0273, 10),
    body_floor=(0.0195, 8),
    title_chars_ratio=0.85,
    body_line_gap=1.25,
    spacer=0.35,
    opacity=0.86,
    shadow_offset=0.0098,
    shadow_blur=0.0117,
    shadow_opacity=0.28,
)

PANELS = {"page": PAGE_PANEL, "cover": COVER_PANEL}


@dataclass(frozen=True)
class PanelBox:
    x: int
    y: int
    width: int
    height: int
    radius: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


@dataclass(frozen=True)
class TextLayout:
    """Result of fitting a title and body into a panel."""

    panel: PanelBox
    text_x: int
    text_top: int
    usable_width: int
    usable_height: int
    title_size: int
    body_size: int
    title_lines: tuple[str, ...]
    body_lines: tuple[str, ...]
    title_gap: int
    body_gap: int
    spacer: int
    clipped: bool = False

    @property
    def used_height(self) -> int:
        return _used_height(self.title_lines, self.body_lines, self.title_gap, self.body_gap, self.spacer)

    @property
    def fits(self) -> bool:
        return self.used_height <= self.usable_height


def wrap_lines(text: str, max_chars: int) -> list[str]:
    """Greedy word wrap; words longer than a line are hard-split."""
    limit = max(1, max_chars)
    lines: list[str] = []
    current = ""
    for word in str(text or "").split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            lines.append(current)
        while len(word) > limit:
            lines.append(word[:limit])
            word = word[limit:]
        current = word
    if current:
        lines.append(current)
    return lines


def chars_per_line(usable_width: int, font_size: int) -> int:
    return max(MIN_CHARS_PER_LINE, math.floor(usable_width / (AVG_GLYPH_WIDTH * max(1, font_size))))


def _used_height(
    title_lines: tuple[str, ...],
    body_lines: tuple[str, ...],
    title_gap: int,
    body_gap: int,
    spacer: int,
) -> int:
    title_h = len(title_lines) * title_gap
    body_h = len(body_lines) * body_gap
    gap = spacer if title_lines and body_lines else 0
    return title_h + gap + body_h


def panel_box(width: int, height: int, geometry: PanelGeometry) -> PanelBox:
    pad = _round(width * geometry.pad)
    band_h = _round(height * geometry.band_height)
    band_w = max(1, width - pad * 2)
    y = pad if geometry.position == "top" else height - band_h - pad
    return PanelBox(
        x=pad,
        y=y,
        width=band_w,
        height=band_h,
        radius=_round(min(width, height) * geometry.radius),
    )


def _start_and_floor(height: int, size: tuple[float, int, int], floor: tuple[float, int]) -> tuple[int, int]:
    frac, low, high = size
    start = _clamp(_round(height * frac), low, high)
    floor_frac, floor_min = floor
    floor_px = min(start, max(floor_min, _round(height * floor_frac)))
    return start, floor_px


def _clip(lines: list[str], keep: int) -> list[str]:
    if keep <= 0:
        return []
    kept = lines[:keep]
    if len(kept) < len(lines):
        kept[-1] = kept[-1].rstrip(" ,;:.") + ELLIPSIS
    return kept


def fit_text(
    width: int,
    height: int,
    title: str,
    body: str,
    geometry: PanelGeometry = PAGE_PANEL,
) -> TextLayout:
    """
    Wrap ``title`` and ``body`` into the panel, shrinking fonts until they fit.

    The body font shrinks first, then the title font, one pixel at a time.
    If the text still overflows with both fonts at their floors, trailing body
    lines (then title lines) are dropped and the last kept line gets an
    ellipsis, so the returned layout always fits.
    """
    box = panel_box(width, height, geometry)
    inner_x = _round(box.width * geometry.inner_pad_x)
    top_pad = _round(box.height * geometry.top_pad)
    bottom_pad = _round(box.height * geometry.bottom_pad)
    usable_w = max(1, box.width - inner_x * 2)
    usable_h = max(1, box.height - top_pad - bottom_pad)

    title_text = " ".join(str(title or "").split())
    body_text = " ".join(str(body or "").split())

    title_size, title_floor = _start_and_floor(height, geometry.title_size, geometry.title_floor)
    body_size, body_floor = _start_and_floor(height, geometry.body_size, geometry.body_floor)

    def build(ts: int, bs: int) -> tuple[list[str], list[str], int, int, int]:
        title_chars = max(MIN_CHARS_PER_LINE, math.floor(chars_per_line(usable_w, ts) * geometry.title_chars_ratio))
        title_lines = wrap_lines(title_text, title_chars) if title_text else []
        body_lines = wrap_lines(body_text, chars_per_line(usable_w, bs)) if body_text else []
        return (
            title_lines,
            body_lines,
            _round(ts * geometry.title_line_gap),
            _round(bs * geometry.body_line_gap),
            _round(bs * geometry.spacer),
        )

    title_lines, body_lines, title_gap, body_gap, spacer = build(title_size, body_size)
    while _used_height(tuple(title_lines), tuple(body_lines), title_gap, body_gap, spacer) > usable_h:
        if body_size > body_floor:
            body_size -= 1
        elif title_size > title_floor:
            title_size -= 1
        else:
            break
        title_lines, body_lines, title_gap, body_gap, spacer = build(title_size, body_size)

    clipped = False
    while body_lines and _used_height(tuple(title_lines), tuple(body_lines), title_gap, body_gap, spacer) > usable_h:
        clipped = True
        body_lines = _clip(body_lines, len(body_lines) - 1) if len(body_lines) > 1 else []
    while title_lines and _used_height(tuple(title_lines), tuple(body_lines), title_gap, body_gap, spacer) > usable_h:
        clipped = True
        title_lines = _clip(title_lines, len(title_lines) - 1) if len(title_lines) > 1 else []

    return TextLayout(
        panel=box,
        text_x=box.x + inner_x,
        text_top=box.y + top_pad,
        usable_width=usable_w,
        usable_height=usable_h,
        title_size=title_size,
        body_size=body_size,
        title_lines=tuple(title_lines),
        body_lines=tuple(body_lines),
        title_gap=title_gap,
        body_gap=body_gap,
        spacer=spacer,
        clipped=clipped,
    )
