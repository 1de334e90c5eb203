"""
Assemble stamped storybook images into a printable, image-only PDF.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from magicbook.common.errors import DocumentAssemblyError

logger = logging.getLogger(__name__)

PAGE_SIZES = {
    "a4": A4,
    "letter": LETTER,
    "square": (8 * inch, 8 * inch),
}

ImageSlot = Optional[Path | str]


def resolve_page_size(name: str | tuple[float, float]) -> tuple[float, float]:
    if isinstance(name, tuple):
        return name
    try:
        return PAGE_SIZES[name.lower()]
    except KeyError as exc:
        raise ValueError(f"Unknown page size {name!r}; expected one of {sorted(PAGE_SIZES)}.") from exc


def fit_box(
    img_width: float,
    img_height: float,
    page_width: float,
    page_height: float,
) -> tuple[float, float, float, float]:
    """Return ``(x, y, width, height)`` of the image scaled to fit and centered."""
    scale = min(page_width / img_width, page_height / img_height)
    draw_width = img_width * scale
    draw_height = img_height * scale
    return (page_width - draw_width) / 2, (page_height - draw_height) / 2, draw_width, draw_height


class DocumentAssembler:
    """
    Render the cover and page illustrations into one PDF, one image per page.

    Each page gets a white background and the image fit-scaled with its aspect
    ratio preserved, centered on the page.
    """

    def __init__(self, *, page_size: str | tuple[float, float] = "a4") -> None:
        self.page_size = resolve_page_size(page_size)

    def assemble(
        self,
        cover: ImageSlot,
        pages: Sequence[ImageSlot],
        output_path: Path | str,
        *,
        strict: bool = False,
    ) -> Path:
        """
        Write the document and return its path.

        Missing, unreadable or unplaceable slots are skipped with a warning.
        With ``strict=True`` such a slot raises ``DocumentAssemblyError``
        instead, so every image given ends up on its own page.
        """
        output_file = Path(output_path)
        slots = [Path(slot) if slot else None for slot in [cover, *pages]]

        readers: list[ImageReader] = []
        for slot in slots:
            try:
                readers.append(self._load(slot))
            except DocumentAssemblyError as exc:
                if strict:
                    raise
                logger.warning("Skipping image: %s", exc)

        if not readers:
            raise DocumentAssemblyError("No images available to assemble the document.")

        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            pdf = canvas.Canvas(str(output_file), pagesize=self.page_size)
        except OSError as exc:
            raise DocumentAssemblyError(f"Cannot write document to {output_file}") from exc

        for reader in readers:
            self._draw_page(pdf, reader)
            pdf.showPage()

        try:
            pdf.save()
        except OSError as exc:
            raise DocumentAssemblyError(f"Cannot write document to {output_file}") from exc

        logger.info("Assembled %d-page document at %s", len(readers), output_file)
        return output_file

    def _load(self, slot: Path | None) -> ImageReader:
        """Open a slot and place it once on a scratch canvas so the real pass cannot fail halfway."""
        if slot is None or not slot.exists():
            raise DocumentAssemblyError(f"Missing image {slot}")
        try:
            reader = ImageReader(str(slot))
            reader.getSize()
            reader.getRGBData()
            self._draw_page(canvas.Canvas(BytesIO(), pagesize=self.page_size), reader)
        except Exception as exc:
            raise DocumentAssemblyError(f"Cannot place image {slot}: {exc}") from exc
        return reader

    def _draw_page(self, pdf: canvas.Canvas, reader: ImageReader) -> None:
        width, height = self.page_size
        img_width, img_height = reader.getSize()
        x, y, draw_width, draw_height = fit_box(img_width, img_height, width, height)
        pdf.setFillColor(colors.white)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)
        pdf.drawImage(
            reader,
            x,
            y,
            draw_width,
            draw_height,
            preserveAspectRatio=True,
            mask="auto",
        )
