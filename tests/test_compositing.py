"""Tests for text fitting, stamping and PDF assembly."""

from __future__ import annotations

import re

import pytest
from PIL import Image

from magicbook.common.errors import DocumentAssemblyError
from magicbook.compositing import COVER_PANEL, PAGE_PANEL, fit_text, stamp, wrap_lines
from magicbook.pdf_generation import DocumentAssembler, fit_box

SENTENCE = "Mia and her cat fly up to the moon to see the stars".split()
LONG_BODY = " ".join((SENTENCE * 6)[:75])


def _pdf_pages(path) -> int:
    return len(re.findall(rb"/Type /Page[^s]", path.read_bytes()))


class TestFitText:
    """Greedy wrap plus shrink-to-fit."""

    def test_wrap_hard_splits_long_words(self):
        assert wrap_lines("a " + "x" * 25, 10) == ["a", "x" * 10, "x" * 10, "x" * 5]

    def test_seventy_five_words_fit_on_a_1024_page(self):
        layout = fit_text(1024, 1024, "A Starry Night", LONG_BODY, PAGE_PANEL)

        assert layout.fits
        assert not layout.clipped
        assert " ".join(layout.body_lines).split() == LONG_BODY.split()

    def test_tiny_image_clips_but_still_fits(self):
        layout = fit_text(64, 64, "A Very Long Title For A Tiny Page", LONG_BODY, PAGE_PANEL)

        assert layout.fits
        assert layout.clipped

    def test_body_shrinks_before_title(self):
        roomy = fit_text(1024, 1024, "Title", "Short body.", PAGE_PANEL)
        crowded = fit_text(1024, 1024, "Title", " ".join([LONG_BODY] * 2), PAGE_PANEL)

        assert crowded.body_size < roomy.body_size
        if crowded.title_size < roomy.title_size:
            assert crowded.body_size == 20

    def test_cover_panel_sits_at_the_top(self):
        cover = fit_text(1024, 1024, "My Magic Book", "Mia's adventure", COVER_PANEL)
        page = fit_text(1024, 1024, "Title", "Body", PAGE_PANEL)

        assert cover.panel.y < page.panel.y
        assert cover.panel.height < page.panel.height


class TestStamp:
    """Rendering the panel onto the illustration."""

    @pytest.mark.parametrize("kind", ["page", "cover"])
    def test_output_keeps_size_and_mode(self, kind):
        image = Image.new("RGB", (512, 512), (30, 90, 160))

        stamped = stamp(image, "Title", LONG_BODY, kind)

        assert stamped.size == image.size
        assert stamped.mode == "RGB"
        assert stamped.tobytes() != image.tobytes()
        assert image.getpixel((256, 256)) == (30, 90, 160)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            stamp(Image.new("RGB", (64, 64)), "t", "b", "poster")


class TestDocumentAssembler:
    """One image per PDF page."""

    def _images(self, tmp_path, count, size=(300, 200)):
        paths = []
        for index in range(count):
            path = tmp_path / f"img_{index}.png"
            Image.new("RGB", size, (index * 40, 100, 150)).save(path)
            paths.append(path)
        return paths

    def test_one_page_per_image(self, tmp_path):
        cover, *pages = self._images(tmp_path, 4)

        output = DocumentAssembler(page_size="a4").assemble(cover, pages, tmp_path / "out" / "book.pdf")

        assert output.exists()
        assert _pdf_pages(output) == 4

    def test_missing_slots_are_skipped(self, tmp_path):
        cover, page = self._images(tmp_path, 2)

        output = DocumentAssembler().assemble(cover, [page, None, tmp_path / "gone.png"], tmp_path / "book.pdf")

        assert _pdf_pages(output) == 2

    def test_unreadable_image_is_skipped(self, tmp_path):
        (cover,) = self._images(tmp_path, 1)
        broken = tmp_path / "broken.png"
        broken.write_bytes(b"not a png")

        output = DocumentAssembler().assemble(cover, [broken], tmp_path / "book.pdf")

        assert _pdf_pages(output) == 1

    @pytest.mark.parametrize("failing", ["img_1", "img_2"])
    def test_unplaceable_image_leaves_no_blank_page(self, tmp_path, failing):
        class PickyAssembler(DocumentAssembler):
            def _draw_page(self, pdf, reader):
                if failing in str(reader.fileName):
                    raise ValueError("cannot place image")
                super()._draw_page(pdf, reader)

        cover, *pages = self._images(tmp_path, 3)

        output = PickyAssembler().assemble(cover, pages, tmp_path / "book.pdf")

        assert _pdf_pages(output) == 2

    def test_strict_mode_refuses_incomplete_documents(self, tmp_path):
        cover, page = self._images(tmp_path, 2)

        with pytest.raises(DocumentAssemblyError):
            DocumentAssembler().assemble(cover, [page, tmp_path / "gone.png"], tmp_path / "book.pdf", strict=True)
        with pytest.raises(DocumentAssemblyError):
            DocumentAssembler().assemble(cover, [page, None], tmp_path / "book.pdf", strict=True)
        assert not (tmp_path / "book.pdf").exists()

    def test_nothing_to_assemble(self, tmp_path):
        with pytest.raises(DocumentAssemblyError):
            DocumentAssembler().assemble(None, [tmp_path / "missing.png"], tmp_path / "book.pdf")

    def test_fit_box_preserves_aspect_and_centers(self):
        x, y, width, height = fit_box(300, 200, 600, 800)

        assert (width, height) == (600, 400)
        assert (x, y) == (0, 200)
