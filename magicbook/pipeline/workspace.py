"""
File layout of one job's local working directory.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from magicbook.persistence import job_directory

PHOTO_FILENAME = "edit_base.png"
MASK_FILENAME = "mask_base.png"
COVER_BASE_FILENAME = "cover.png"
COVER_FILENAME = "cover_final.png"


def page_base_filename(page: int) -> str:
    return f"page_{page:02d}.png"


def page_filename(page: int) -> str:
    return f"page_{page:02d}_final.png"


def document_filename(job_id: str) -> str:
    return f"book-{job_id}.pdf"


@dataclass(frozen=True)
class JobWorkspace:
    root: Path
    job_id: str

    @property
    def directory(self) -> Path:
        return job_directory(self.root, self.job_id)

    def ensure(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def file(self, name: str) -> Path:
        return self.directory / name

    @property
    def photo(self) -> Path:
        return self.file(PHOTO_FILENAME)

    @property
    def mask(self) -> Path:
        return self.file(MASK_FILENAME)

    @property
    def cover_base(self) -> Path:
        return self.file(COVER_BASE_FILENAME)

    @property
    def cover(self) -> Path:
        return self.file(COVER_FILENAME)

    def page_base(self, page: int) -> Path:
        return self.file(page_base_filename(page))

    def page(self, page: int) -> Path:
        return self.file(page_filename(page))

    @property
    def document(self) -> Path:
        return self.file(document_filename(self.job_id))
