"""
Read-only projection of a manifest for clients polling a job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from magicbook.persistence import JobStatus, Manifest, Stage

_STAGE_MESSAGES = {
    Stage.CREATED: "Preparing…",
    Stage.STORY: "Writing the story…",
    Stage.COVER: "Painting the cover…",
    Stage.PDF: "Assembling the PDF…",
}


@dataclass(frozen=True)
class PageProgress:
    page: int
    done: bool
    url: str = ""


@dataclass(frozen=True)
class Progress:
    """Status snapshot returned by ``advance`` and ``read_progress``."""

    id: str
    status: str
    step: str
    done_steps: int
    total_steps: int
    message: str
    error: str = ""
    theme: str = ""
    style: str = "read"
    cover_url: str = ""
    pages: tuple[PageProgress, ...] = field(default_factory=tuple)
    document_url: str = ""
    updated_at: str = ""

    @property
    def finished(self) -> bool:
        return self.status in (JobStatus.DONE.value, JobStatus.FAILED.value)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "step": self.step,
            "done_steps": self.done_steps,
            "total_steps": self.total_steps,
            "message": self.message,
            "error": self.error,
            "theme": self.theme,
            "style": self.style,
            "cover_url": self.cover_url,
            "pages": [{"page": p.page, "done": p.done, "url": p.url} for p in self.pages],
            "document_url": self.document_url,
            "updated_at": self.updated_at,
        }


def total_steps(manifest: Manifest) -> int:
    return 1 + 1 + manifest.page_count + 1


def done_steps(manifest: Manifest) -> int:
    count = 1 if manifest.story_complete else 0
    count += 1 if manifest.cover.ok else 0
    count += min(manifest.page_count, len(manifest.images))
    count += 1 if manifest.status is JobStatus.DONE and manifest.document.ready else 0
    return count


def progress_message(manifest: Manifest) -> str:
    if manifest.status is JobStatus.FAILED:
        return "Failed"
    if manifest.status is JobStatus.DONE:
        return "Book ready"
    if manifest.stage is Stage.PAGE:
        return f"Painting page {manifest.page_cursor}/{manifest.page_count}…"
    return _STAGE_MESSAGES.get(manifest.stage, "Working…")


def project(manifest: Manifest) -> Progress:
    """Build the client-facing view; never mutates ``manifest``."""
    pages: list[PageProgress] = []
    for number in range(1, manifest.page_count + 1):
        image = manifest.image_for(number)
        pages.append(PageProgress(page=number, done=image is not None, url=image.url if image else ""))

    return Progress(
        id=manifest.id,
        status=manifest.status.value,
        step=manifest.step,
        done_steps=done_steps(manifest),
        total_steps=total_steps(manifest),
        message=progress_message(manifest),
        error=manifest.error,
        theme=manifest.theme,
        style=manifest.style,
        cover_url=manifest.cover.url if manifest.cover.ok else "",
        pages=tuple(pages),
        document_url=manifest.document.url,
        updated_at=manifest.updated_at.isoformat(),
    )
