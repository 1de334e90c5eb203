"""
Durable record of one book-generation job.

The job position is an explicit :class:`Stage` plus a page cursor. The
``step`` string (``"created"``, ``"story"``, ``"cover"``, ``"page_3"``,
``"pdf"``, ``"done"``) is derived from them for storage and for clients.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from magicbook.story_generation import ChildProfile, StoryPage


class JobStatus(str, Enum):
    CREATED = "created"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


class Stage(str, Enum):
    CREATED = "created"
    STORY = "story"
    COVER = "cover"
    PAGE = "page"
    PDF = "pdf"
    DONE = "done"


_STAGE_ORDER = {stage: index for index, stage in enumerate(Stage)}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_step(stage: Stage, cursor: int = 0) -> str:
    if stage is Stage.PAGE:
        return f"page_{cursor}"
    return stage.value


def parse_step(step: str) -> tuple[Stage, int]:
    """Parse a ``step`` string back into ``(stage, page_cursor)``."""
    text = str(step or "").strip().lower()
    if text.startswith("page_"):
        try:
            cursor = int(text[len("page_"):])
        except ValueError as exc:
            raise ValueError(f"Invalid page step {step!r}") from exc
        if cursor < 1:
            raise ValueError(f"Page steps start at 1, got {step!r}")
        return Stage.PAGE, cursor
    try:
        return Stage(text), 0
    except ValueError as exc:
        raise ValueError(f"Unknown step {step!r}") from exc


def step_rank(stage: Stage, cursor: int = 0) -> tuple[int, int]:
    """Total order over job positions; later steps compare greater."""
    return _STAGE_ORDER[stage], cursor if stage is Stage.PAGE else 0


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_time(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class InputAsset:
    """The reference photo or the paint-mask after upload."""

    ok: bool = False
    file: str = ""
    storage_key: str = ""
    url: str = ""
    width: int = 0
    height: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "file": self.file,
            "storage_key": self.storage_key,
            "url": self.url,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "InputAsset":
        data = data or {}
        return cls(
            ok=bool(data.get("ok", False)),
            file=str(data.get("file") or ""),
            storage_key=str(data.get("storage_key") or data.get("storageKey") or ""),
            url=str(data.get("url") or ""),
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
        )


@dataclass(frozen=True)
class PageImage:
    """A stamped illustration for one story page."""

    page: int
    file: str
    storage_key: str = ""
    url: str = ""
    prompt: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "file": self.file,
            "storage_key": self.storage_key,
            "url": self.url,
            "prompt": self.prompt,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PageImage":
        return cls(
            page=int(data["page"]),
            file=str(data.get("file") or ""),
            storage_key=str(data.get("storage_key") or data.get("storageKey") or ""),
            url=str(data.get("url") or ""),
            prompt=str(data.get("prompt") or ""),
        )


@dataclass(frozen=True)
class CoverArtifact:
    ok: bool = False
    file: str = ""
    storage_key: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "file": self.file, "storage_key": self.storage_key, "url": self.url}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "CoverArtifact":
        data = data or {}
        return cls(
            ok=bool(data.get("ok", False)),
            file=str(data.get("file") or ""),
            storage_key=str(data.get("storage_key") or data.get("storageKey") or ""),
            url=str(data.get("url") or ""),
        )


@dataclass(frozen=True)
class DocumentRef:
    file: str = ""
    storage_key: str = ""
    url: str = ""

    @property
    def ready(self) -> bool:
        return bool(self.file or self.storage_key)

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "storage_key": self.storage_key, "url": self.url}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "DocumentRef":
        data = data or {}
        return cls(
            file=str(data.get("file") or ""),
            storage_key=str(data.get("storage_key") or data.get("storageKey") or ""),
            url=str(data.get("url") or ""),
        )


@dataclass(frozen=True)
class PendingPrediction:
    """An in-flight asynchronous image job and the step it belongs to."""

    handle: str
    created_at: datetime
    target: str

    def age(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def is_stale(self, now: datetime, max_age: float) -> bool:
        return self.age(now) > max_age

    def to_dict(self) -> dict[str, Any]:
        return {"handle": self.handle, "created_at": _iso(self.created_at), "target": self.target}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PendingPrediction | None":
        if not data or not data.get("handle"):
            return None
        return cls(
            handle=str(data["handle"]),
            created_at=_parse_time(data.get("created_at")) or utcnow(),
            target=str(data.get("target") or ""),
        )


@dataclass
class Manifest:
    """
    Full state of a book job.

    Attributes
    ----------
    stage / page_cursor:
        Current position of the state machine; ``page_cursor`` is only
        meaningful while ``stage`` is :attr:`Stage.PAGE`.
    attempts:
        Consecutive failed attempts at the current step; reset whenever the
        position advances.
    pending:
        The in-flight asynchronous image job, if any.
    """

    id: str
    owner_id: str
    status: JobStatus = JobStatus.CREATED
    stage: Stage = Stage.CREATED
    page_cursor: int = 0
    error: str = ""
    attempts: int = 0
    theme: str = ""
    style: str = "read"
    child: ChildProfile = field(default_factory=lambda: ChildProfile(name="Friend"))
    page_count: int = 8
    photo: InputAsset = field(default_factory=InputAsset)
    mask: InputAsset = field(default_factory=InputAsset)
    pages: list[StoryPage] = field(default_factory=list)
    images: list[PageImage] = field(default_factory=list)
    cover: CoverArtifact = field(default_factory=CoverArtifact)
    document: DocumentRef = field(default_factory=DocumentRef)
    pending: PendingPrediction | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        job_id: str,
        owner_id: str,
        *,
        theme: str = "",
        style: str = "read",
        child: ChildProfile | None = None,
        page_count: int = 8,
        now: datetime | None = None,
    ) -> "Manifest":
        stamp = now or utcnow()
        return cls(
            id=job_id,
            owner_id=owner_id,
            theme=theme,
            style=style,
            child=child or ChildProfile(name="Friend"),
            page_count=page_count,
            created_at=stamp,
            updated_at=stamp,
        )

    # ------------------------------------------------------------------ position

    @property
    def step(self) -> str:
        return format_step(self.stage, self.page_cursor)

    @property
    def rank(self) -> tuple[int, int]:
        return step_rank(self.stage, self.page_cursor)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.DONE, JobStatus.FAILED)

    def move_to(self, stage: Stage, cursor: int = 0) -> None:
        """Advance the position; moving backwards is refused."""
        if stage is Stage.PAGE and not 1 <= cursor <= self.page_count:
            raise ValueError(f"Page cursor {cursor} outside 1..{self.page_count}")
        target = step_rank(stage, cursor)
        if target < self.rank:
            raise ValueError(f"Refusing to move job {self.id} from {self.step} back to {format_step(stage, cursor)}")
        if target > self.rank:
            self.attempts = 0
        self.stage = stage
        self.page_cursor = cursor if stage is Stage.PAGE else 0

    def next_after_current(self) -> tuple[Stage, int]:
        """Position following the current cover/page step."""
        if self.stage is Stage.COVER:
            return Stage.PAGE, 1
        if self.stage is Stage.PAGE and self.page_cursor < self.page_count:
            return Stage.PAGE, self.page_cursor + 1
        if self.stage is Stage.PAGE:
            return Stage.PDF, 0
        raise ValueError(f"No image step follows {self.step}")

    def touch(self, now: datetime | None = None) -> None:
        stamp = now or utcnow()
        if stamp > self.updated_at:
            self.updated_at = stamp

    # ------------------------------------------------------------------ content helpers

    def story_page(self, page: int) -> StoryPage | None:
        return next((entry for entry in self.pages if entry.page == page), None)

    def image_for(self, page: int) -> PageImage | None:
        return next((entry for entry in self.images if entry.page == page), None)

    def upsert_image(self, entry: PageImage) -> None:
        others = [image for image in self.images if image.page != entry.page]
        self.images = sorted([*others, entry], key=lambda image: image.page)

    @property
    def story_complete(self) -> bool:
        return len(self.pages) >= self.page_count and all(page.text for page in self.pages)

    @property
    def completed_pages(self) -> list[int]:
        return [image.page for image in self.images]

    # ------------------------------------------------------------------ serialization

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "step": self.step,
            "error": self.error,
            "attempts": self.attempts,
            "theme": self.theme,
            "style": self.style,
            "child": self.child.as_dict(),
            "page_count": self.page_count,
            "photo": self.photo.to_dict(),
            "mask": self.mask.to_dict(),
            "pages": [page.as_dict() for page in self.pages],
            "images": [image.to_dict() for image in self.images],
            "cover": self.cover.to_dict(),
            "document": self.document.to_dict(),
            "pending": self.pending.to_dict() if self.pending else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Manifest":
        if not payload.get("id"):
            raise ValueError("Manifest payload must include 'id'.")

        stage, cursor = parse_step(payload.get("step") or "created")
        child_data = payload.get("child") or {}
        child = ChildProfile.from_mapping(child_data) if child_data.get("name") else ChildProfile(name="Friend")
        created_at = _parse_time(payload.get("created_at") or payload.get("createdAt")) or utcnow()
        updated_at = _parse_time(payload.get("updated_at") or payload.get("updatedAt")) or created_at

        document = DocumentRef.from_dict(payload.get("document"))
        legacy_pdf = str(payload.get("pdf") or "")
        if not document.ready and legacy_pdf:
            document = replace(document, url=legacy_pdf, storage_key=str(payload.get("pdf_storageKey") or ""))

        return cls(
            id=str(payload["id"]),
            owner_id=str(payload.get("owner_id") or payload.get("ownerId") or ""),
            status=JobStatus(str(payload.get("status") or "created")),
            stage=stage,
            page_cursor=cursor,
            error=str(payload.get("error") or ""),
            attempts=int(payload.get("attempts") or 0),
            theme=str(payload.get("theme") or ""),
            style=str(payload.get("style") or "read"),
            child=child,
            page_count=int(payload.get("page_count") or len(payload.get("pages") or []) or 8),
            photo=InputAsset.from_dict(payload.get("photo")),
            mask=InputAsset.from_dict(payload.get("mask")),
            pages=[StoryPage.from_mapping(page) for page in payload.get("pages") or []],
            images=sorted(
                (PageImage.from_dict(image) for image in payload.get("images") or []),
                key=lambda image: image.page,
            ),
            cover=CoverArtifact.from_dict(payload.get("cover")),
            document=document,
            pending=PendingPrediction.from_dict(payload.get("pending")),
            created_at=created_at,
            updated_at=updated_at,
        )
