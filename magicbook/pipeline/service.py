"""
External interface of the book pipeline.

``BookJobService`` is what a web handler or the CLI talks to: create a job,
upload the photo and mask, advance one step per call, read progress and
fetch the finished document.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from magicbook.ai_generation import ProviderGateway
from magicbook.common.config import GatewayConfig, PersistenceConfig, PipelineConfig
from magicbook.common.errors import ConflictError, DocumentNotReadyError, NotFoundError
from magicbook.pdf_generation import DocumentAssembler
from magicbook.persistence import (
    ArtifactStorage,
    InputAsset,
    JobStatus,
    LocalArtifactStorage,
    LocalManifestCache,
    Manifest,
    ManifestStore,
    Stage,
    SupabaseArtifactStorage,
    SupabaseBookTable,
    utcnow,
)
from magicbook.story_generation import THEMES, ChildProfile, normalize_style
from magicbook.story_generation.themes import DEFAULT_THEME

from .executor import Principal, StepExecutor, authorize
from .inputs import ImageUpload, prepare_inputs
from .locks import JobLocks
from .progress import Progress, project

logger = logging.getLogger(__name__)

MIN_PAGES = 4
MAX_PAGES = 12


def clamp_page_count(value: Any, default: int = 8) -> int:
    try:
        count = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        count = default
    return max(MIN_PAGES, min(MAX_PAGES, count))


@dataclass(frozen=True)
class BookRequest:
    """Story parameters chosen when a job is created."""

    child: ChildProfile
    theme: str = DEFAULT_THEME
    style: str = "read"
    page_count: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BookRequest":
        child_data = data.get("child") if isinstance(data.get("child"), Mapping) else data
        return cls(
            child=ChildProfile.from_mapping(child_data),
            theme=str(data.get("theme") or DEFAULT_THEME),
            style=str(data.get("style") or "read"),
            page_count=data.get("page_count") or data.get("pages"),
        )


class BookJobService:
    """
    Entry points for one deployment.

    Use :meth:`from_config` to wire the real collaborators; tests pass fakes
    directly.
    """

    def __init__(
        self,
        *,
        store: ManifestStore,
        gateway: ProviderGateway,
        storage: ArtifactStorage,
        config: PipelineConfig,
        work_root: Path | str,
        assembler: DocumentAssembler | None = None,
        locks: JobLocks | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._config = config
        self._locks = locks or JobLocks()
        self._executor = StepExecutor(
            store=store,
            gateway=gateway,
            storage=storage,
            config=config,
            work_root=work_root,
            assembler=assembler,
            locks=self._locks,
        )

    @classmethod
    def from_config(
        cls,
        gateway_config: GatewayConfig,
        persistence_config: PersistenceConfig,
        pipeline_config: PipelineConfig,
    ) -> "BookJobService":
        work_root = Path(persistence_config.work_root)
        remote = None
        if persistence_config.remote_configured:
            remote = SupabaseBookTable(persistence_config)
            storage: ArtifactStorage = SupabaseArtifactStorage(persistence_config)
        else:
            logger.info("Supabase is not configured; using local storage under %s", work_root)
            storage = LocalArtifactStorage(work_root / "storage")

        store = ManifestStore(
            LocalManifestCache(work_root),
            remote,
            require_remote=persistence_config.require_remote,
        )
        return cls(
            store=store,
            gateway=ProviderGateway(gateway_config),
            storage=storage,
            config=pipeline_config,
            work_root=work_root,
        )

    @property
    def executor(self) -> StepExecutor:
        return self._executor

    def _load(self, principal: Principal, job_id: str) -> Manifest:
        manifest = self._store.load(job_id, principal.access_token)
        authorize(principal, manifest)
        return manifest

    # ------------------------------------------------------------------ operations

    def create_job(self, principal: Principal, request: BookRequest) -> Manifest:
        theme = request.theme if request.theme in THEMES else DEFAULT_THEME
        manifest = Manifest.new(
            uuid.uuid4().hex,
            principal.user_id,
            theme=theme,
            style=normalize_style(request.style),
            child=request.child,
            page_count=clamp_page_count(request.page_count, self._config.page_count),
            now=utcnow(),
        )
        self._store.save(manifest, principal.access_token)
        logger.info("Created job %s (%d pages, theme %s)", manifest.id, manifest.page_count, theme)
        return manifest

    def upload_inputs(
        self,
        principal: Principal,
        job_id: str,
        photo: ImageUpload,
        mask: ImageUpload,
    ) -> Manifest:
        """
        Store the reference photo and paint-mask for a job.

        Both images are validated and normalized before anything is written,
        so a rejected upload leaves the job untouched.
        """
        with self._locks.hold(job_id):
            manifest = self._load(principal, job_id)
            if manifest.stage is not Stage.CREATED or manifest.status is not JobStatus.CREATED:
                raise ConflictError(f"Job {job_id} has already started; inputs can no longer change.")

            prepared = prepare_inputs(photo, mask, max_side=self._config.edit_max_side)
            width, height = prepared.size

            workspace = self._executor.workspace(job_id)
            workspace.ensure()
            prepared.photo.save(workspace.photo, format="PNG")
            prepared.mask.save(workspace.mask, format="PNG")

            assets = {}
            for label, path in (("photo", workspace.photo), ("mask", workspace.mask)):
                key = self._storage.key_for(manifest.owner_id, job_id, path.name)
                url = self._storage.upload(key, path, "image/png")
                assets[label] = InputAsset(
                    ok=True, file=path.name, storage_key=key, url=url, width=width, height=height
                )

            manifest.photo = assets["photo"]
            manifest.mask = assets["mask"]
            manifest.touch(utcnow())
            self._store.save(manifest, principal.access_token)
            logger.info("Stored inputs for job %s at %dx%d", job_id, width, height)
            return manifest

    def advance(self, principal: Principal, job_id: str) -> Progress:
        return self._executor.advance(principal, job_id)

    def read_progress(self, principal: Principal, job_id: str) -> Progress:
        return project(self._load(principal, job_id))

    def document_path(self, principal: Principal, job_id: str) -> Path:
        manifest = self._load(principal, job_id)
        if manifest.status is not JobStatus.DONE or not manifest.document.ready:
            raise DocumentNotReadyError(f"Job {job_id} has no document yet (step {manifest.step}).")

        path = self._executor.workspace(job_id).document
        if path.exists():
            return path
        if not manifest.document.storage_key:
            raise NotFoundError(f"Document for job {job_id} is no longer available.")
        return self._storage.download(manifest.document.storage_key, path)
