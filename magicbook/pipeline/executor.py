"""
The step executor: performs exactly one state-machine transition per call.

A job moves ``created -> story -> cover -> page_1 .. page_N -> pdf -> done``.
Every piece of intermediate state, including the handle of an in-flight
asynchronous image job, lives in the manifest so any process can pick the
job up on the next call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from PIL import Image

from magicbook.ai_generation import ProviderGateway, build_cover_prompt, build_scene_prompt
from magicbook.common.config import PipelineConfig
from magicbook.common.errors import (
    AccessDeniedError,
    DocumentAssemblyError,
    GenerationError,
    InputError,
    PersistenceError,
    PredictionUnavailable,
    ProviderError,
    ProviderUnavailable,
    StaleJobError,
)
from magicbook.compositing import stamp
from magicbook.pdf_generation import DocumentAssembler
from magicbook.persistence import (
    ArtifactStorage,
    CoverArtifact,
    DocumentRef,
    InputAsset,
    JobStatus,
    Manifest,
    ManifestStore,
    PageImage,
    PendingPrediction,
    Stage,
    utcnow,
)
from magicbook.story_generation import theme_label

from .locks import JobLocks
from .progress import Progress, project
from .workspace import JobWorkspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The caller on whose behalf a job is read or advanced."""

    user_id: str
    is_admin: bool = False
    access_token: str | None = None

    def can_access(self, manifest: Manifest) -> bool:
        return self.is_admin or (bool(self.user_id) and self.user_id == manifest.owner_id)


def authorize(principal: Principal, manifest: Manifest) -> None:
    if not principal.can_access(manifest):
        raise AccessDeniedError(f"User {principal.user_id!r} cannot access job {manifest.id}")


def cover_subtitle(manifest: Manifest) -> str:
    return f"{manifest.child.name}'s adventure • {theme_label(manifest.theme)}"


class StepExecutor:
    """
    Advance book jobs one step at a time.

    Parameters
    ----------
    store:
        Manifest persistence (local cache + remote table).
    gateway:
        Provider gateway for story text and illustrations.
    storage:
        Durable storage for inputs and generated files.
    config:
        Pipeline knobs (page count, watchdog threshold, attempt limits).
    work_root:
        Root of the per-job local working directories.
    assembler:
        PDF assembler; defaults to one using ``config.page_size``.
    locks:
        Per-job in-process locks, shared with other executors of this process.
    clock:
        Returns the current UTC time.
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
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._storage = storage
        self._config = config
        self._work_root = Path(work_root)
        self._assembler = assembler or DocumentAssembler(page_size=config.page_size)
        self._locks = locks or JobLocks()
        self._clock = clock

    @property
    def locks(self) -> JobLocks:
        return self._locks

    def workspace(self, job_id: str) -> JobWorkspace:
        return JobWorkspace(self._work_root, job_id)

    # ------------------------------------------------------------------ entry point

    def advance(self, principal: Principal, job_id: str) -> Progress:
        with self._locks.hold(job_id):
            manifest = self._store.load(job_id, principal.access_token)
            authorize(principal, manifest)

            if manifest.is_terminal or manifest.stage is Stage.DONE:
                return project(manifest)

            workspace = self.workspace(job_id)
            workspace.ensure()
            self._ensure_inputs(manifest, workspace)

            if manifest.status is JobStatus.CREATED:
                manifest.status = JobStatus.GENERATING

            before = manifest.step
            try:
                self._dispatch(manifest, workspace)
            except (PersistenceError, InputError):
                raise
            except ProviderUnavailable as exc:
                logger.warning("Job %s step %s unavailable: %s", job_id, before, exc)
                self._record_failure(manifest, exc, self._config.max_unavailable_attempts)
            except ProviderError as exc:
                logger.warning("Job %s step %s failed: %s", job_id, before, exc)
                self._record_failure(manifest, exc, self._config.max_provider_attempts)
            except DocumentAssemblyError as exc:
                logger.error("Job %s cannot assemble its document: %s", job_id, exc)
                self._fail(manifest, str(exc))
            except Exception as exc:
                logger.exception("Job %s step %s crashed", job_id, before)
                self._fail(manifest, str(exc) or exc.__class__.__name__)
            else:
                if manifest.step != before:
                    manifest.error = ""
                    logger.info("Job %s advanced %s -> %s", job_id, before, manifest.step)

            manifest.touch(self._clock())
            self._store.save(manifest, principal.access_token)
            return project(manifest)

    # ------------------------------------------------------------------ failure accounting

    def _record_failure(self, manifest: Manifest, exc: Exception, limit: int) -> None:
        manifest.attempts += 1
        manifest.error = str(exc)
        if manifest.attempts >= limit:
            self._fail(manifest, f"{exc} (after {manifest.attempts} attempts)")

    def _fail(self, manifest: Manifest, message: str) -> None:
        manifest.status = JobStatus.FAILED
        manifest.error = message
        manifest.pending = None

    # ------------------------------------------------------------------ inputs

    def _restore(self, asset: InputAsset, path: Path, label: str) -> None:
        if path.exists():
            return
        if not asset.ok or not asset.storage_key:
            raise InputError(f"The {label} has not been uploaded for this job.")
        logger.info("Restoring %s from storage key %s", label, asset.storage_key)
        self._storage.download(asset.storage_key, path)

    def _ensure_inputs(self, manifest: Manifest, workspace: JobWorkspace) -> None:
        self._restore(manifest.photo, workspace.photo, "reference photo")
        self._restore(manifest.mask, workspace.mask, "paint-mask")

    # ------------------------------------------------------------------ dispatch

    def _dispatch(self, manifest: Manifest, workspace: JobWorkspace) -> None:
        if manifest.stage in (Stage.CREATED, Stage.STORY):
            self._story_step(manifest)
        elif manifest.stage in (Stage.COVER, Stage.PAGE):
            self._image_step(manifest, workspace)
        elif manifest.stage is Stage.PDF:
            self._document_step(manifest, workspace)

    def _story_step(self, manifest: Manifest) -> None:
        if not manifest.story_complete:
            manifest.move_to(Stage.STORY)
            manifest.pages = self._gateway.generate_story(
                manifest.child,
                theme=manifest.theme,
                page_count=manifest.page_count,
            )
        manifest.move_to(Stage.COVER)

    # ------------------------------------------------------------------ cover and pages

    def _artifact_exists(self, manifest: Manifest) -> bool:
        if manifest.stage is Stage.COVER:
            return manifest.cover.ok
        return manifest.image_for(manifest.page_cursor) is not None

    def _prompt_for(self, manifest: Manifest) -> str:
        if manifest.stage is Stage.COVER:
            prompt = build_cover_prompt(theme=manifest.theme, child_name=manifest.child.name, style=manifest.style)
            return prompt.text
        page = manifest.story_page(manifest.page_cursor)
        if page is None or not page.text:
            raise GenerationError(f"Story text for page {manifest.page_cursor} is missing.")
        prompt = build_scene_prompt(
            page.text,
            theme=manifest.theme,
            child_name=manifest.child.name,
            style=manifest.style,
        )
        return prompt.text

    def _advance_past_image(self, manifest: Manifest) -> None:
        manifest.pending = None
        manifest.move_to(*manifest.next_after_current())

    def _image_step(self, manifest: Manifest, workspace: JobWorkspace) -> None:
        if self._artifact_exists(manifest):
            self._advance_past_image(manifest)
            return

        pending = manifest.pending
        if pending is not None and (pending.target != manifest.step or not self._gateway.uses_async_backend):
            logger.warning("Dropping pending job %s recorded for %s", pending.handle, pending.target)
            manifest.pending = pending = None

        prompt = self._prompt_for(manifest)

        if pending is None:
            if self._gateway.uses_async_backend:
                self._submit(manifest, workspace, prompt)
            else:
                image = self._gateway.edit_image(prompt, workspace.photo, workspace.mask)
                self._finish_image(manifest, workspace, image, prompt)
            return

        now = self._clock()
        if pending.is_stale(now, self._config.pending_max_age):
            stale = StaleJobError(
                f"Image job {pending.handle} for {pending.target} is {pending.age(now):.0f}s old; resubmitting."
            )
            self._resubmit(manifest, workspace, prompt, stale)
            return

        # A failed status check or download leaves the job in place; the
        # boundary counts the attempt and the next call polls it again.
        try:
            result = self._gateway.poll_image(pending.handle)
        except PredictionUnavailable as exc:
            self._resubmit(manifest, workspace, prompt, exc)
            return
        except ProviderError:
            manifest.pending = None
            raise

        if result.done and result.image is not None:
            self._finish_image(manifest, workspace, result.image, prompt)

    def _submit(self, manifest: Manifest, workspace: JobWorkspace, prompt: str) -> None:
        handle = self._gateway.submit_image(prompt, workspace.photo)
        manifest.pending = PendingPrediction(handle=handle, created_at=self._clock(), target=manifest.step)

    def _resubmit(self, manifest: Manifest, workspace: JobWorkspace, prompt: str, cause: ProviderUnavailable) -> None:
        """Replace a dead job with a new one; the whole event counts as one attempt."""
        logger.warning("Job %s: %s", manifest.id, cause)
        manifest.pending = None
        manifest.attempts += 1
        manifest.error = str(cause)
        if manifest.attempts >= self._config.max_unavailable_attempts:
            self._fail(manifest, f"{cause} (after {manifest.attempts} attempts)")
            return
        try:
            self._submit(manifest, workspace, prompt)
        except ProviderUnavailable as exc:
            # Without a pending record the next call submits afresh.
            logger.warning("Job %s: resubmission failed: %s", manifest.id, exc)
            manifest.error = str(exc)

    def _finish_image(self, manifest: Manifest, workspace: JobWorkspace, image: Image.Image, prompt: str) -> None:
        if manifest.stage is Stage.COVER:
            base_path, final_path = workspace.cover_base, workspace.cover
            stamped = stamp(image, self._config.cover_title, cover_subtitle(manifest), "cover")
        else:
            page = manifest.story_page(manifest.page_cursor)
            if page is None:
                raise GenerationError(f"Story text for page {manifest.page_cursor} is missing.")
            base_path = workspace.page_base(manifest.page_cursor)
            final_path = workspace.page(manifest.page_cursor)
            stamped = stamp(image, page.title, page.text, "page")

        image.convert("RGB").save(base_path, format="PNG")
        stamped.save(final_path, format="PNG")

        key = self._storage.key_for(manifest.owner_id, manifest.id, final_path.name)
        url = self._storage.upload(key, final_path, "image/png")

        if manifest.stage is Stage.COVER:
            manifest.cover = CoverArtifact(ok=True, file=final_path.name, storage_key=key, url=url)
        else:
            manifest.upsert_image(
                PageImage(page=manifest.page_cursor, file=final_path.name, storage_key=key, url=url, prompt=prompt)
            )
        self._advance_past_image(manifest)

    # ------------------------------------------------------------------ document

    def _local_copy(self, path: Path, storage_key: str, label: str) -> Path:
        """Return a local copy of a generated image; a storage outage propagates."""
        if path.exists():
            return path
        if not storage_key:
            raise DocumentAssemblyError(f"The {label} image is missing and was never stored.")
        logger.info("Restoring %s from storage key %s", label, storage_key)
        return self._storage.download(storage_key, path)

    def _document_step(self, manifest: Manifest, workspace: JobWorkspace) -> None:
        if not manifest.cover.ok:
            raise DocumentAssemblyError("The cover has not been generated.")
        missing = [n for n in range(1, manifest.page_count + 1) if manifest.image_for(n) is None]
        if missing:
            raise DocumentAssemblyError(f"Pages without an illustration: {missing}")

        cover_path = self._local_copy(workspace.cover, manifest.cover.storage_key, "cover")
        page_paths = [
            self._local_copy(workspace.file(image.file), image.storage_key, f"page {image.page}")
            for image in manifest.images
        ]

        output = self._assembler.assemble(cover_path, page_paths, workspace.document, strict=True)
        key = self._storage.key_for(manifest.owner_id, manifest.id, output.name)
        url = self._storage.upload(key, output, "application/pdf")

        manifest.document = DocumentRef(file=output.name, storage_key=key, url=url)
        manifest.status = JobStatus.DONE
        manifest.move_to(Stage.DONE)
