"""
Durable storage for job files (inputs, stamped images, the final document).

Keys follow ``<owner>/<job>/<filename>`` so a job's files never mix with
another job's.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, Protocol

from supabase import Client, create_client

from magicbook.common.config import PersistenceConfig
from magicbook.common.errors import PersistenceError

logger = logging.getLogger(__name__)


def artifact_key(owner_id: str, job_id: str, filename: str) -> str:
    parts = [str(part).strip("/") for part in (owner_id or "anonymous", job_id, filename)]
    if any(not part or ".." in part for part in parts):
        raise ValueError(f"Invalid storage key parts: {parts}")
    return "/".join(parts)


class ArtifactStorage(Protocol):
    def key_for(self, owner_id: str, job_id: str, filename: str) -> str:
        ...

    def upload(self, key: str, local_path: Path, content_type: str) -> str:
        """Store the file and return its public URL."""
        ...

    def download(self, key: str, local_path: Path) -> Path:
        ...


class LocalArtifactStorage:
    """Directory-backed storage for single-host deployments and tests."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def key_for(self, owner_id: str, job_id: str, filename: str) -> str:
        return artifact_key(owner_id, job_id, filename)

    def _path(self, key: str) -> Path:
        return self.root / key

    def upload(self, key: str, local_path: Path, content_type: str) -> str:
        target = self._path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if Path(local_path).resolve() != target.resolve():
                shutil.copyfile(local_path, target)
        except OSError as exc:
            raise PersistenceError(f"Could not store {key}") from exc
        return target.resolve().as_uri()

    def download(self, key: str, local_path: Path) -> Path:
        source = self._path(key)
        if not source.exists():
            raise PersistenceError(f"Artifact {key} not found")
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, local_path)
        return local_path


class SupabaseArtifactStorage:
    """Supabase Storage bucket with public URLs."""

    def __init__(
        self,
        config: PersistenceConfig,
        *,
        client: Client | None = None,
        client_factory: Callable[[str, str], Client] = create_client,
    ) -> None:
        key = config.supabase_service_role_key or config.supabase_anon_key
        if client is None and not (config.supabase_url and key):
            raise ValueError("Supabase URL and key are required for artifact storage.")
        self._bucket_name = config.bucket
        self._client = client or client_factory(config.supabase_url, key)

    def _bucket(self):
        return self._client.storage.from_(self._bucket_name)

    def key_for(self, owner_id: str, job_id: str, filename: str) -> str:
        return artifact_key(owner_id, job_id, filename)

    def upload(self, key: str, local_path: Path, content_type: str) -> str:
        data = Path(local_path).read_bytes()
        try:
            self._bucket().upload(key, data, {"content-type": content_type, "upsert": "true"})
            url = self._bucket().get_public_url(key)
        except Exception as exc:
            raise PersistenceError(f"Upload of {key} failed: {exc}") from exc
        logger.info("Uploaded %s (%d bytes)", key, len(data))
        return str(url).rstrip("?")

    def download(self, key: str, local_path: Path) -> Path:
        try:
            data = self._bucket().download(key)
        except Exception as exc:
            raise PersistenceError(f"Download of {key} failed: {exc}") from exc
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(data)
        return local_path
