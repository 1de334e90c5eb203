"""
Two-tier manifest persistence: a local cache in front of the remote table.
"""

from __future__ import annotations

import logging

from magicbook.common.errors import NotFoundError, PersistenceError

from .local_cache import LocalManifestCache
from .manifest import Manifest
from .supabase_store import SupabaseBookTable

logger = logging.getLogger(__name__)


class ManifestStore:
    """
    Load and save manifests.

    Saves always hit the local cache first, then the remote table. When
    ``require_remote`` is set a failed remote write fails the call, so a job
    is never reported saved unless its state is durable.

    Parameters
    ----------
    local:
        The local YAML cache.
    remote:
        Optional remote table. Without one, the local cache is the only tier.
    require_remote:
        Whether a remote write failure raises :class:`PersistenceError`.
    """

    def __init__(
        self,
        local: LocalManifestCache,
        remote: SupabaseBookTable | None = None,
        *,
        require_remote: bool = True,
    ) -> None:
        self._local = local
        self._remote = remote
        self._require_remote = require_remote and remote is not None

    @property
    def local(self) -> LocalManifestCache:
        return self._local

    def save(self, manifest: Manifest, access_token: str | None = None) -> None:
        self._local.save(manifest)
        if self._remote is None:
            return
        try:
            self._remote.upsert(manifest, access_token)
        except PersistenceError:
            if self._require_remote:
                raise
            logger.warning("Remote save failed for job %s; kept local copy only", manifest.id, exc_info=True)

    def load(self, job_id: str, access_token: str | None = None) -> Manifest:
        cached = self._local.load(job_id)
        if cached is not None:
            return cached

        if self._remote is not None:
            remote = self._remote.fetch(job_id, access_token)
            if remote is not None:
                self._local.save(remote)
                return remote

        raise NotFoundError(f"Job {job_id} not found")
