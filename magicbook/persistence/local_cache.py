"""
Local YAML cache of job manifests, one directory per job.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

import yaml

from magicbook.common.errors import NotFoundError

from .manifest import Manifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.yaml"
_SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")


def job_directory(root: Path, job_id: str) -> Path:
    """Directory holding every local file of one job."""
    if not _SAFE_JOB_ID.match(str(job_id or "")):
        raise NotFoundError(f"Invalid job id {job_id!r}")
    return Path(root) / "jobs" / job_id


class LocalManifestCache:
    """
    Read and write manifests under ``<root>/jobs/<job_id>/manifest.yaml``.

    Writes go to a temporary file in the same directory followed by
    ``os.replace`` so readers never see a partially written manifest.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, job_id: str) -> Path:
        return job_directory(self.root, job_id) / MANIFEST_FILENAME

    def load(self, job_id: str) -> Manifest | None:
        path = self.path_for(job_id)
        if not path.exists():
            return None
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed manifest cache at %s", path)
            return None
        return Manifest.from_dict(data)

    def save(self, manifest: Manifest) -> Path:
        path = self.path_for(manifest.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(manifest.to_dict(), sort_keys=False, allow_unicode=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".manifest-", suffix=".yaml", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path
