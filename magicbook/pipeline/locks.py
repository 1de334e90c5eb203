"""
In-process, per-job mutual exclusion.

Only one step may run for a given job within this process. Across processes
the manifest's ``pending`` record is what prevents double submission.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from magicbook.common.errors import ConflictError


class JobLocks:
    """Tracks the jobs currently being worked on; released jobs leave no entry behind."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    def is_held(self, job_id: str) -> bool:
        with self._guard:
            return job_id in self._held

    def __len__(self) -> int:
        with self._guard:
            return len(self._held)

    @contextmanager
    def hold(self, job_id: str) -> Iterator[None]:
        """Hold the job's lock for the block; raise ``ConflictError`` if it is taken."""
        with self._guard:
            if job_id in self._held:
                raise ConflictError(f"A step is already running for job {job_id}")
            self._held.add(job_id)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(job_id)
