"""
Job orchestration: one state-machine step per call.
"""

from .executor import Principal, StepExecutor
from .inputs import PreparedInputs, prepare_inputs, transparent_mask
from .locks import JobLocks
from .progress import PageProgress, Progress, project
from .service import BookJobService, BookRequest, clamp_page_count
from .workspace import JobWorkspace

__all__ = [
    "BookJobService",
    "BookRequest",
    "JobLocks",
    "JobWorkspace",
    "PageProgress",
    "PreparedInputs",
    "Principal",
    "Progress",
    "StepExecutor",
    "clamp_page_count",
    "prepare_inputs",
    "project",
    "transparent_mask",
]
