"""
Manifest model and persistence tiers.
"""

from .artifacts import ArtifactStorage, LocalArtifactStorage, SupabaseArtifactStorage, artifact_key
from .local_cache import LocalManifestCache, job_directory
from .manifest import (
    CoverArtifact,
    DocumentRef,
    InputAsset,
    JobStatus,
    Manifest,
    PageImage,
    PendingPrediction,
    Stage,
    format_step,
    parse_step,
    step_rank,
    utcnow,
)
from .store import ManifestStore
from .supabase_store import SupabaseBookTable, manifest_to_row, row_to_manifest

__all__ = [
    "ArtifactStorage",
    "CoverArtifact",
    "DocumentRef",
    "InputAsset",
    "JobStatus",
    "LocalArtifactStorage",
    "LocalManifestCache",
    "Manifest",
    "ManifestStore",
    "PageImage",
    "PendingPrediction",
    "Stage",
    "SupabaseArtifactStorage",
    "SupabaseBookTable",
    "artifact_key",
    "format_step",
    "job_directory",
    "manifest_to_row",
    "parse_step",
    "row_to_manifest",
    "step_rank",
    "utcnow",
]
