"""Models module exports"""
from .database import Base, UploadSessionRecord, UploadPartRecord
from .session import (
    UPLOADING,
    MERGING,
    UploadSession,
    PartReceipt,
    MergedArtifact,
    compute_total_parts,
    utcnow,
)

__all__ = [
    "Base",
    "UploadSessionRecord",
    "UploadPartRecord",
    "UPLOADING",
    "MERGING",
    "UploadSession",
    "PartReceipt",
    "MergedArtifact",
    "compute_total_parts",
    "utcnow",
]
