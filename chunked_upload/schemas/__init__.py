"""Schemas module exports"""
from .upload import (
    InitUploadRequest,
    InitUploadResponse,
    UploadPartResponse,
    MergeRequest,
    MergeResponse,
    UploadStatusResponse,
    SessionSummary,
    SessionListResponse,
    CancelUploadResponse,
    ArtifactInfo,
    FileListResponse,
)

__all__ = [
    "InitUploadRequest",
    "InitUploadResponse",
    "UploadPartResponse",
    "MergeRequest",
    "MergeResponse",
    "UploadStatusResponse",
    "SessionSummary",
    "SessionListResponse",
    "CancelUploadResponse",
    "ArtifactInfo",
    "FileListResponse",
]
