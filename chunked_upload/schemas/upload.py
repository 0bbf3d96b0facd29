"""
Pydantic schemas for the chunked upload API

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import MergedArtifact, UploadSession


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitUploadRequest(CamelModel):
    """Request to open a chunked upload session"""
    filename: str = Field(..., description="Original file name, used for its extension only")
    file_size: int = Field(..., description="Total file size in bytes")
    chunk_size: int = Field(..., description="Size of every part except possibly the last")


class InitUploadResponse(CamelModel):
    upload_id: str
    total_chunks: int
    chunk_size: int


class UploadPartResponse(CamelModel):
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int


class MergeRequest(CamelModel):
    upload_id: str
    filename: str


class MergeResponse(CamelModel):
    """Descriptor of the published file"""
    filename: str
    original_name: str
    size: int
    url: str
    upload_date: datetime
    upload_time: int = Field(..., description="Milliseconds between init and merge completion")

    @classmethod
    def from_artifact(cls, artifact: MergedArtifact) -> "MergeResponse":
        return cls(
            filename=artifact.filename,
            original_name=artifact.original_name,
            size=artifact.size,
            url=artifact.url,
            upload_date=artifact.upload_date,
            upload_time=artifact.upload_duration_ms,
        )


class UploadStatusResponse(CamelModel):
    upload_id: str
    filename: str
    file_size: int
    chunk_size: int
    total_chunks: int
    uploaded_chunks: int
    missing_chunks: List[int]
    state: str
    progress_percent: float
    created_at: datetime

    @classmethod
    def from_session(cls, session: UploadSession) -> "UploadStatusResponse":
        return cls(
            upload_id=session.id,
            filename=session.target_filename,
            file_size=session.total_size,
            chunk_size=session.part_size,
            total_chunks=session.total_parts,
            uploaded_chunks=session.received_count,
            missing_chunks=session.missing_parts(),
            state=session.state,
            progress_percent=session.progress_percent(),
            created_at=session.created_at,
        )


class SessionSummary(CamelModel):
    upload_id: str
    filename: str
    state: str
    progress: str
    created_at: datetime


class SessionListResponse(CamelModel):
    total: int
    sessions: List[SessionSummary]


class CancelUploadResponse(CamelModel):
    upload_id: str
    status: str


class ArtifactInfo(CamelModel):
    filename: str
    size: int
    url: str
    upload_date: datetime
    mime_type: str


class FileListResponse(CamelModel):
    total: int
    files: List[ArtifactInfo]
