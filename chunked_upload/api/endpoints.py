"""
FastAPI endpoints for chunked file upload

Provides:
    - POST /api/upload/chunk/init: open an upload session
    - POST /api/upload/chunk/upload: send one part (multipart/form-data)
    - POST /api/upload/chunk/merge: assemble all parts into the final file
    - GET /api/upload/chunk/sessions: caller's open sessions
    - GET /api/upload/chunk/{upload_id}: session progress
    - DELETE /api/upload/chunk/{upload_id}: abandon a session
    - GET /api/upload/files: published files

Blocking filesystem and registry work runs in the thread pool so large
parts never stall the event loop.
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from starlette.concurrency import run_in_threadpool

from ..core.errors import InvalidArgument
from ..schemas import (
    ArtifactInfo,
    CancelUploadResponse,
    FileListResponse,
    InitUploadRequest,
    InitUploadResponse,
    MergeRequest,
    MergeResponse,
    SessionListResponse,
    SessionSummary,
    UploadPartResponse,
    UploadStatusResponse,
)
from ..services import ChunkUploadCoordinator, MergeEngine
from .dependencies import get_coordinator, get_current_user_id, get_merge_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

CurrentUser = Annotated[str, Depends(get_current_user_id)]
Coordinator = Annotated[ChunkUploadCoordinator, Depends(get_coordinator)]
Merger = Annotated[MergeEngine, Depends(get_merge_engine)]


@router.post("/chunk/init", response_model=InitUploadResponse)
async def init_chunk_upload(body: InitUploadRequest, user_id: CurrentUser, coordinator: Coordinator):
    """
    Initialize a chunked upload session.

    Calculates the number of chunks from the file and chunk sizes and
    prepares the staging directory.
    """
    session = await run_in_threadpool(
        coordinator.init_upload, user_id, body.filename, body.file_size, body.chunk_size
    )
    return InitUploadResponse(
        upload_id=session.id,
        total_chunks=session.total_parts,
        chunk_size=session.part_size,
    )


@router.post("/chunk/upload", response_model=UploadPartResponse)
async def upload_chunk(
    upload_id: Annotated[str, Form(alias="uploadId")],
    chunk_index: Annotated[int, Form(alias="chunkIndex")],
    chunk: Annotated[UploadFile, File(description="Binary content of the chunk")],
    user_id: CurrentUser,
    coordinator: Coordinator,
    total_chunks: Annotated[Optional[int], Form(alias="totalChunks")] = None,
):
    """
    Upload a single chunk.

    Idempotent: sending the same chunk index twice overwrites the previous
    copy, so clients can blindly retry failed chunks.
    """
    # Never pull more than one byte past the limit into memory
    limit = coordinator.max_part_size
    data = await chunk.read(limit + 1)
    if len(data) > limit:
        raise InvalidArgument(
            f"Chunk exceeds the maximum chunk size of {limit} bytes",
            {"chunkIndex": chunk_index, "maxChunkSize": limit},
        )
    receipt = await run_in_threadpool(
        coordinator.upload_part, upload_id, chunk_index, total_chunks, data, user_id
    )
    return UploadPartResponse(
        chunk_index=receipt.part_index,
        uploaded_chunks=receipt.received_count,
        total_chunks=receipt.total_parts,
    )


@router.post("/chunk/merge", response_model=MergeResponse)
async def merge_chunks(body: MergeRequest, user_id: CurrentUser, merge_engine: Merger):
    """
    Merge every chunk, in index order, into the final file.

    Fails with 400 while chunks are missing; the session stays open so the
    missing chunks can still be sent.
    """
    if not body.upload_id or not body.filename:
        raise InvalidArgument("uploadId and filename are required")
    artifact = await run_in_threadpool(merge_engine.merge_session, body.upload_id, user_id, body.filename)
    return MergeResponse.from_artifact(artifact)


@router.get("/chunk/sessions", response_model=SessionListResponse)
async def list_upload_sessions(user_id: CurrentUser, coordinator: Coordinator):
    """List the caller's open upload sessions."""
    sessions = await run_in_threadpool(coordinator.list_sessions, user_id)
    return SessionListResponse(
        total=len(sessions),
        sessions=[
            SessionSummary(
                upload_id=s.id,
                filename=s.target_filename,
                state=s.state,
                progress=f"{s.received_count}/{s.total_parts}",
                created_at=s.created_at,
            )
            for s in sessions
        ],
    )


@router.get("/chunk/{upload_id}", response_model=UploadStatusResponse)
async def get_upload_status(upload_id: str, user_id: CurrentUser, coordinator: Coordinator):
    """
    Get the current status of an upload session.

    Lists the missing chunks so a client can re-send exactly those.
    """
    session = await run_in_threadpool(coordinator.get_status, upload_id, user_id)
    return UploadStatusResponse.from_session(session)


@router.delete("/chunk/{upload_id}", response_model=CancelUploadResponse)
async def cancel_upload(upload_id: str, user_id: CurrentUser, coordinator: Coordinator):
    """Cancel an upload session and delete its chunks."""
    await run_in_threadpool(coordinator.cancel_upload, upload_id, user_id)
    return CancelUploadResponse(upload_id=upload_id, status="cancelled")


@router.get("/files", response_model=FileListResponse)
async def list_files(user_id: CurrentUser, merge_engine: Merger):
    """List merged files, newest first."""
    files = await run_in_threadpool(merge_engine.list_artifacts)
    return FileListResponse(
        total=len(files),
        files=[ArtifactInfo(**f) for f in files],
    )
