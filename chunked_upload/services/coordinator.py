"""
Chunk upload coordinator: session initialization and part acceptance
"""
import logging
from typing import List, Optional

from ..core.errors import (
    Forbidden,
    InvalidArgument,
    SessionBusy,
    SessionNotFound,
    StorageError,
)
from ..models import UPLOADING, PartReceipt, UploadSession
from .part_store import PartStore
from .registry import UploadSessionRegistry

logger = logging.getLogger(__name__)


def ensure_owner(session: UploadSession, caller_id: str) -> None:
    """Raise Forbidden unless caller_id created the session."""
    if str(caller_id) != str(session.owner_id):
        logger.warning(f"User {caller_id} denied access to upload {session.id} owned by {session.owner_id}")
        raise Forbidden(session.id)


class ChunkUploadCoordinator:
    """
    Accepts the parts of chunked uploads.

    Every call is independent: parts of one session may arrive concurrently
    and in any order, and a part may be re-sent any number of times.
    Completing the upload is a separate, explicit merge call.
    """

    def __init__(self, registry: UploadSessionRegistry, part_store: PartStore, max_part_size: int):
        self.registry = registry
        self.part_store = part_store
        self.max_part_size = max_part_size

    def init_upload(self, owner_id: str, filename: str, total_size: int, part_size: int) -> UploadSession:
        """
        Open a new upload session.

        Raises:
            InvalidArgument: missing filename, non-positive sizes, or a part
                size above the configured maximum
        """
        if not filename or not str(filename).strip():
            raise InvalidArgument("filename is required")
        if isinstance(part_size, int) and part_size > self.max_part_size:
            raise InvalidArgument(
                f"chunkSize exceeds the maximum of {self.max_part_size} bytes",
                {"maxChunkSize": self.max_part_size},
            )
        try:
            session = self.registry.create_session(owner_id, filename, total_size, part_size)
        except OSError as e:
            logger.error(f"Failed to allocate staging directory for {filename}: {e}")
            raise StorageError(f"Failed to initialize upload: {e}")

        logger.info(
            f"Initialized upload session {session.id} for {filename} "
            f"({total_size} bytes, {session.total_parts} parts) owner={owner_id}"
        )
        return session

    def upload_part(
        self,
        upload_id: str,
        part_index: int,
        total_parts: Optional[int],
        data: bytes,
        caller_id: str,
    ) -> PartReceipt:
        """
        Store one part and record it as received.

        Idempotent: uploading the same index twice overwrites the first copy
        and counts once.
        """
        session = self.registry.get_session(upload_id)
        ensure_owner(session, caller_id)

        if part_index < 0 or part_index >= session.total_parts:
            raise InvalidArgument(
                f"Invalid chunk index {part_index}. Must be between 0 and {session.total_parts - 1}",
                {"chunkIndex": part_index, "totalChunks": session.total_parts},
            )
        if total_parts is not None and total_parts != session.total_parts:
            raise InvalidArgument(
                f"totalChunks mismatch: session has {session.total_parts}, request sent {total_parts}",
                {"totalChunks": session.total_parts},
            )
        if len(data) > session.part_size:
            raise InvalidArgument(
                f"Chunk {part_index} is {len(data)} bytes, larger than the chunk size {session.part_size}",
                {"chunkIndex": part_index, "chunkSize": session.part_size},
            )
        if session.state != UPLOADING:
            raise SessionBusy(upload_id)

        try:
            self.part_store.write_part(session.staging_location, part_index, data)
        except OSError as e:
            # The staging directory disappears when the session is merged,
            # cancelled or reaped while this part was in flight
            try:
                self.registry.get_session(upload_id)
            except SessionNotFound:
                logger.info(f"Upload {upload_id} was removed while part {part_index} was being written")
                raise
            logger.error(f"Failed to write part {part_index} for upload {upload_id}: {e}")
            raise StorageError(f"Failed to store chunk {part_index}: {e}", {"chunkIndex": part_index})

        received = self.registry.record_part(upload_id, part_index)
        logger.debug(f"Received part {part_index} for upload {upload_id} ({received}/{session.total_parts})")
        return PartReceipt(part_index=part_index, received_count=received, total_parts=session.total_parts)

    def get_status(self, upload_id: str, caller_id: str) -> UploadSession:
        session = self.registry.get_session(upload_id)
        ensure_owner(session, caller_id)
        return session

    def cancel_upload(self, upload_id: str, caller_id: str) -> UploadSession:
        """Drop a session and its staged parts. Refused while a merge runs."""
        session = self.registry.get_session(upload_id)
        ensure_owner(session, caller_id)
        removed = self.registry.remove_session(upload_id, require_state=UPLOADING)
        if removed is None:
            raise SessionNotFound(upload_id)
        self.part_store.purge(removed.staging_location)
        logger.info(f"Cancelled upload session {upload_id}")
        return removed

    def list_sessions(self, caller_id: str) -> List[UploadSession]:
        return self.registry.list_sessions(owner_id=caller_id)
