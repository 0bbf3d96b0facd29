"""
Chunked upload exceptions.

Every error raised by the upload services derives from UploadError and
carries the HTTP status the API layer responds with, so the services stay
free of FastAPI imports.
"""
from typing import Any, Dict, Optional


class UploadError(Exception):
    """
    Base exception for chunked upload failures.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional error context
    """

    status_code: int = 500
    default_code: str = "UPLOAD_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "detail": self.message,
            "error": self.error_code,
            **self.details,
        }


class InvalidArgument(UploadError):
    """Malformed or missing request fields, out-of-range part index."""
    status_code = 400
    default_code = "INVALID_ARGUMENT"


class IncompleteUpload(UploadError):
    """Merge requested before every part was received."""
    status_code = 400
    default_code = "INCOMPLETE_UPLOAD"

    def __init__(self, upload_id: str, missing_parts):
        missing = sorted(missing_parts)
        super().__init__(
            f"Upload {upload_id} is incomplete: {len(missing)} part(s) missing",
            {"uploadId": upload_id, "missingChunks": missing},
        )
        self.missing_parts = missing


class Forbidden(UploadError):
    """Caller is not the owner of the upload session."""
    status_code = 403
    default_code = "FORBIDDEN"

    def __init__(self, upload_id: str):
        super().__init__(f"Not allowed to access upload {upload_id}", {"uploadId": upload_id})


class SessionNotFound(UploadError):
    status_code = 404
    default_code = "SESSION_NOT_FOUND"

    def __init__(self, upload_id: str):
        super().__init__(f"Upload session {upload_id} not found", {"uploadId": upload_id})
        self.upload_id = upload_id


class SessionBusy(UploadError):
    """Session is being merged; parts, cancellation and a second merge are refused."""
    status_code = 409
    default_code = "SESSION_BUSY"

    def __init__(self, upload_id: str):
        super().__init__(f"Upload session {upload_id} is being merged", {"uploadId": upload_id})


class CorruptState(UploadError):
    """A part recorded as received is missing from the part store."""
    status_code = 500
    default_code = "CORRUPT_STATE"


class StorageError(UploadError):
    """Filesystem failure while writing a part or the merged artifact."""
    status_code = 500
    default_code = "STORAGE_ERROR"
