"""Core module exports"""
from .config import Settings, settings
from .database import build_engine, build_session_maker
from .errors import (
    UploadError,
    InvalidArgument,
    IncompleteUpload,
    Forbidden,
    SessionNotFound,
    SessionBusy,
    CorruptState,
    StorageError,
)

__all__ = [
    "Settings",
    "settings",
    "build_engine",
    "build_session_maker",
    "UploadError",
    "InvalidArgument",
    "IncompleteUpload",
    "Forbidden",
    "SessionNotFound",
    "SessionBusy",
    "CorruptState",
    "StorageError",
]
