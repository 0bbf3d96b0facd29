"""Services module exports"""
from .part_store import PartStore
from .registry import (
    UploadSessionRegistry,
    InMemoryUploadSessionRegistry,
    SqlUploadSessionRegistry,
    build_registry,
)
from .coordinator import ChunkUploadCoordinator
from .merge import MergeEngine, generate_artifact_name, safe_extension
from .reaper import StaleSessionReaper

__all__ = [
    "PartStore",
    "UploadSessionRegistry",
    "InMemoryUploadSessionRegistry",
    "SqlUploadSessionRegistry",
    "build_registry",
    "ChunkUploadCoordinator",
    "MergeEngine",
    "generate_artifact_name",
    "safe_extension",
    "StaleSessionReaper",
]
