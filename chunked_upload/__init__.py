"""Chunked file upload service: part staging, session registry, ordered merge."""

__version__ = "1.0.0"
