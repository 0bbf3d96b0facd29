"""Client module exports"""
from .uploader import ChunkedUploader, UploadFailed

__all__ = ["ChunkedUploader", "UploadFailed"]
