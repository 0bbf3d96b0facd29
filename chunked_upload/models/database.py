"""
Database models for the shared upload session registry

One row per session plus one row per received part. The composite primary
key on (upload_id, part_index) makes recording a part a set-add: a retried
part hits the key and leaves the count unchanged.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class UploadSessionRecord(Base):
    __tablename__ = "chunk_upload_sessions"

    upload_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_filename: Mapped[str] = mapped_column(String(512), nullable=False)
    total_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    part_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_parts: Mapped[int] = mapped_column(Integer, nullable=False)
    staging_location: Mapped[str] = mapped_column(String(1024), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="uploading", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    merge_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<UploadSessionRecord(upload_id={self.upload_id}, owner_id={self.owner_id}, state={self.state})>"


class UploadPartRecord(Base):
    __tablename__ = "chunk_upload_parts"

    upload_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("chunk_upload_sessions.upload_id", ondelete="CASCADE"),
        primary_key=True,
    )
    part_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
