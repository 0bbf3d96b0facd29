"""
Upload session registry

The registry is the single shared mutable resource of the upload flow: the
received-part set of every session lives here. Two backends implement the
same contract:

- InMemoryUploadSessionRegistry: process-local dict guarded by a lock.
  State is lost on restart; fine for a single server process.
- SqlUploadSessionRegistry: SQLAlchemy tables, for several server processes
  sharing one database. Part membership is a primary-key insert, so
  concurrent and retried part uploads can never double count.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..core.database import build_session_maker
from ..core.errors import IncompleteUpload, InvalidArgument, SessionBusy, SessionNotFound
from ..models import (
    MERGING,
    UPLOADING,
    Base,
    UploadPartRecord,
    UploadSession,
    UploadSessionRecord,
    compute_total_parts,
    utcnow,
)
from .part_store import PartStore

logger = logging.getLogger(__name__)


def new_upload_id() -> str:
    return f"upload_{uuid.uuid4().hex}"


class UploadSessionRegistry(ABC):
    """Contract shared by every registry backend."""

    def __init__(self, part_store: PartStore):
        self.part_store = part_store

    @staticmethod
    def _validate_sizes(total_size: int, part_size: int) -> None:
        if not isinstance(total_size, int) or total_size <= 0:
            raise InvalidArgument("fileSize must be a positive integer")
        if not isinstance(part_size, int) or part_size <= 0:
            raise InvalidArgument("chunkSize must be a positive integer")

    @staticmethod
    def _validate_index(session: UploadSession, part_index: int) -> None:
        if part_index < 0 or part_index >= session.total_parts:
            raise InvalidArgument(
                f"Invalid chunk index {part_index}. Must be between 0 and {session.total_parts - 1}",
                {"chunkIndex": part_index, "totalChunks": session.total_parts},
            )

    @abstractmethod
    def create_session(
        self, owner_id: str, target_filename: str, total_size: int, part_size: int
    ) -> UploadSession:
        """Register a new session and allocate its staging directory."""

    @abstractmethod
    def get_session(self, upload_id: str) -> UploadSession:
        """Snapshot of a session. Raises SessionNotFound."""

    @abstractmethod
    def record_part(self, upload_id: str, part_index: int) -> int:
        """Add part_index to the received set and return the received count."""

    @abstractmethod
    def begin_merge(self, upload_id: str) -> UploadSession:
        """Move a complete session from uploading to merging."""

    @abstractmethod
    def abort_merge(self, upload_id: str) -> None:
        """Return a merging session to uploading after a failed merge."""

    @abstractmethod
    def remove_session(self, upload_id: str, require_state: Optional[str] = None) -> Optional[UploadSession]:
        """
        Delete a session entry and return its last snapshot, or None if it
        was already gone. With require_state, a session in any other state
        is left alone and SessionBusy is raised. The staging directory is
        the caller's to purge.
        """

    @abstractmethod
    def list_sessions(self, owner_id: Optional[str] = None) -> List[UploadSession]:
        """Sessions, newest first, optionally limited to one owner."""

    @abstractmethod
    def stale_sessions(
        self, older_than: datetime, merging_older_than: Optional[datetime] = None
    ) -> List[UploadSession]:
        """
        Uploading sessions created before older_than. With
        merging_older_than, also merging sessions whose merge started before
        it: a merge that never finished because its process died.
        """


@dataclass
class _SessionEntry:
    session: UploadSession
    received: Set[int] = field(default_factory=set)
    state: str = UPLOADING
    merge_started_at: Optional[datetime] = None

    def snapshot(self) -> UploadSession:
        return replace(
            self.session,
            received_parts=frozenset(self.received),
            state=self.state,
            merge_started_at=self.merge_started_at,
        )


class InMemoryUploadSessionRegistry(UploadSessionRegistry):
    """Process-local registry. Every read and write holds one lock."""

    def __init__(self, part_store: PartStore):
        super().__init__(part_store)
        self._entries: Dict[str, _SessionEntry] = {}
        self._lock = threading.Lock()

    def create_session(self, owner_id, target_filename, total_size, part_size):
        self._validate_sizes(total_size, part_size)
        upload_id = new_upload_id()
        staging = self.part_store.create_staging(upload_id)
        session = UploadSession(
            id=upload_id,
            owner_id=owner_id,
            target_filename=target_filename,
            total_size=total_size,
            part_size=part_size,
            total_parts=compute_total_parts(total_size, part_size),
            staging_location=staging,
            created_at=utcnow(),
        )
        with self._lock:
            self._entries[upload_id] = _SessionEntry(session=session)
        return session

    def _entry(self, upload_id: str) -> _SessionEntry:
        entry = self._entries.get(upload_id)
        if entry is None:
            raise SessionNotFound(upload_id)
        return entry

    def get_session(self, upload_id):
        with self._lock:
            return self._entry(upload_id).snapshot()

    def record_part(self, upload_id, part_index):
        with self._lock:
            entry = self._entry(upload_id)
            self._validate_index(entry.session, part_index)
            if entry.state != UPLOADING:
                raise SessionBusy(upload_id)
            entry.received.add(part_index)
            return len(entry.received)

    def begin_merge(self, upload_id):
        with self._lock:
            entry = self._entry(upload_id)
            if entry.state == MERGING:
                raise SessionBusy(upload_id)
            if len(entry.received) != entry.session.total_parts:
                raise IncompleteUpload(upload_id, entry.snapshot().missing_parts())
            entry.state = MERGING
            entry.merge_started_at = utcnow()
            return entry.snapshot()

    def abort_merge(self, upload_id):
        with self._lock:
            entry = self._entries.get(upload_id)
            if entry is not None and entry.state == MERGING:
                entry.state = UPLOADING
                entry.merge_started_at = None

    def remove_session(self, upload_id, require_state=None):
        with self._lock:
            entry = self._entries.get(upload_id)
            if entry is None:
                return None
            if require_state is not None and entry.state != require_state:
                raise SessionBusy(upload_id)
            del self._entries[upload_id]
            return entry.snapshot()

    def list_sessions(self, owner_id=None):
        with self._lock:
            sessions = [
                entry.snapshot()
                for entry in self._entries.values()
                if owner_id is None or entry.session.owner_id == owner_id
            ]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def stale_sessions(self, older_than, merging_older_than=None):
        with self._lock:
            return [
                entry.snapshot()
                for entry in self._entries.values()
                if (entry.state == UPLOADING and entry.session.created_at < older_than)
                or (
                    entry.state == MERGING
                    and merging_older_than is not None
                    and entry.merge_started_at < merging_older_than
                )
            ]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlUploadSessionRegistry(UploadSessionRegistry):
    """Registry backed by SQLAlchemy tables, shareable between processes."""

    def __init__(self, part_store: PartStore, engine: Engine):
        super().__init__(part_store)
        self.engine = engine
        self.session_maker = build_session_maker(engine)
        Base.metadata.create_all(engine)

    @staticmethod
    def _to_session(record: UploadSessionRecord, parts) -> UploadSession:
        return UploadSession(
            id=record.upload_id,
            owner_id=record.owner_id,
            target_filename=record.target_filename,
            total_size=record.total_size,
            part_size=record.part_size,
            total_parts=record.total_parts,
            staging_location=Path(record.staging_location),
            created_at=_aware(record.created_at),
            received_parts=frozenset(parts),
            state=record.state,
            merge_started_at=_aware(record.merge_started_at),
        )

    @staticmethod
    def _parts(db, upload_id: str) -> List[int]:
        return list(db.scalars(
            select(UploadPartRecord.part_index).where(UploadPartRecord.upload_id == upload_id)
        ))

    @staticmethod
    def _exists(db, upload_id: str) -> bool:
        return db.scalar(
            select(UploadSessionRecord.upload_id).where(UploadSessionRecord.upload_id == upload_id)
        ) is not None

    def _load(self, db, upload_id: str) -> UploadSession:
        record = db.get(UploadSessionRecord, upload_id)
        if record is None:
            raise SessionNotFound(upload_id)
        return self._to_session(record, self._parts(db, upload_id))

    def create_session(self, owner_id, target_filename, total_size, part_size):
        self._validate_sizes(total_size, part_size)
        upload_id = new_upload_id()
        staging = self.part_store.create_staging(upload_id)
        record = UploadSessionRecord(
            upload_id=upload_id,
            owner_id=owner_id,
            target_filename=target_filename,
            total_size=total_size,
            part_size=part_size,
            total_parts=compute_total_parts(total_size, part_size),
            staging_location=str(staging),
            state=UPLOADING,
            created_at=utcnow(),
        )
        with self.session_maker() as db:
            db.add(record)
            db.commit()
            return self._to_session(record, [])

    def get_session(self, upload_id):
        with self.session_maker() as db:
            return self._load(db, upload_id)

    def record_part(self, upload_id, part_index):
        with self.session_maker() as db:
            session = self._load(db, upload_id)
            self._validate_index(session, part_index)
            if session.state != UPLOADING:
                raise SessionBusy(upload_id)
            db.add(UploadPartRecord(upload_id=upload_id, part_index=part_index, received_at=utcnow()))
            try:
                db.commit()
            except IntegrityError:
                # Either the part was already recorded by an earlier attempt,
                # or the session row was removed under us (foreign key)
                db.rollback()
                if not self._exists(db, upload_id):
                    raise SessionNotFound(upload_id)
            return db.scalar(
                select(func.count())
                .select_from(UploadPartRecord)
                .where(UploadPartRecord.upload_id == upload_id)
            )

    def begin_merge(self, upload_id):
        with self.session_maker() as db:
            session = self._load(db, upload_id)
            if session.state == MERGING:
                raise SessionBusy(upload_id)
            if not session.is_complete:
                raise IncompleteUpload(upload_id, session.missing_parts())
            started_at = utcnow()
            result = db.execute(
                update(UploadSessionRecord)
                .where(UploadSessionRecord.upload_id == upload_id)
                .where(UploadSessionRecord.state == UPLOADING)
                .values(state=MERGING, merge_started_at=started_at)
            )
            if result.rowcount != 1:
                # Another process claimed or removed the session in between
                db.rollback()
                if not self._exists(db, upload_id):
                    raise SessionNotFound(upload_id)
                raise SessionBusy(upload_id)
            db.commit()
            return replace(session, state=MERGING, merge_started_at=started_at)

    def abort_merge(self, upload_id):
        with self.session_maker() as db:
            db.execute(
                update(UploadSessionRecord)
                .where(UploadSessionRecord.upload_id == upload_id)
                .where(UploadSessionRecord.state == MERGING)
                .values(state=UPLOADING, merge_started_at=None)
            )
            db.commit()

    def remove_session(self, upload_id, require_state=None):
        with self.session_maker() as db:
            try:
                session = self._load(db, upload_id)
            except SessionNotFound:
                return None
            stmt = delete(UploadSessionRecord).where(UploadSessionRecord.upload_id == upload_id)
            if require_state is not None:
                stmt = stmt.where(UploadSessionRecord.state == require_state)
            result = db.execute(stmt)
            if result.rowcount != 1:
                db.rollback()
                if not self._exists(db, upload_id):
                    return None
                raise SessionBusy(upload_id)
            db.execute(delete(UploadPartRecord).where(UploadPartRecord.upload_id == upload_id))
            db.commit()
            return session

    def list_sessions(self, owner_id=None):
        with self.session_maker() as db:
            query = select(UploadSessionRecord).order_by(UploadSessionRecord.created_at.desc())
            if owner_id is not None:
                query = query.where(UploadSessionRecord.owner_id == owner_id)
            records = list(db.scalars(query))
            return [self._to_session(r, self._parts(db, r.upload_id)) for r in records]

    def stale_sessions(self, older_than, merging_older_than=None):
        condition = and_(
            UploadSessionRecord.state == UPLOADING,
            UploadSessionRecord.created_at < older_than,
        )
        if merging_older_than is not None:
            condition = or_(
                condition,
                and_(
                    UploadSessionRecord.state == MERGING,
                    UploadSessionRecord.merge_started_at < merging_older_than,
                ),
            )
        with self.session_maker() as db:
            records = list(db.scalars(select(UploadSessionRecord).where(condition)))
            return [self._to_session(r, self._parts(db, r.upload_id)) for r in records]


def build_registry(backend: str, part_store: PartStore, engine: Optional[Engine] = None) -> UploadSessionRegistry:
    """Instantiate the registry named by the REGISTRY_BACKEND setting."""
    if backend == "memory":
        return InMemoryUploadSessionRegistry(part_store)
    if backend == "sql":
        if engine is None:
            raise ValueError("The sql registry backend needs a database engine")
        return SqlUploadSessionRegistry(part_store, engine)
    raise ValueError(f"Unknown registry backend: {backend}")
