"""
Upload session and merged artifact value objects shared by the services
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import FrozenSet, List, Optional

UPLOADING = "uploading"
MERGING = "merging"


def compute_total_parts(total_size: int, part_size: int) -> int:
    """Number of parts a file of total_size splits into."""
    return (total_size + part_size - 1) // part_size


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadSession:
    """
    Snapshot of one in-progress chunked upload.

    Registries hand out immutable copies; the received set only grows
    through UploadSessionRegistry.record_part.
    """
    id: str
    owner_id: str
    target_filename: str
    total_size: int
    part_size: int
    total_parts: int
    staging_location: Path
    created_at: datetime
    received_parts: FrozenSet[int] = field(default_factory=frozenset)
    state: str = UPLOADING
    merge_started_at: Optional[datetime] = None

    @property
    def received_count(self) -> int:
        return len(self.received_parts)

    @property
    def is_complete(self) -> bool:
        return self.received_count == self.total_parts

    def missing_parts(self) -> List[int]:
        return [i for i in range(self.total_parts) if i not in self.received_parts]

    def progress_percent(self) -> float:
        if self.total_parts == 0:
            return 0.0
        return round(self.received_count / self.total_parts * 100, 2)


@dataclass(frozen=True)
class PartReceipt:
    part_index: int
    received_count: int
    total_parts: int


@dataclass(frozen=True)
class MergedArtifact:
    """Descriptor of a published, fully merged file."""
    filename: str
    original_name: str
    size: int
    url: str
    upload_date: datetime
    upload_duration_ms: int
