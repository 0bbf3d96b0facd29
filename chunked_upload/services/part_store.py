"""
On-disk staging area for the parts of each upload session

Layout:
    {TEMP_UPLOAD_DIR}/
        {upload_id}/
            chunk_0, chunk_1, ...
"""
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Iterator, Union

from ..core.errors import CorruptState

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 1024 * 1024


class PartStore:
    """Filesystem store for the parts of in-progress uploads."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def part_path(staging: Path, part_index: int) -> Path:
        """Location of a part inside its staging directory."""
        return Path(staging) / f"chunk_{part_index}"

    def create_staging(self, upload_id: str) -> Path:
        """Create an exclusive staging directory for a new session."""
        staging = self.root / upload_id
        # exist_ok=False: a live directory is never shared between sessions
        staging.mkdir(parents=True, exist_ok=False)
        logger.debug(f"Created staging directory {staging}")
        return staging

    def write_part(self, staging: Path, part_index: int, data: bytes) -> Path:
        """
        Persist a part, replacing any earlier copy of the same index.

        The bytes land in a temporary sibling first and are moved into place
        with os.replace, so a resubmission never leaves a torn part behind.
        The staging directory is not recreated: if the session was purged in
        the meantime the write fails with FileNotFoundError.
        """
        target = self.part_path(staging, part_index)
        tmp_path = Path(staging) / f".chunk_{part_index}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, target)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug(f"Wrote part {part_index} ({len(data)} bytes) to {target}")
        return target

    def read_parts_in_order(self, staging: Path, total_parts: int) -> Iterator[bytes]:
        """
        Yield the contents of parts 0..total_parts-1 strictly in index order.

        Parts are streamed in blocks so the merge never holds a whole part
        in memory.

        Raises:
            CorruptState: an expected part file does not exist
        """
        for part_index in range(total_parts):
            path = self.part_path(staging, part_index)
            try:
                f = open(path, "rb")
            except FileNotFoundError:
                logger.error(f"Part {part_index} missing from {staging}")
                raise CorruptState(
                    f"Part {part_index} file not found",
                    {"chunkIndex": part_index},
                )
            with f:
                while True:
                    block = f.read(READ_BLOCK_SIZE)
                    if not block:
                        break
                    yield block

    def purge(self, staging: Path) -> bool:
        """Remove a staging directory. Failures are logged, never raised."""
        try:
            shutil.rmtree(staging)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Failed to purge staging directory {staging}: {e}")
            return False
        logger.debug(f"Purged staging directory {staging}")
        return True
