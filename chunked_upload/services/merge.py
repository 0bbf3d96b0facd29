"""
Merge engine: ordered concatenation of received parts into a published file
"""
import logging
import mimetypes
import os
import re
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Union

from ..core.errors import StorageError, UploadError
from ..models import MergedArtifact, utcnow
from .coordinator import ensure_owner
from .part_store import PartStore
from .registry import UploadSessionRegistry

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,16}$")


def safe_extension(declared_filename: str) -> str:
    """
    Extension of a client-supplied filename, or "" when it is unusable.

    Only the extension of the declared name ever reaches the filesystem;
    directory components and odd characters are discarded.
    """
    basename = str(declared_filename).replace("\\", "/").rsplit("/", 1)[-1]
    ext = os.path.splitext(basename)[1]
    return ext if _EXTENSION_RE.match(ext) else ""


def generate_artifact_name(declared_filename: str) -> str:
    """chunk_<epoch ms>_<random hex><ext>, independent of the declared name."""
    return f"chunk_{int(time.time() * 1000)}_{secrets.token_hex(3)}{safe_extension(declared_filename)}"


class MergeEngine:
    """
    Assembles complete uploads into files under the public upload directory.

    The merged bytes are written to a hidden partial file first and renamed
    onto the final name only once every part has been copied, so a failed
    merge never publishes a truncated artifact.
    """

    def __init__(
        self,
        registry: UploadSessionRegistry,
        part_store: PartStore,
        public_dir: Union[str, Path],
        url_prefix: str,
    ):
        self.registry = registry
        self.part_store = part_store
        self.public_dir = Path(public_dir)
        self.public_dir.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")

    def artifact_url(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def merge_session(self, upload_id: str, caller_id: str, declared_filename: str) -> MergedArtifact:
        """
        Merge all parts of a session into one artifact.

        Raises:
            SessionNotFound: unknown or already merged session
            Forbidden: caller is not the owner
            IncompleteUpload: parts are missing; the session is kept
            SessionBusy: another merge of this session is running
            CorruptState: a recorded part is missing from the part store
            StorageError: the artifact could not be written
        """
        session = self.registry.get_session(upload_id)
        ensure_owner(session, caller_id)

        logger.info(f"Starting merge for upload session {upload_id} ({session.total_parts} parts)")
        session = self.registry.begin_merge(upload_id)

        filename = generate_artifact_name(declared_filename)
        final_path = self.public_dir / filename
        partial_path = self.public_dir / f".{filename}.partial"

        try:
            size = self._assemble(session.staging_location, session.total_parts, partial_path)
            os.replace(partial_path, final_path)
        except BaseException as e:
            # Whatever went wrong, the session must leave the merging state
            self._discard(partial_path)
            self.registry.abort_merge(upload_id)
            if isinstance(e, OSError):
                logger.error(f"Failed to merge upload session {upload_id}: {e}")
                raise StorageError(f"Failed to merge upload: {e}", {"uploadId": upload_id}) from e
            if not isinstance(e, UploadError):
                logger.exception(f"Unexpected failure while merging upload session {upload_id}")
            raise

        finished_at = utcnow()
        artifact = MergedArtifact(
            filename=filename,
            original_name=declared_filename,
            size=size,
            url=self.artifact_url(filename),
            upload_date=finished_at,
            upload_duration_ms=int((finished_at - session.created_at).total_seconds() * 1000),
        )

        self.registry.remove_session(upload_id)
        self.part_store.purge(session.staging_location)

        logger.info(f"Completed upload {upload_id}: {declared_filename} -> {final_path} ({size} bytes)")
        return artifact

    def _assemble(self, staging: Path, total_parts: int, destination: Path) -> int:
        size = 0
        with open(destination, "wb") as outfile:
            for block in self.part_store.read_parts_in_order(staging, total_parts):
                outfile.write(block)
                size += len(block)
            outfile.flush()
            os.fsync(outfile.fileno())
        return size

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial artifact {path}: {e}")

    def list_artifacts(self) -> List[Dict]:
        """Published artifacts, newest first."""
        files = []
        for path in self.public_dir.iterdir():
            if not path.is_file() or path.name.startswith("."):
                continue
            stat = path.stat()
            files.append({
                "filename": path.name,
                "size": stat.st_size,
                "url": self.artifact_url(path.name),
                "upload_date": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                "mime_type": mimetypes.guess_type(path.name)[0] or "application/octet-stream",
            })
        files.sort(key=lambda f: f["upload_date"], reverse=True)
        return files
