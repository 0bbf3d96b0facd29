"""
Background removal of abandoned upload sessions
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from starlette.concurrency import run_in_threadpool

from ..core.errors import SessionBusy
from ..models import MERGING, utcnow
from .part_store import PartStore
from .registry import UploadSessionRegistry

logger = logging.getLogger(__name__)


class StaleSessionReaper:
    """
    Removes sessions that were never merged or cancelled.

    An uploading session is stale once it is older than ttl_seconds. A
    merging session is stale once its merge has been running for longer
    than merge_timeout_seconds (defaults to ttl_seconds); that only happens
    when the process doing the merge died.
    """

    def __init__(
        self,
        registry: UploadSessionRegistry,
        part_store: PartStore,
        ttl_seconds: int,
        merge_timeout_seconds: Optional[int] = None,
    ):
        self.registry = registry
        self.part_store = part_store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.merge_timeout = timedelta(
            seconds=ttl_seconds if merge_timeout_seconds is None else merge_timeout_seconds
        )

    def reap(self, now: Optional[datetime] = None) -> List[str]:
        """Remove stale sessions and purge their staging directories."""
        now = now or utcnow()
        removed = []
        for session in self.registry.stale_sessions(now - self.ttl, now - self.merge_timeout):
            try:
                # Only remove it if it is still in the state that made it stale
                gone = self.registry.remove_session(session.id, require_state=session.state)
            except SessionBusy:
                continue
            if gone is None:
                continue
            self.part_store.purge(gone.staging_location)
            removed.append(gone.id)
            if gone.state == MERGING:
                logger.warning(
                    f"Reaped upload session {gone.id} stuck merging since {gone.merge_started_at.isoformat()}"
                )
            else:
                logger.info(
                    f"Reaped stale upload session {gone.id} "
                    f"({gone.received_count}/{gone.total_parts} parts, created {gone.created_at.isoformat()})"
                )
        return removed

    async def run_forever(self, interval_seconds: float) -> None:
        """Reap every interval_seconds until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await run_in_threadpool(self.reap)
            except Exception:
                logger.exception("Stale session sweep failed")
