"""Background task that reclaims expired links and orphaned blobs."""

import asyncio
from datetime import datetime
from typing import Callable, Optional

from common.logging_config import get_logger
from vault import config
from vault.blob_store import BlobStore
from vault.exceptions import BlobStoreError
from vault.repositories.content_repository import ContentRepository
from vault.repositories.orphan_repository import OrphanRepository
from vault.types import ContentKind
from vault.utils import utc_now

logger = get_logger(__name__)


class ExpiryReaper:
    """
    Background task that periodically removes expired links from both stores.

    Reads already refuse expired links on their own; this sweep reclaims
    storage for links nobody revisits.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        interval_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize reaper task.

        Args:
            blob_store: Store holding file bytes
            interval_seconds: Time between sweeps (default REAPER_INTERVAL_SECONDS)
            clock: Source of the current time
        """
        self.blob_store = blob_store
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else config.REAPER_INTERVAL_SECONDS
        )
        self.content_repo = ContentRepository()
        self.orphan_repo = OrphanRepository()
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            logger.warning("Expiry reaper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started expiry reaper (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped expiry reaper")

    async def _run(self) -> None:
        """Main loop; a failed sweep never stops the next one."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await self.sweep()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiry sweep: {e}", exc_info=True)

    async def sweep(self) -> int:
        """
        Execute one sweep.

        Returns:
            Number of expired records removed
        """
        now = self._clock()
        expired = self.content_repo.list_expired(now)

        if not expired:
            logger.debug("No expired links found")
        else:
            logger.info(f"Found {len(expired)} expired links, deleting")

        removed = 0
        for record in expired:
            if record.kind is ContentKind.FILE and record.blob_key:
                try:
                    await self.blob_store.delete(record.blob_key)
                except BlobStoreError as e:
                    logger.warning(
                        f"Blob delete failed for expired link [content_id={record.content_id}] "
                        f"reason={e.reason}; recording orphan"
                    )
                    self.orphan_repo.record_orphan(record.blob_key, "expired", now)

            if self.content_repo.delete_content(record.content_id):
                removed += 1

        await self._sweep_orphans()

        if expired:
            logger.info(f"Expiry sweep complete: {removed} removed")
        return removed

    async def _sweep_orphans(self) -> None:
        orphans = self.orphan_repo.list_orphans()
        if not orphans:
            return

        cleaned = 0
        for orphan in orphans:
            try:
                await self.blob_store.delete(orphan.blob_key)
            except BlobStoreError as e:
                logger.warning(f"Orphaned blob still not deletable [blob_key={orphan.blob_key}] reason={e.reason}")
                continue
            self.orphan_repo.remove_orphan(orphan.blob_key)
            cleaned += 1

        logger.info(f"Orphan cleanup: {cleaned} cleaned, {len(orphans) - cleaned} remaining")
