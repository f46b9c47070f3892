"""APScheduler-based background jobs for file system maintenance."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from shellfs.config import settings

if TYPE_CHECKING:
    from shellfs.services.filesystem import FileSystemService

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Periodic orphan reconciliation and snapshot safety flushes."""

    def __init__(self, filesystem: FileSystemService):
        self._fs = filesystem
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Register and start all maintenance jobs."""
        reconcile_minutes = settings.reconcile_interval_minutes
        flush_seconds = settings.snapshot_flush_interval_seconds

        # Job 1: Sweep content no metadata record references
        self._scheduler.add_job(
            self._reconcile,
            "interval",
            minutes=reconcile_minutes,
            id="reconcile_content",
            name="Reconcile orphaned content",
        )

        # Job 2: Flush a dirty snapshot the debounce may have missed
        self._scheduler.add_job(
            self._flush_snapshot,
            "interval",
            seconds=flush_seconds,
            id="flush_snapshot",
            name="Flush metadata snapshot",
        )

        self._scheduler.start()
        logger.info(
            "Maintenance scheduler started — reconcile every %dm, flush every %ds",
            reconcile_minutes,
            flush_seconds,
        )

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Maintenance scheduler stopped")

    async def _reconcile(self) -> None:
        try:
            result = await self._fs.reconcile()
            if result["deleted"]:
                logger.info("Scheduled reconciliation removed %d records", result["deleted"])
        except Exception as e:
            logger.error("Scheduled reconciliation failed: %s", e)

    async def _flush_snapshot(self) -> None:
        try:
            if self._fs.index.is_dirty:
                self._fs.index.flush()
        except Exception as e:
            logger.error("Snapshot flush failed: %s", e)
