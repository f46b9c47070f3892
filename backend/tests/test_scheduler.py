"""Tests for the maintenance scheduler jobs."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shellfs.services.scheduler import MaintenanceScheduler


def _fs_mock(dirty=True):
    fs = MagicMock()
    fs.reconcile = AsyncMock(return_value={"deleted": 3})
    fs.index.is_dirty = dirty
    return fs


@pytest.mark.asyncio
async def test_start_registers_jobs():
    scheduler = MaintenanceScheduler(_fs_mock())
    scheduler.start()
    try:
        assert scheduler.running
        job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
        assert job_ids == {"reconcile_content", "flush_snapshot"}
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_reconcile_job_calls_service():
    fs = _fs_mock()
    await MaintenanceScheduler(fs)._reconcile()
    fs.reconcile.assert_awaited_once()


@pytest.mark.asyncio
async def test_reconcile_job_swallows_errors():
    fs = _fs_mock()
    fs.reconcile.side_effect = RuntimeError("db locked")
    await MaintenanceScheduler(fs)._reconcile()


@pytest.mark.asyncio
async def test_flush_only_when_dirty():
    dirty, clean = _fs_mock(dirty=True), _fs_mock(dirty=False)
    await MaintenanceScheduler(dirty)._flush_snapshot()
    await MaintenanceScheduler(clean)._flush_snapshot()
    dirty.index.flush.assert_called_once()
    clean.index.flush.assert_not_called()
