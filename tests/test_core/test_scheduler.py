"""Unit tests for the ingestion scheduler.

Test Strategy:
1. Test the three jobs are registered with their ids
2. Test the job body never raises into APScheduler
3. Test start/stop are idempotent
"""
from unittest.mock import AsyncMock, Mock

import pytest

from sports_ingest.core.scheduler import IngestionScheduler
from sports_ingest.services.sync.orchestrator import ETLSyncResult


@pytest.fixture
def orchestrator():
    orchestrator = Mock()
    orchestrator.sync_all_sports = AsyncMock(return_value=ETLSyncResult(sync_type="games", success=True))
    return orchestrator


class TestIngestionScheduler:
    """Job registration and execution."""

    @pytest.mark.asyncio
    async def test_registers_jobs(self, orchestrator):
        scheduler = IngestionScheduler(orchestrator)

        await scheduler.start()
        try:
            jobs = {job["id"]: job for job in scheduler.get_jobs()}
            assert set(jobs) == {"games_sync", "live_sync", "leagues_sync"}
            assert all(job["next_run_time"] for job in jobs.values())
        finally:
            await scheduler.stop()

        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, orchestrator):
        scheduler = IngestionScheduler(orchestrator)
        await scheduler.start()
        first = scheduler.scheduler

        await scheduler.start()

        assert scheduler.scheduler is first
        await scheduler.stop()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_run_cycle_calls_orchestrator(self, orchestrator):
        await IngestionScheduler(orchestrator).run_cycle("live")

        orchestrator.sync_all_sports.assert_awaited_once_with("live")

    @pytest.mark.asyncio
    async def test_run_cycle_swallows_errors(self, orchestrator):
        orchestrator.sync_all_sports.side_effect = RuntimeError("database down")

        await IngestionScheduler(orchestrator).run_cycle("games")

    def test_no_jobs_before_start(self, orchestrator):
        assert IngestionScheduler(orchestrator).get_jobs() == []
