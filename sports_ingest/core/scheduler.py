"""
Ingestion scheduler.

Scheduled jobs:
- Games sync for every sport (hourly, on the hour)
- Live scores for every sport (every 2 minutes)
- League catalogue refresh (daily at 3am)

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sports_ingest.services.sync.orchestrator import ETLOrchestrator

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """
    Runs the orchestrator's cycles on a timer.

    Every job is coalesced and limited to one running instance, so a slow
    cycle is never stacked on top of itself.

    Args:
        orchestrator: Orchestrator whose ``sync_all_sports`` the jobs call
        timezone: Scheduler timezone for the cron triggers
    """

    def __init__(self, orchestrator: ETLOrchestrator, timezone: str = "UTC"):
        self.orchestrator = orchestrator
        self.timezone = timezone
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting ingestion scheduler...")
        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )

        self._schedule_games_sync()
        self._schedule_live_sync()
        self._schedule_leagues_sync()

        self.scheduler.start()
        self.running = True
        logger.info("✅ Scheduler started with %d jobs", len(self.scheduler.get_jobs()))
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("✅ Scheduler stopped")

    async def run_cycle(self, sync_type: str) -> None:
        """Job body: one full cycle, never raising into APScheduler."""
        try:
            result = await self.orchestrator.sync_all_sports(sync_type)
        except Exception as e:
            logger.error(f"❌ {sync_type} sync failed: {e}")
            return

        if result.skipped:
            logger.info(f"{sync_type} sync skipped, a cycle is already running")
            return
        logger.info(
            f"{'✅' if result.success else '❌'} {sync_type} sync: "
            f"{result.records_created} created, {result.records_updated} updated "
            f"({result.duration_ms}ms)"
        )

    def _schedule_games_sync(self):
        """
        Schedule: Games for every sport.

        Frequency: Hourly, on the hour
        Purpose: Keep upcoming fixtures and their default markets current
        """
        self.scheduler.add_job(
            self.run_cycle,
            trigger=CronTrigger(minute=0, timezone=self.timezone),
            args=["games"],
            id="games_sync",
            name="Sync games for all sports",
        )
        logger.info("📅 Scheduled: Games sync (hourly)")

    def _schedule_live_sync(self):
        """
        Schedule: Live scores for every sport.

        Frequency: Every 2 minutes
        """
        self.scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(minutes=2, timezone=self.timezone),
            args=["live"],
            id="live_sync",
            name="Sync live scores for all sports",
        )
        logger.info("📅 Scheduled: Live scores (every 2 minutes)")

    def _schedule_leagues_sync(self):
        """
        Schedule: League catalogue.

        Frequency: Daily at 3am
        """
        self.scheduler.add_job(
            self.run_cycle,
            trigger=CronTrigger(hour=3, minute=0, timezone=self.timezone),
            args=["leagues"],
            id="leagues_sync",
            name="Sync leagues for all sports",
        )
        logger.info("📅 Scheduled: Leagues sync (daily at 3am)")

    def get_jobs(self):
        """Scheduled jobs with their next run time."""
        if self.scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        for job in self.get_jobs():
            logger.info(f"  • {job['name']} (id={job['id']}, next run {job['next_run_time'] or 'pending'})")


# Global scheduler instance
_scheduler: Optional[IngestionScheduler] = None


async def start_scheduler(orchestrator: ETLOrchestrator, timezone: str = "UTC") -> IngestionScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = IngestionScheduler(orchestrator, timezone)
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[IngestionScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
