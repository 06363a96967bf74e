"""APScheduler job that re-opens recurring deals.

A single interval job calls ``DealService.process_recurrence`` every
``RECURRENCE_SWEEP_MINUTES``. ``max_instances=1`` keeps sweeps from
overlapping inside one process; the sweep itself is idempotent, so a
second process running the same job does no harm.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flashdeals.config import settings
from flashdeals.services.audit_service import AuditSink
from flashdeals.services.cache_service import invalidate_deals_cache
from flashdeals.services.deal_service import DealService

logger = structlog.get_logger(__name__)

RECURRENCE_JOB_ID = "deal_recurrence_sweep"


class RecurrenceScheduler:
    """Owns the AsyncIOScheduler running the recurrence sweep."""

    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        interval_minutes: Optional[int] = None,
    ):
        self.db_session_factory = db_session_factory
        self.interval_minutes = interval_minutes or settings.RECURRENCE_SWEEP_MINUTES
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="recurrence_scheduler")

    def start(self) -> Optional[Job]:
        """Start the scheduler and register the sweep job.

        The first sweep runs immediately so deals that elapsed while the
        process was down re-open on boot.
        """
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return None

        self.scheduler.start()
        job = self.scheduler.add_job(
            func=self._run_sweep_wrapper,
            trigger=IntervalTrigger(minutes=self.interval_minutes, timezone="UTC"),
            id=RECURRENCE_JOB_ID,
            name="Deal recurrence sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.logger.info(
            "scheduler_started",
            interval_minutes=self.interval_minutes,
            next_run=job.next_run_time.isoformat() if job.next_run_time else None,
        )
        return job

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    async def _run_sweep_wrapper(self) -> None:
        """Entry point APScheduler calls; a failed sweep must not kill the job."""
        try:
            await self.run_sweep()
        except Exception as e:
            self.logger.error("recurrence_sweep_failed", error=str(e), exc_info=True)

    async def run_sweep(self, now: Optional[datetime] = None) -> int:
        """Run one sweep on a fresh session. Returns how many deals recurred."""
        async with self.db_session_factory() as db:
            sink = AuditSink(self.db_session_factory)
            recurred = await DealService(db, sink=sink).process_recurrence(now)
        await sink.drain()

        if recurred:
            await invalidate_deals_cache()
        return recurred

    def get_job_status(self) -> dict:
        job = self.scheduler.get_job(RECURRENCE_JOB_ID)
        if not job:
            return {}
        return {
            "job_id": job.id,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }

    def is_running(self) -> bool:
        return self.scheduler.running
