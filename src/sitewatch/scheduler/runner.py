"""In-process periodic runner built on APScheduler."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import SchedulerSettings
from ..utils.async_utils import AsyncContextManager
from ..utils.logging import get_structured_logger
from .orchestrator import SchedulingOrchestrator
from .types import SchedulerError

logger = get_structured_logger(__name__)

DUE_SCAN_JOB = "due_scan_pass"
QUEUE_JOB = "advance_queue"
REAP_JOB = "reap_stuck_scans"


class SchedulerRunner(AsyncContextManager):
    """Calls the three trigger operations on fixed intervals.

    Takes the place of an external cron hitting the HTTP trigger endpoints.
    Each job runs at most once at a time; missed runs are coalesced.
    """

    def __init__(
        self,
        orchestrator: SchedulingOrchestrator,
        settings: Optional[SchedulerSettings] = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or orchestrator.settings.scheduler
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.runs = {DUE_SCAN_JOB: 0, QUEUE_JOB: 0, REAP_JOB: 0}
        self.failures = 0

    async def setup(self) -> None:
        """Start the APScheduler loop."""
        if self.is_running:
            return

        logger.info("Starting scheduler runner")

        try:
            self.scheduler = AsyncIOScheduler(
                executors={"default": AsyncIOExecutor()},
                job_defaults={
                    "coalesce": True,
                    "max_instances": 1,
                    "misfire_grace_time": 30,
                },
                timezone="UTC",
            )
            self.scheduler.add_listener(
                self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED
            )
            self._add_jobs()
            self.scheduler.start()
        except Exception as e:
            logger.error("Failed to start scheduler runner", error=str(e))
            raise SchedulerError(f"Scheduler startup failed: {str(e)}") from e

        self.is_running = True
        logger.info(
            "Scheduler runner started",
            due_scan_every=self.settings.due_scan_interval_minutes,
            queue_every=self.settings.queue_interval_minutes,
            reap_every=self.settings.reap_interval_minutes,
        )

    async def cleanup(self) -> None:
        """Stop scheduling new runs."""
        if not self.is_running:
            return

        logger.info("Stopping scheduler runner")
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
        self.is_running = False

    def _add_jobs(self) -> None:
        now = datetime.now(timezone.utc)
        jobs = (
            (DUE_SCAN_JOB, self.run_due_scan_pass, self.settings.due_scan_interval_minutes),
            (QUEUE_JOB, self.advance_queue, self.settings.queue_interval_minutes),
            (REAP_JOB, self.reap_stuck_scans, self.settings.reap_interval_minutes),
        )
        for job_id, func, minutes in jobs:
            self.scheduler.add_job(
                func,
                trigger=IntervalTrigger(minutes=minutes),
                id=job_id,
                name=job_id,
                next_run_time=now,
                replace_existing=True,
            )

    def _on_job_event(self, event) -> None:
        if event.code == EVENT_JOB_ERROR:
            self.failures += 1
            logger.error("Scheduled job failed", job_id=event.job_id, error=str(event.exception))
        elif event.code == EVENT_JOB_MISSED:
            logger.warning("Scheduled job missed", job_id=event.job_id)
        else:
            logger.debug("Scheduled job executed", job_id=event.job_id)

    async def run_due_scan_pass(self) -> None:
        summary = await self.orchestrator.run_due_scan_pass()
        self.runs[DUE_SCAN_JOB] += 1
        if summary.queued:
            # Start newly queued work without waiting for the next queue tick
            await self.advance_queue()

    async def advance_queue(self) -> None:
        await self.orchestrator.advance_queue(self.settings.max_concurrent)
        self.runs[QUEUE_JOB] += 1

    async def reap_stuck_scans(self) -> None:
        await self.orchestrator.reap_stuck_scans(self.settings.stuck_timeout_minutes)
        self.runs[REAP_JOB] += 1

    async def run_forever(self) -> None:
        """Run until cancelled."""
        await self.setup()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await self.cleanup()
