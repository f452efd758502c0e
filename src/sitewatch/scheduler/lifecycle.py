"""Scan state machine: enqueue, start, complete and reap."""

from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..storage.sqlite import DatabaseManager, Scan, Site, utcnow
from ..storage.types import NotFoundError, ScanConflictError, ScanStatus
from ..utils.logging import get_structured_logger
from .types import EnqueueResult, EnqueueStatus, ScanSummary, SchedulerError

logger = get_structured_logger(__name__)

DEFAULT_STUCK_TIMEOUT_MINUTES = 60
# An active scan can finish between a rejected insert and the lookup
ENQUEUE_ATTEMPTS = 3


def timeout_message(timeout_minutes: int) -> str:
    return f"Scan timeout - exceeded {timeout_minutes} minutes"


class ScanLifecycleManager:
    """Owns every scan state transition.

    queued -> running -> success | failed, plus running -> failed by the
    reaper. Each transition is a conditional UPDATE on the expected source
    state, so concurrent callers cannot both win. At most one scan per site
    is queued or running; the partial unique index ``uq_scans_site_active``
    rejects a second one even across processes.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def enqueue(self, site_id: str) -> EnqueueResult:
        """Queue a scan for a site unless one is already queued or running."""
        for _ in range(ENQUEUE_ATTEMPTS):
            try:
                async with self.db.get_transaction() as session:
                    if await session.get(Site, site_id) is None:
                        raise NotFoundError(f"Site not found: {site_id}")

                    scan = Scan(site_id=site_id, status=ScanStatus.QUEUED.value)
                    session.add(scan)
                    await session.flush()
                    scan_id = scan.id
            except IntegrityError:
                existing = await self.get_active_scan(site_id)
                if existing is None:
                    continue
                logger.debug(
                    "Scan already active", site_id=site_id, scan_id=existing.id, status=existing.status
                )
                return EnqueueResult(
                    scan_id=existing.id, status=EnqueueStatus.for_existing(existing.status)
                )

            logger.info("Scan queued", site_id=site_id, scan_id=scan_id)
            return EnqueueResult(scan_id=scan_id, status=EnqueueStatus.QUEUED)

        raise SchedulerError(f"Could not enqueue a scan for site {site_id}")

    async def start(self, scan_id: str) -> Scan:
        """Move a queued scan to running."""
        async with self.db.get_transaction() as session:
            result = await session.execute(
                update(Scan)
                .where(Scan.id == scan_id, Scan.status == ScanStatus.QUEUED.value)
                .values(status=ScanStatus.RUNNING.value, started_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self._raise_transition_error(session, scan_id, ScanStatus.QUEUED)

            scan = await session.get(Scan, scan_id)

        logger.info("Scan started", scan_id=scan_id, site_id=scan.site_id)
        return scan

    async def complete(
        self,
        scan_id: str,
        outcome: ScanStatus,
        error: Optional[str] = None,
        summary: Optional[ScanSummary] = None,
    ) -> Scan:
        """Move a running scan to success or failed in its own transaction."""
        async with self.db.get_transaction() as session:
            return await self.complete_in_session(session, scan_id, outcome, error, summary)

    async def complete_in_session(
        self,
        session: AsyncSession,
        scan_id: str,
        outcome: ScanStatus,
        error: Optional[str] = None,
        summary: Optional[ScanSummary] = None,
        baseline: bool = False,
    ) -> Scan:
        """Terminal transition inside the caller's transaction.

        Also stamps the site's ``last_scan_at``, for success and failure
        alike, so a failing site waits a full interval before its next
        automatic attempt. A successful ``baseline`` scan is flagged as the
        site's initial snapshot.
        """
        outcome = ScanStatus(outcome)
        if outcome not in ScanStatus.terminal():
            raise ValueError(f"Scan outcome must be success or failed, got {outcome.value}")

        now = utcnow()
        values: dict = {"status": outcome.value, "finished_at": now}
        if outcome == ScanStatus.FAILED:
            values["error"] = error or "Scan failed"
        elif summary is not None:
            values.update(
                added_count=summary.added,
                removed_count=summary.removed,
                updated_count=summary.updated,
                url_count=summary.url_count,
            )
        if baseline and outcome == ScanStatus.SUCCESS:
            values["is_baseline"] = True

        result = await session.execute(
            update(Scan)
            .where(Scan.id == scan_id, Scan.status == ScanStatus.RUNNING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._raise_transition_error(session, scan_id, ScanStatus.RUNNING)

        scan = await session.get(Scan, scan_id, populate_existing=True)
        await session.execute(
            update(Site)
            .where(Site.id == scan.site_id)
            .values(last_scan_at=now)
            .execution_options(synchronize_session=False)
        )

        logger.info(
            "Scan completed",
            scan_id=scan_id,
            site_id=scan.site_id,
            outcome=outcome.value,
            error=values.get("error"),
        )
        return scan

    async def reap_stuck(self, timeout_minutes: int = DEFAULT_STUCK_TIMEOUT_MINUTES) -> int:
        """Fail every running scan that started more than ``timeout_minutes`` ago.

        Idempotent: a reaped scan is no longer running, so a repeat or a
        concurrent call finds nothing to update.
        """
        if timeout_minutes <= 0:
            raise ValueError("timeout_minutes must be positive")

        now = utcnow()
        cutoff = now - timedelta(minutes=timeout_minutes)
        async with self.db.get_transaction() as session:
            result = await session.execute(
                update(Scan)
                .where(
                    Scan.status == ScanStatus.RUNNING.value,
                    Scan.started_at < cutoff,
                )
                .values(
                    status=ScanStatus.FAILED.value,
                    finished_at=now,
                    error=timeout_message(timeout_minutes),
                )
                .execution_options(synchronize_session=False)
            )
            reaped = result.rowcount or 0

        if reaped:
            logger.warning("Reaped stuck scans", count=reaped, timeout_minutes=timeout_minutes)
        else:
            logger.debug("No stuck scans", timeout_minutes=timeout_minutes)
        return reaped

    async def get_scan(self, scan_id: str) -> Optional[Scan]:
        async with self.db.get_session() as session:
            return await session.get(Scan, scan_id)

    async def get_active_scan(self, site_id: str) -> Optional[Scan]:
        """The site's queued or running scan, if any."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Scan).where(
                    Scan.site_id == site_id,
                    Scan.status.in_([s.value for s in ScanStatus.active()]),
                )
            )
            return result.scalar_one_or_none()

    async def count_running(self) -> int:
        async with self.db.get_session() as session:
            count = await session.scalar(
                select(func.count()).select_from(Scan).where(
                    Scan.status == ScanStatus.RUNNING.value
                )
            )
            return count or 0

    async def _raise_transition_error(
        self, session: AsyncSession, scan_id: str, expected: ScanStatus
    ) -> None:
        current = await session.scalar(select(Scan.status).where(Scan.id == scan_id))
        if current is None:
            raise NotFoundError(f"Scan not found: {scan_id}")
        raise ScanConflictError(scan_id, expected.value, current)
