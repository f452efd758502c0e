"""Due-site selection, queue advancement and bulk scan triggers."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import select

from ..storage.sqlite import DatabaseManager, Scan, Site, utcnow
from ..storage.types import ScanConflictError, ScanStatus
from ..utils.async_utils import create_task_with_error_handling
from ..utils.logging import get_structured_logger
from .executor import ScanExecutor
from .lifecycle import ScanLifecycleManager
from .types import (
    BulkScanSummary,
    BulkScope,
    DueScanSummary,
    EnqueueStatus,
    QueueAdvanceSummary,
    ScanFilters,
    SiteScanOutcome,
)

logger = get_structured_logger(__name__)

DEFAULT_MAX_CONCURRENT = 3


def is_due(site: Site, now: datetime) -> bool:
    if site.last_scan_at is None:
        return True
    return now - site.last_scan_at >= timedelta(minutes=site.scan_interval_minutes)


def overdue_seconds(site: Site, now: datetime) -> float:
    """How long past its due time a site is; never-scanned sites rank first."""
    if site.last_scan_at is None:
        return float("inf")
    due_at = site.last_scan_at + timedelta(minutes=site.scan_interval_minutes)
    return (now - due_at).total_seconds()


def matches_tags(site: Site, tags: list[str], mode: str = "substring") -> bool:
    """True when ANY requested tag matches the site.

    ``substring`` matches against the serialized tag column, so "news"
    also matches a site tagged "newsletter"; ``exact`` compares whole tags.
    """
    wanted = [tag.strip() for tag in tags if tag and tag.strip()]
    if not wanted:
        return True
    if mode == "exact":
        site_tags = set(site.tag_list)
        return any(tag in site_tags for tag in wanted)
    raw = site.tags or ""
    return any(tag in raw for tag in wanted)


class ScanDispatcher:
    """Feeds sites into the scan queue and drains it under a concurrency cap.

    The queue is the scans table itself; this class only keeps references
    to the asyncio tasks it handed scans to.
    """

    def __init__(
        self,
        db: DatabaseManager,
        lifecycle: ScanLifecycleManager,
        executor: ScanExecutor,
        tag_match_mode: str = "substring",
    ):
        self.db = db
        self.lifecycle = lifecycle
        self.executor = executor
        self.tag_match_mode = tag_match_mode
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def scan_due_sites(self, max_sites: Optional[int] = None) -> DueScanSummary:
        """Enqueue every enabled site whose interval has elapsed."""
        if max_sites is not None and max_sites < 0:
            raise ValueError("max_sites cannot be negative")

        now = utcnow()
        async with self.db.get_session() as session:
            result = await session.execute(select(Site).where(Site.enabled.is_(True)))
            due = [site for site in result.scalars() if is_due(site, now)]

        due.sort(key=lambda site: (site.scan_priority, -overdue_seconds(site, now)))
        if max_sites is not None:
            due = due[:max_sites]

        summary = DueScanSummary(checked=len(due))
        for site in due:
            try:
                enqueued = await self.lifecycle.enqueue(site.id)
            except Exception as e:
                logger.error("Failed to enqueue due site", site_id=site.id, error=str(e))
                summary.errors += 1
                summary.results.append(
                    SiteScanOutcome(site_id=site.id, status="error", error=str(e))
                )
                continue

            if enqueued.created:
                summary.queued += 1
            else:
                summary.already_active += 1
            summary.results.append(
                SiteScanOutcome(
                    site_id=site.id,
                    status=enqueued.status.value,
                    scan_id=enqueued.scan_id,
                )
            )

        logger.info(
            "Due scan pass complete",
            checked=summary.checked,
            queued=summary.queued,
            already_active=summary.already_active,
            errors=summary.errors,
        )
        return summary

    async def start_queued_scans(
        self, max_concurrent: int = DEFAULT_MAX_CONCURRENT
    ) -> QueueAdvanceSummary:
        """Claim queued scans up to the free capacity and hand them off.

        Returns as soon as the claimed scans are running; execution
        continues in background tasks.
        """
        if max_concurrent < 0:
            raise ValueError("max_concurrent cannot be negative")

        running = await self.lifecycle.count_running()
        capacity = max(0, max_concurrent - running)
        summary = QueueAdvanceSummary(running_before=running, capacity=capacity)
        if capacity == 0:
            logger.debug("No free scan capacity", running=running, max_concurrent=max_concurrent)
            return summary

        async with self.db.get_session() as session:
            result = await session.execute(
                select(Scan.id, Scan.site_id)
                .join(Site, Scan.site_id == Site.id)
                .where(Scan.status == ScanStatus.QUEUED.value)
                .order_by(Site.scan_priority, Scan.created_at)
                .limit(capacity)
            )
            candidates = result.all()

        for scan_id, site_id in candidates:
            try:
                scan = await self.lifecycle.start(scan_id)
            except ScanConflictError as e:
                summary.skipped.append(
                    {"scan_id": scan_id, "site_id": site_id, "reason": f"already_{e.actual}"}
                )
                continue

            self._spawn(scan)
            summary.started.append({"scan_id": scan_id, "site_id": site_id})

        logger.info(
            "Queue advanced",
            running_before=running,
            capacity=capacity,
            started=len(summary.started),
            skipped=len(summary.skipped),
        )
        return summary

    async def scan_all(
        self,
        owner_id: Optional[str] = None,
        scope: Union[BulkScope, str] = BulkScope.ALL,
        filters: Optional[ScanFilters] = None,
    ) -> BulkScanSummary:
        """Enqueue every candidate site that has no active scan."""
        scope = BulkScope(scope)
        filters = filters or ScanFilters()

        async with self.db.get_session() as session:
            query = select(Site).where(Site.enabled.is_(True))
            if owner_id is not None:
                query = query.where(Site.owner_id == owner_id)
            if scope == BulkScope.FILTERED and filters.group_id is not None:
                query = query.where(Site.group_id == filters.group_id)
            result = await session.execute(query.order_by(Site.created_at))
            candidates = list(result.scalars())

        if scope == BulkScope.FILTERED and filters.tags:
            candidates = [
                site
                for site in candidates
                if matches_tags(site, filters.tags, self.tag_match_mode)
            ]

        summary = BulkScanSummary(scope=scope.value, total=len(candidates))
        for site in candidates:
            try:
                active = await self.lifecycle.get_active_scan(site.id)
                if active is not None:
                    enqueued_status = EnqueueStatus.for_existing(active.status)
                    scan_id = active.id
                else:
                    enqueued = await self.lifecycle.enqueue(site.id)
                    enqueued_status = enqueued.status
                    scan_id = enqueued.scan_id
            except Exception as e:
                logger.error("Bulk enqueue failed", site_id=site.id, error=str(e))
                summary.errors.append(f"{site.root_url}: {e}")
                summary.details.append(
                    {"site_id": site.id, "root_url": site.root_url, "status": "error", "error": str(e)}
                )
                continue

            if enqueued_status == EnqueueStatus.QUEUED:
                summary.queued += 1
                summary.details.append(
                    {"site_id": site.id, "root_url": site.root_url, "status": "queued", "scan_id": scan_id}
                )
            else:
                summary.skipped += 1
                summary.details.append(
                    {
                        "site_id": site.id,
                        "root_url": site.root_url,
                        "status": "skipped",
                        "reason": enqueued_status.value,
                        "scan_id": scan_id,
                    }
                )

        summary.message = (
            f"Queued {summary.queued} of {summary.total} sites"
            f" ({summary.skipped} skipped, {len(summary.errors)} errors)"
        )
        logger.info(
            "Bulk scan requested",
            scope=summary.scope,
            owner_id=owner_id,
            total=summary.total,
            queued=summary.queued,
            skipped=summary.skipped,
            errors=len(summary.errors),
        )
        return summary

    async def wait_for_pending(self, timeout: Optional[float] = None) -> None:
        """Wait for handed-off scans to finish."""
        if not self._tasks:
            return
        logger.debug("Waiting for in-flight scans", count=len(self._tasks))
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Let in-flight scans finish, cancelling any that outlive ``timeout``.

        A cancelled scan stays running until the reaper fails it.
        """
        await self.wait_for_pending(timeout=timeout)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self, scan: Scan) -> None:
        task = create_task_with_error_handling(
            self.executor.execute(scan), task_name=f"scan-{scan.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        # Failures were logged by the task wrapper
        if not task.cancelled():
            task.exception()
