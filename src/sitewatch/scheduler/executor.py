"""Runs one claimed scan: fetch, diff, complete, notify."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..diff import DiffEngine, DiffResult
from ..notification import ChangeNotification, NotificationDispatcher
from ..sitemap import SitemapFetcher
from ..storage.sqlite import DatabaseManager, Scan, Site
from ..storage.types import NotFoundError, ScanConflictError, ScanStatus
from ..utils.async_utils import run_with_timeout
from ..utils.logging import LoggingContextManager, get_structured_logger
from .lifecycle import ScanLifecycleManager
from .types import ScanSummary

logger = get_structured_logger(__name__)


class ScanExecutor:
    """Drives a running scan to a terminal state.

    Every exception is caught at the scan boundary and recorded as the
    failure reason; the snapshot changes and the success transition commit
    in one transaction. A scan reaped while it was fetching loses: its
    diff is rolled back when the completion finds it no longer running.
    """

    def __init__(
        self,
        db: DatabaseManager,
        lifecycle: ScanLifecycleManager,
        fetcher: SitemapFetcher,
        diff_engine: Optional[DiffEngine] = None,
        notifier: Optional[NotificationDispatcher] = None,
        scan_timeout_seconds: float = 600.0,
    ):
        self.db = db
        self.lifecycle = lifecycle
        self.fetcher = fetcher
        self.diff_engine = diff_engine or DiffEngine()
        self.notifier = notifier
        self.scan_timeout_seconds = scan_timeout_seconds

    async def execute(self, scan: Scan) -> Optional[DiffResult]:
        """Execute a scan already moved to running; returns the delta on success."""
        with LoggingContextManager(scan_id=scan.id, site_id=scan.site_id):
            try:
                delta, site_url = await self._run(scan)
            except ScanConflictError as e:
                logger.warning("Scan finished elsewhere, discarding result", error=str(e))
                return None
            except Exception as e:
                reason = str(e) or e.__class__.__name__
                logger.error("Scan failed", error=reason, error_type=type(e).__name__)
                await self._fail(scan.id, reason)
                return None

            if delta.has_changes and self.notifier is not None:
                await self.notifier.notify_change(
                    scan.site_id,
                    ChangeNotification(
                        site_id=scan.site_id,
                        scan_id=scan.id,
                        added=delta.added_count,
                        removed=delta.removed_count,
                        updated=delta.updated_count,
                        site_url=site_url,
                        added_urls=delta.added,
                        removed_urls=delta.removed,
                        updated_urls=delta.updated,
                    ),
                )
            return delta

    async def _run(self, scan: Scan) -> tuple[DiffResult, str]:
        async with self.db.get_session() as session:
            site = await session.get(Site, scan.site_id)
            if site is None:
                raise NotFoundError(f"Site not found: {scan.site_id}")

        fetched = await run_with_timeout(
            self.fetcher.fetch(site),
            self.scan_timeout_seconds,
            f"Sitemap fetch exceeded {self.scan_timeout_seconds}s",
        )

        async with self.db.get_transaction() as session:
            # A site without a successful scan has no snapshot to compare against
            baseline = await self._needs_baseline(session, site.id)
            delta = await self.diff_engine.diff(
                session, site.id, scan.id, fetched, baseline=baseline
            )
            await self.lifecycle.complete_in_session(
                session,
                scan.id,
                ScanStatus.SUCCESS,
                summary=ScanSummary(
                    added=delta.added_count,
                    removed=delta.removed_count,
                    updated=delta.updated_count,
                    url_count=delta.url_count,
                ),
                baseline=baseline,
            )
        return delta, site.root_url

    async def _needs_baseline(self, session: AsyncSession, site_id: str) -> bool:
        succeeded = await session.scalar(
            select(Scan.id)
            .where(Scan.site_id == site_id, Scan.status == ScanStatus.SUCCESS.value)
            .limit(1)
        )
        return succeeded is None

    async def _fail(self, scan_id: str, reason: str) -> None:
        try:
            await self.lifecycle.complete(scan_id, ScanStatus.FAILED, error=reason)
        except (ScanConflictError, NotFoundError) as e:
            logger.warning("Could not record scan failure", error=str(e))
