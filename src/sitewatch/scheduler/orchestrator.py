"""Wires the scan engine together and exposes the three trigger operations."""

from typing import Optional

from ..config import AppSettings, get_settings
from ..diff import DiffEngine
from ..notification import NotificationDispatcher
from ..sitemap import SiteDiscovery, SitemapFetcher
from ..storage import (
    DatabaseManager,
    SiteRegistry,
    cleanup_database_manager,
    get_database_manager,
)
from ..utils.async_utils import AsyncContextManager
from ..utils.logging import get_structured_logger
from .dispatcher import ScanDispatcher
from .executor import ScanExecutor
from .lifecycle import ScanLifecycleManager
from .types import CleanupSummary, DueScanSummary, QueueAdvanceSummary

logger = get_structured_logger(__name__)


class SchedulingOrchestrator(AsyncContextManager):
    """Owns one instance of every engine component.

    HTTP handlers, CLI commands and the in-process runner all call the
    same three trigger methods on this object.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        db: Optional[DatabaseManager] = None,
        fetcher: Optional[SitemapFetcher] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.settings = settings or get_settings()
        self.db = db
        self._fetcher = fetcher
        self._notifier = notifier
        self.is_running = False
        self._owns_db = db is None

        self.registry: Optional[SiteRegistry] = None
        self.lifecycle: Optional[ScanLifecycleManager] = None
        self.fetcher: Optional[SitemapFetcher] = None
        self.notifier: Optional[NotificationDispatcher] = None
        self.executor: Optional[ScanExecutor] = None
        self.dispatcher: Optional[ScanDispatcher] = None
        self.discovery: Optional[SiteDiscovery] = None

    async def setup(self) -> None:
        """Initialize storage and build the component graph."""
        if self.is_running:
            return

        logger.info("Starting scheduling orchestrator")

        if self._owns_db:
            self.db = await get_database_manager(self.settings.database)
        else:
            await self.db.setup()

        self.registry = SiteRegistry(self.db)
        self.lifecycle = ScanLifecycleManager(self.db)
        self.fetcher = self._fetcher or SitemapFetcher(self.settings.fetcher)
        self.notifier = self._notifier or NotificationDispatcher(
            self.db, self.settings.notification
        )
        self.executor = ScanExecutor(
            self.db,
            self.lifecycle,
            self.fetcher,
            DiffEngine(),
            self.notifier,
            scan_timeout_seconds=self.settings.scheduler.scan_timeout_seconds,
        )
        self.dispatcher = ScanDispatcher(
            self.db,
            self.lifecycle,
            self.executor,
            tag_match_mode=self.settings.scheduler.tag_match_mode,
        )
        self.discovery = SiteDiscovery(self.db, self.fetcher)

        self.is_running = True
        logger.info("Scheduling orchestrator started")

    async def cleanup(self) -> None:
        """Wait for in-flight scans, then stop."""
        if not self.is_running:
            return

        logger.info("Stopping scheduling orchestrator", in_flight=self.dispatcher.pending_count)
        await self.dispatcher.shutdown()
        if self._owns_db:
            await cleanup_database_manager()
        self.is_running = False
        logger.info("Scheduling orchestrator stopped")

    # Trigger operations

    async def run_due_scan_pass(self, max_sites: Optional[int] = None) -> DueScanSummary:
        return await self.dispatcher.scan_due_sites(max_sites=max_sites)

    async def reap_stuck_scans(self, timeout_minutes: Optional[int] = None) -> CleanupSummary:
        timeout = timeout_minutes or self.settings.scheduler.stuck_timeout_minutes
        reaped = await self.lifecycle.reap_stuck(timeout)
        return CleanupSummary(timeout_minutes=timeout, reaped=reaped)

    async def advance_queue(self, max_concurrent: Optional[int] = None) -> QueueAdvanceSummary:
        limit = (
            max_concurrent
            if max_concurrent is not None
            else self.settings.scheduler.max_concurrent
        )
        return await self.dispatcher.start_queued_scans(max_concurrent=limit)

