"""Scan scheduling: lifecycle, dispatch, execution and periodic triggers."""

from .dispatcher import ScanDispatcher, matches_tags
from .executor import ScanExecutor
from .lifecycle import ScanLifecycleManager
from .orchestrator import SchedulingOrchestrator
from .runner import SchedulerRunner
from .types import (
    BulkScanSummary,
    BulkScope,
    CleanupSummary,
    DueScanSummary,
    EnqueueResult,
    EnqueueStatus,
    QueueAdvanceSummary,
    ScanFilters,
    ScanSummary,
    SchedulerError,
    SiteScanOutcome,
)

__all__ = [
    # Types
    "SchedulerError",
    "EnqueueStatus",
    "EnqueueResult",
    "BulkScope",
    "ScanFilters",
    "ScanSummary",
    "SiteScanOutcome",
    "DueScanSummary",
    "QueueAdvanceSummary",
    "CleanupSummary",
    "BulkScanSummary",
    # Components
    "ScanLifecycleManager",
    "ScanDispatcher",
    "ScanExecutor",
    "matches_tags",
    # Orchestration
    "SchedulingOrchestrator",
    "SchedulerRunner",
]
