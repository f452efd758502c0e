"""Type definitions for the scheduler module."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils.types import SitewatchError


class SchedulerError(SitewatchError):
    """Base exception for scheduler-related errors."""

    pass


class EnqueueStatus(str, Enum):
    """Outcome of an enqueue request."""

    QUEUED = "queued"
    ALREADY_QUEUED = "already_queued"
    ALREADY_RUNNING = "already_running"

    @classmethod
    def for_existing(cls, scan_status: str) -> "EnqueueStatus":
        return cls(f"already_{scan_status}")


class BulkScope(str, Enum):
    """Candidate set of a bulk scan request."""

    ALL = "all"
    FILTERED = "filtered"
    CURRENT = "current"


@dataclass
class EnqueueResult:
    """Scan id plus whether it was created or already active."""

    scan_id: str
    status: EnqueueStatus

    @property
    def created(self) -> bool:
        return self.status == EnqueueStatus.QUEUED

    @property
    def already_active(self) -> bool:
        return not self.created


@dataclass
class ScanSummary:
    """Counters recorded on a successful scan."""

    added: int = 0
    removed: int = 0
    updated: int = 0
    url_count: int = 0


@dataclass
class SiteScanOutcome:
    """Per-site line of a due-scan pass."""

    site_id: str
    status: str  # queued, already_queued, already_running or error
    scan_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DueScanSummary:
    """Result of one due-site scan pass."""

    checked: int = 0
    queued: int = 0
    already_active: int = 0
    errors: int = 0
    results: list[SiteScanOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QueueAdvanceSummary:
    """Result of one queue advancement."""

    running_before: int = 0
    capacity: int = 0
    started: list[dict[str, str]] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CleanupSummary:
    """Result of one stuck-scan reaping pass."""

    timeout_minutes: int
    reaped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanFilters:
    """Filters of a bulk scan with scope ``filtered``."""

    tags: list[str] = field(default_factory=list)
    group_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.tags and self.group_id is None


@dataclass
class BulkScanSummary:
    """Result of a bulk scan request."""

    scope: str
    queued: int = 0
    skipped: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
