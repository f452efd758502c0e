"""Type definitions for storage components."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..utils.types import SitewatchError


class StorageError(SitewatchError):
    """Base exception for storage-related errors."""

    pass


class NotFoundError(StorageError):
    """A site, scan or channel does not exist or is not owned by the caller."""

    pass


class ScanConflictError(StorageError):
    """A scan transition was attempted from the wrong source state."""

    def __init__(self, scan_id: str, expected: str, actual: Optional[str]):
        self.scan_id = scan_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Scan {scan_id} is {actual or 'missing'}, expected {expected}"
        )


class ScanStatus(str, Enum):
    """Status of a scan."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def active(cls) -> tuple["ScanStatus", ...]:
        return (cls.QUEUED, cls.RUNNING)

    @classmethod
    def terminal(cls) -> tuple["ScanStatus", ...]:
        return (cls.SUCCESS, cls.FAILED)


class UrlStatus(str, Enum):
    """Status of a URL record within a site's snapshot."""

    ACTIVE = "active"
    REMOVED = "removed"


class ChangeType(str, Enum):
    """Kind of URL transition recorded by a scan."""

    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"


class ChannelType(str, Enum):
    """Notification channel kinds."""

    WEBHOOK = "webhook"
    EMAIL = "email"
    SLACK = "slack"


# Site configuration bounds
MIN_SCAN_PRIORITY = 1
MAX_SCAN_PRIORITY = 5
MIN_SCAN_INTERVAL_MINUTES = 5
MAX_SCAN_INTERVAL_MINUTES = 10080


@dataclass
class ScanDiffSummary:
    """Changes recorded by one scan, as returned by the scan-diff query."""

    scan_id: str
    site_id: str
    added: int = 0
    removed: int = 0
    updated: int = 0
    items: list[dict] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class NewUrlRecord:
    """A URL first seen inside a reporting window."""

    id: str
    url: str
    site_id: str
    site_root_url: str
    discovered_at: Optional[datetime]
    changefreq: Optional[str] = None
    priority: Optional[str] = None


@dataclass
class NewUrlsReport:
    """URLs first seen in a window plus per-site counts."""

    urls: list[NewUrlRecord]
    total_count: int
    site_stats: list[dict]
