"""Storage module: ORM models, session management and registry queries."""

from .interface import SiteRegistry
from .sqlite import (
    Base,
    Change,
    DatabaseManager,
    NotificationChannel,
    Scan,
    Site,
    SiteGroup,
    UrlRecord,
    Webhook,
    cleanup_database_manager,
    get_database_manager,
)
from .types import (
    ChangeType,
    ChannelType,
    NewUrlRecord,
    NewUrlsReport,
    NotFoundError,
    ScanConflictError,
    ScanDiffSummary,
    ScanStatus,
    StorageError,
    UrlStatus,
)

__all__ = [
    # Registry
    "SiteRegistry",
    # Types
    "StorageError",
    "NotFoundError",
    "ScanConflictError",
    "ScanStatus",
    "UrlStatus",
    "ChangeType",
    "ChannelType",
    "ScanDiffSummary",
    "NewUrlRecord",
    "NewUrlsReport",
    # SQLite
    "DatabaseManager",
    "get_database_manager",
    "cleanup_database_manager",
    "Base",
    "Site",
    "SiteGroup",
    "Scan",
    "UrlRecord",
    "Change",
    "NotificationChannel",
    "Webhook",
]
