"""SQL database storage module."""

from .database import (
    DatabaseManager,
    cleanup_database_manager,
    get_database_manager,
)
from .models import (
    Base,
    Change,
    NotificationChannel,
    Scan,
    Site,
    SiteGroup,
    UrlRecord,
    Webhook,
    utcnow,
)

__all__ = [
    # Database management
    "DatabaseManager",
    "get_database_manager",
    "cleanup_database_manager",
    # Models
    "Base",
    "Site",
    "SiteGroup",
    "Scan",
    "UrlRecord",
    "Change",
    "NotificationChannel",
    "Webhook",
    "utcnow",
]
