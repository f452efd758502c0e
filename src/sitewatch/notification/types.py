"""Type definitions for the notification module."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..storage.sqlite.models import utcnow
from ..utils.types import SitewatchError


class NotificationError(SitewatchError):
    """Base exception for notification-related errors."""

    pass


class DeliveryError(NotificationError):
    """A single channel delivery failed."""

    pass


class NotificationType(str, Enum):
    """Kinds of notification payloads."""

    SCAN = "scan"
    TEST = "test"


@dataclass
class ChangeNotification:
    """Payload announcing the delta of one scan."""

    site_id: str
    scan_id: str
    added: int = 0
    removed: int = 0
    updated: int = 0
    type: NotificationType = NotificationType.SCAN
    site_url: Optional[str] = None
    added_urls: list[str] = field(default_factory=list)
    removed_urls: list[str] = field(default_factory=list)
    updated_urls: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def total(self) -> int:
        return self.added + self.removed + self.updated

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["created_at"] = self.created_at.isoformat() + "Z"
        return data


@dataclass
class DeliveryResult:
    """Result of delivering to one destination."""

    success: bool
    channel_type: str
    target: str
    channel_id: Optional[str] = None
    attempts: int = 0
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None

    def __post_init__(self):
        if self.sent_at is None:
            self.sent_at = utcnow()


@dataclass
class Destination:
    """A resolved delivery target, from a channel row or a legacy webhook."""

    channel_type: str
    target: str
    secret: Optional[str] = None
    channel_id: Optional[str] = None
