"""Change notification delivery."""

from .dispatcher import NotificationDispatcher
from .formatting import format_email, format_slack_message
from .transports import (
    EmailTransport,
    SlackTransport,
    SmtpEmailTransport,
    WebhookTransport,
    sign_body,
    verify_signature,
)
from .types import (
    ChangeNotification,
    DeliveryError,
    DeliveryResult,
    NotificationError,
    NotificationType,
)

__all__ = [
    "NotificationDispatcher",
    "ChangeNotification",
    "DeliveryResult",
    "DeliveryError",
    "NotificationError",
    "NotificationType",
    "WebhookTransport",
    "SlackTransport",
    "EmailTransport",
    "SmtpEmailTransport",
    "sign_body",
    "verify_signature",
    "format_slack_message",
    "format_email",
]
