"""Fan a change notification out to every destination configured for a site."""

import asyncio
from typing import Optional

from sqlalchemy import select

from ..config.settings import NotificationSettings
from ..storage.sqlite import DatabaseManager, NotificationChannel, Site, Webhook
from ..storage.types import ChannelType, NotFoundError
from ..utils.async_utils import retry_async
from ..utils.logging import get_structured_logger
from .transports import (
    EmailTransport,
    SlackTransport,
    SmtpEmailTransport,
    WebhookTransport,
    send_email_notification,
)
from .types import (
    ChangeNotification,
    DeliveryError,
    DeliveryResult,
    Destination,
    NotificationType,
)

logger = get_structured_logger(__name__)


class NotificationDispatcher:
    """Best-effort, at-least-once delivery with per-destination isolation.

    A failing destination is retried, then reported in its DeliveryResult;
    it never raises out of ``notify_change`` and never blocks the others.
    """

    def __init__(
        self,
        db: DatabaseManager,
        settings: Optional[NotificationSettings] = None,
        webhook_transport: Optional[WebhookTransport] = None,
        slack_transport: Optional[SlackTransport] = None,
        email_transport: Optional[EmailTransport] = None,
    ):
        self.db = db
        self.settings = settings or NotificationSettings()
        self.webhook_transport = webhook_transport or WebhookTransport(
            timeout=self.settings.timeout_seconds,
            signature_header=self.settings.signature_header,
        )
        self.slack_transport = slack_transport or SlackTransport(
            timeout=self.settings.timeout_seconds
        )
        self.email_transport = email_transport or SmtpEmailTransport(
            self.settings.email, timeout=self.settings.timeout_seconds
        )
        self.delivery_stats = {"sent": 0, "failed": 0}

    async def load_destinations(self, site_id: str) -> list[Destination]:
        """Channel rows plus legacy webhook rows of a site."""
        async with self.db.get_session() as session:
            channels = await session.execute(
                select(NotificationChannel)
                .where(NotificationChannel.site_id == site_id)
                .order_by(NotificationChannel.created_at)
            )
            webhooks = await session.execute(
                select(Webhook).where(Webhook.site_id == site_id).order_by(Webhook.created_at)
            )

            destinations = [
                Destination(
                    channel_type=channel.type,
                    target=channel.target,
                    secret=channel.secret,
                    channel_id=channel.id,
                )
                for channel in channels.scalars()
            ]
            destinations.extend(
                Destination(
                    channel_type=ChannelType.WEBHOOK.value,
                    target=hook.target_url,
                    secret=hook.secret,
                    channel_id=hook.id,
                )
                for hook in webhooks.scalars()
            )
            return destinations

    async def notify_change(
        self, site_id: str, payload: ChangeNotification
    ) -> list[DeliveryResult]:
        """Deliver ``payload`` to every destination of the site."""
        try:
            destinations = await self.load_destinations(site_id)
        except Exception as e:
            logger.error("Could not load notification channels", site_id=site_id, error=str(e))
            return []

        if not destinations:
            logger.debug("No notification channels configured", site_id=site_id)
            return []

        results = await asyncio.gather(
            *(self._deliver(destination, payload) for destination in destinations)
        )

        successful = sum(1 for r in results if r.success)
        logger.info(
            "Notification delivery complete",
            site_id=site_id,
            scan_id=payload.scan_id,
            type=payload.type.value,
            destinations=len(results),
            successful=successful,
        )
        return list(results)

    async def send_test(self, site_id: str) -> list[DeliveryResult]:
        """Send a synthetic payload to check channel connectivity."""
        async with self.db.get_session() as session:
            site = await session.get(Site, site_id)
            if site is None:
                raise NotFoundError(f"Site not found: {site_id}")
            site_url = site.root_url

        payload = ChangeNotification(
            site_id=site_id,
            scan_id="test",
            added=1,
            removed=0,
            updated=0,
            type=NotificationType.TEST,
            site_url=site_url,
        )
        return await self.notify_change(site_id, payload)

    async def _send_once(self, destination: Destination, payload: ChangeNotification) -> None:
        channel_type = destination.channel_type
        if channel_type == ChannelType.WEBHOOK.value:
            await self.webhook_transport.send(destination.target, payload, destination.secret)
        elif channel_type == ChannelType.SLACK.value:
            await self.slack_transport.send(destination.target, payload)
        elif channel_type == ChannelType.EMAIL.value:
            await send_email_notification(self.email_transport, destination.target, payload)
        else:
            raise DeliveryError(f"Unsupported channel type: {channel_type}")

    async def _deliver(
        self, destination: Destination, payload: ChangeNotification
    ) -> DeliveryResult:
        attempts = 0

        async def attempt() -> None:
            nonlocal attempts
            attempts += 1
            await self._send_once(destination, payload)

        try:
            await retry_async(
                attempt,
                max_retries=self.settings.max_retries,
                delay=self.settings.retry_delay,
                backoff_factor=2.0,
                exceptions=(DeliveryError,),
            )
        except Exception as e:
            self.delivery_stats["failed"] += 1
            logger.error(
                "Notification delivery failed",
                channel_type=destination.channel_type,
                target=destination.target,
                attempts=attempts,
                error=str(e),
            )
            return DeliveryResult(
                success=False,
                channel_type=destination.channel_type,
                target=destination.target,
                channel_id=destination.channel_id,
                attempts=attempts,
                error_message=str(e),
            )

        self.delivery_stats["sent"] += 1
        logger.debug(
            "Notification delivered",
            channel_type=destination.channel_type,
            target=destination.target,
            attempts=attempts,
        )
        return DeliveryResult(
            success=True,
            channel_type=destination.channel_type,
            target=destination.target,
            channel_id=destination.channel_id,
            attempts=attempts,
        )

    def get_delivery_stats(self) -> dict[str, int]:
        return self.delivery_stats.copy()
