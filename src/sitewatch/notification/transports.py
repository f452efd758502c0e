"""Delivery transports for webhook, Slack and email channels."""

import asyncio
import hashlib
import hmac
import json
import smtplib
from collections.abc import Callable
from email.message import EmailMessage
from typing import Optional, Protocol

import httpx
from slack_sdk.webhook.async_client import AsyncWebhookClient

from ..config.settings import EmailSettings
from ..utils.logging import get_structured_logger
from .formatting import format_email, format_slack_message
from .types import ChangeNotification, DeliveryError

logger = get_structured_logger(__name__)

DEFAULT_SIGNATURE_HEADER = "X-Sitewatch-Signature"


def encode_payload(payload: ChangeNotification) -> bytes:
    """Canonical JSON body; signatures are computed over exactly these bytes."""
    return json.dumps(payload.to_dict(), separators=(",", ":"), sort_keys=True).encode(
        "utf-8"
    )


def sign_body(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_body(secret, body), signature)


class WebhookTransport:
    """POSTs the JSON payload, signed with HMAC-SHA256 when a secret is set."""

    def __init__(
        self,
        timeout: float = 10.0,
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.signature_header = signature_header
        self._transport = transport

    async def send(
        self, url: str, payload: ChangeNotification, secret: Optional[str] = None
    ) -> None:
        body = encode_payload(payload)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Sitewatch-Webhook/1.0",
        }
        if secret:
            headers[self.signature_header] = sign_body(secret, body)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(url, content=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"Webhook {url} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook {url} request failed: {e}") from e


class SlackTransport:
    """Posts to a Slack incoming-webhook URL."""

    def __init__(
        self,
        timeout: float = 10.0,
        client_factory: Callable[..., AsyncWebhookClient] = AsyncWebhookClient,
    ):
        self.timeout = timeout
        self.client_factory = client_factory

    async def send(self, url: str, payload: ChangeNotification) -> None:
        message = format_slack_message(payload)
        client = self.client_factory(url=url, timeout=int(self.timeout))
        try:
            response = await client.send(text=message["text"], blocks=message["blocks"])
        except Exception as e:
            raise DeliveryError(f"Slack webhook request failed: {e}") from e

        if response.status_code != 200:
            raise DeliveryError(
                f"Slack webhook returned HTTP {response.status_code}: {response.body}"
            )


class EmailTransport(Protocol):
    """Anything that can deliver a plain-text email."""

    async def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpEmailTransport:
    """Sends email through the configured SMTP server."""

    def __init__(self, settings: EmailSettings, timeout: float = 10.0):
        self.settings = settings
        self.timeout = timeout

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(
            self.settings.smtp_host, self.settings.smtp_port, timeout=self.timeout
        ) as smtp:
            if self.settings.use_tls:
                smtp.starttls()
            if self.settings.username:
                smtp.login(self.settings.username, self.settings.password.get_secret_value())
            smtp.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        if not self.settings.smtp_host:
            raise DeliveryError("No SMTP host configured for email delivery")

        message = EmailMessage()
        message["From"] = self.settings.from_address
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery to {to} failed: {e}") from e


async def send_email_notification(
    transport: EmailTransport, to: str, payload: ChangeNotification
) -> None:
    subject, body = format_email(payload)
    await transport.send(to, subject, body)
