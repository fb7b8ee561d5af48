from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

from py_vapid import VapidException
from pywebpush import WebPushException, webpush

from pnode_watch.config import Settings
from pnode_watch.errors import UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.transport import FetchJson, http_json

_logger = get_logger("services.notifications")

_EXPIRED_PUSH_STATUSES = {404, 410}


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: Optional[str] = None
    expired: bool = False


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class PushMessage:
    endpoint: str
    p256dh: str
    auth: str
    title: str
    body: str
    url: Optional[str] = None


class Notifier:
    """Email (Brevo transactional API) and Web Push delivery. Failures are reported, never retried."""

    def __init__(
        self,
        *,
        brevo_api_key: str = "",
        brevo_api_url: str = "https://api.brevo.com/v3/smtp/email",
        sender_address: str = "",
        sender_name: str = "",
        vapid_private_key: str = "",
        vapid_public_key: str = "",
        vapid_subject: str = "",
        fetch_json: FetchJson = http_json,
        push_sender: Callable[..., Any] = webpush,
    ) -> None:
        self._brevo_api_key = brevo_api_key
        self._brevo_api_url = brevo_api_url
        self._sender_address = sender_address
        self._sender_name = sender_name
        self._vapid_private_key = vapid_private_key
        self._vapid_public_key = vapid_public_key
        self._vapid_subject = vapid_subject
        self._fetch_json = fetch_json
        self._push_sender = push_sender

    @classmethod
    def from_settings(cls, settings: Settings) -> "Notifier":
        return cls(
            brevo_api_key=settings.brevo_api_key,
            brevo_api_url=settings.brevo_api_url,
            sender_address=settings.email_sender_address,
            sender_name=settings.email_sender_name,
            vapid_private_key=settings.vapid_private_key,
            vapid_public_key=settings.vapid_public_key,
            vapid_subject=settings.vapid_subject,
        )

    @property
    def email_enabled(self) -> bool:
        return bool(self._brevo_api_key)

    @property
    def push_enabled(self) -> bool:
        return bool(self._vapid_private_key)

    @property
    def vapid_public_key(self) -> str:
        """Application server key browsers pass to ``PushManager.subscribe``."""
        return self._vapid_public_key

    async def send_email(self, message: EmailMessage) -> DeliveryResult:
        if not self.email_enabled:
            _logger.warning("email.disabled", "Email delivery is not configured", email=message.to)
            return DeliveryResult(ok=False, error="Email service not configured")

        payload = {
            "sender": {"name": self._sender_name, "email": self._sender_address},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "htmlContent": message.html,
            "textContent": message.text,
        }
        try:
            await asyncio.to_thread(
                self._fetch_json,
                self._brevo_api_url,
                method="POST",
                payload=payload,
                headers={"api-key": self._brevo_api_key},
                timeout_seconds=10,
            )
        except UpstreamError as exc:
            _logger.error("email.failed", "Email delivery failed", email=message.to, error=str(exc))
            return DeliveryResult(ok=False, error=str(exc))

        _logger.info("email.sent", "Sent email", email=message.to, subject=message.subject)
        return DeliveryResult(ok=True)

    async def send_push(self, message: PushMessage) -> DeliveryResult:
        if not self.push_enabled:
            _logger.warning("push.disabled", "Web push is not configured")
            return DeliveryResult(ok=False, error="Push service not configured")

        data = json.dumps({"title": message.title, "body": message.body, "url": message.url or "/"})
        try:
            await asyncio.to_thread(
                self._push_sender,
                subscription_info={
                    "endpoint": message.endpoint,
                    "keys": {"p256dh": message.p256dh, "auth": message.auth},
                },
                data=data,
                vapid_private_key=self._vapid_private_key,
                vapid_claims={"sub": self._vapid_subject},
            )
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            expired = status in _EXPIRED_PUSH_STATUSES
            _logger.error(
                "push.failed",
                "Web push delivery failed",
                endpoint=message.endpoint,
                status=status,
                expired=expired,
            )
            return DeliveryResult(ok=False, error="subscription_expired" if expired else str(exc), expired=expired)
        except (VapidException, ValueError, TypeError) as exc:
            # Bad VAPID key or subject, or malformed subscription keys.
            _logger.error(
                "push.rejected",
                "Web push could not be signed or encrypted",
                endpoint=message.endpoint,
                error_type=type(exc).__name__,
            )
            return DeliveryResult(ok=False, error=f"{type(exc).__name__}: {exc}")

        _logger.info("push.sent", "Sent web push", endpoint=message.endpoint)
        return DeliveryResult(ok=True)
