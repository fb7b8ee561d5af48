from __future__ import annotations

from typing import Any, Dict, List

import pytest
from py_vapid import VapidException

from pnode_watch.errors import UpstreamError
from pnode_watch.services.notifications import EmailMessage, Notifier, PushMessage

PUSH = PushMessage(
    endpoint="https://push.example.com/sub/abcdef",
    p256dh="key",
    auth="auth",
    title="Node Offline",
    body="pk-a went offline",
)


def _raising(exc: Exception):
    def sender(**kwargs: Any) -> None:
        raise exc

    return sender


@pytest.mark.parametrize(
    "exc",
    [
        ValueError("Could not deserialize key data"),
        VapidException("Missing 'sub' from claims"),
        TypeError("bad subscription keys"),
    ],
)
async def test_push_signing_errors_are_reported_not_raised(exc: Exception) -> None:
    notifier = Notifier(vapid_private_key="not-a-real-key", vapid_subject="mailto:x", push_sender=_raising(exc))

    result = await notifier.send_push(PUSH)

    assert not result.ok
    assert not result.expired
    assert type(exc).__name__ in (result.error or "")


async def test_push_without_vapid_key_is_disabled() -> None:
    result = await Notifier().send_push(PUSH)

    assert (result.ok, result.error) == (False, "Push service not configured")


async def test_push_sends_payload_with_claims() -> None:
    calls: List[Dict[str, Any]] = []
    notifier = Notifier(
        vapid_private_key="private",
        vapid_public_key="public",
        vapid_subject="mailto:ops@example.com",
        push_sender=lambda **kwargs: calls.append(kwargs),
    )

    result = await notifier.send_push(PUSH)

    assert result.ok
    assert notifier.vapid_public_key == "public"
    assert calls[0]["vapid_claims"] == {"sub": "mailto:ops@example.com"}
    assert calls[0]["subscription_info"]["endpoint"] == PUSH.endpoint


async def test_email_upstream_failure_is_reported() -> None:
    def failing_fetch(url: str, **kwargs: Any) -> Any:
        raise UpstreamError("HTTP 401 from brevo", status_code=401)

    notifier = Notifier(brevo_api_key="k", sender_address="alerts@example.com", fetch_json=failing_fetch)

    result = await notifier.send_email(EmailMessage(to="ops@example.com", subject="s", html="<p>h</p>", text="h"))

    assert not result.ok
    assert "401" in (result.error or "")
