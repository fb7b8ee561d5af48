from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from pnode_watch.errors import FeatureDisabledError, NotFoundError, SubscriptionError, UpstreamError
from pnode_watch.models import AlertSubscription, UserAlert, VerificationToken
from pnode_watch.schemas.alerts import PushSubscriptionIn, SubscriptionCreate
from pnode_watch.services import subscriptions as service
from tests.helpers import NOW, FakeNotifier


def _payload(count: int, **overrides) -> SubscriptionCreate:
    fields = {"email": "ops@example.com", "node_ids": [f"node-{index}" for index in range(count)]}
    fields.update(overrides)
    return SubscriptionCreate(**fields)


def test_watched_node_count_bounds() -> None:
    with pytest.raises(SubscriptionError, match="At least one node ID"):
        service.validate_subscription(_payload(0))
    with pytest.raises(SubscriptionError, match="Maximum 10 nodes"):
        service.validate_subscription(_payload(11))
    service.validate_subscription(_payload(10))


def test_contact_and_alert_type_required() -> None:
    with pytest.raises(SubscriptionError, match="Email or browser notification"):
        service.validate_subscription(_payload(1, email="not-an-email"))
    with pytest.raises(SubscriptionError, match="at least one alert type"):
        service.validate_subscription(_payload(1, alert_offline=False, alert_score_drop=False))


async def test_push_only_subscription_is_verified_immediately(session) -> None:
    payload = _payload(
        2,
        email=None,
        push_subscription=PushSubscriptionIn(endpoint="https://push.test/xyz", p256dh="key", auth="auth"),
    )
    notifier = FakeNotifier()

    result = await service.create_subscription(
        session, payload, notifier=notifier, base_url="https://watch.test", now=NOW
    )

    assert result.subscription.verified
    assert not result.verification_sent
    assert notifier.emails == []


async def test_email_subscription_requires_verification(session) -> None:
    notifier = FakeNotifier()

    result = await service.create_subscription(
        session, _payload(3), notifier=notifier, base_url="https://watch.test/", now=NOW
    )

    assert not result.subscription.verified
    assert result.verification_sent
    token = (await session.execute(select(VerificationToken))).scalar_one()
    assert len(token.token) == 64
    assert f"https://watch.test/api/alerts/verify?token={token.token}" in notifier.emails[0].text

    verified = await service.verify_token(session, token.token, now=NOW + timedelta(hours=1))

    assert verified.verified
    assert (await session.execute(select(VerificationToken))).first() is None
    with pytest.raises(NotFoundError):
        await service.verify_token(session, token.token, now=NOW)


async def test_expired_token_is_rejected(session) -> None:
    await service.create_subscription(
        session, _payload(1), notifier=FakeNotifier(), base_url="https://watch.test", now=NOW
    )
    token = (await session.execute(select(VerificationToken))).scalar_one()

    with pytest.raises(NotFoundError):
        await service.verify_token(session, token.token, now=NOW + timedelta(hours=25))


async def test_failed_verification_email_rolls_back(session) -> None:
    with pytest.raises(UpstreamError):
        await service.create_subscription(
            session, _payload(1), notifier=FakeNotifier(email_ok=False), base_url="https://watch.test", now=NOW
        )

    assert (await session.execute(select(AlertSubscription))).first() is None


async def test_email_subscription_needs_email_service(session) -> None:
    with pytest.raises(FeatureDisabledError):
        await service.create_subscription(
            session,
            _payload(1),
            notifier=FakeNotifier(email_enabled=False),
            base_url="https://watch.test",
            now=NOW,
        )


async def test_inbox_actions_are_scoped_to_verified_email(session) -> None:
    subscription = AlertSubscription(email="ops@example.com", node_ids=["n"], verified=True)
    session.add(subscription)
    await session.flush()
    for index in range(3):
        session.add(
            UserAlert(
                subscription_id=subscription.id,
                email="ops@example.com",
                node_id="n",
                alert_type="offline",
                title="Node Offline",
                message=f"alert {index}",
                read=False,
            )
        )
    await session.commit()

    alerts, unread = await service.list_user_alerts(session, "ops@example.com")
    assert (len(alerts), unread) == (3, 3)

    assert await service.mark_alert_read(session, "ops@example.com", alerts[0].id) == 1
    assert await service.delete_user_alert(session, "ops@example.com", alerts[1].id) == 1
    assert await service.mark_all_read(session, "ops@example.com") == 1

    alerts, unread = await service.list_user_alerts(session, "ops@example.com")
    assert (len(alerts), unread) == (2, 0)

    with pytest.raises(NotFoundError):
        await service.list_user_alerts(session, "stranger@example.com")


async def test_delete_subscription_removes_children(session) -> None:
    result = await service.create_subscription(
        session, _payload(1), notifier=FakeNotifier(), base_url="https://watch.test", now=NOW
    )

    assert await service.delete_subscription(session, result.subscription.id)
    assert (await session.execute(select(VerificationToken))).first() is None
    assert not await service.delete_subscription(session, result.subscription.id)
