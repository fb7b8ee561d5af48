from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from html import escape
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pnode_watch.clock import as_utc
from pnode_watch.errors import FeatureDisabledError, NotFoundError, SubscriptionError, UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.models.alert import AlertHistory, UserAlert
from pnode_watch.models.subscription import AlertSubscription, VerificationToken
from pnode_watch.schemas.alerts import SubscriptionCreate
from pnode_watch.services.alerts import ALERT_FLAGS
from pnode_watch.services.notifications import EmailMessage, Notifier

_logger = get_logger("services.subscriptions")

MAX_NODES_PER_SUBSCRIPTION = 10


@dataclass(frozen=True)
class SubscribeResult:
    subscription: AlertSubscription
    verification_sent: bool


def has_valid_email(email: Optional[str]) -> bool:
    return bool(email) and "@" in str(email)


def validate_subscription(payload: SubscriptionCreate) -> None:
    has_push = payload.push_subscription is not None and bool(payload.push_subscription.endpoint)
    if not has_valid_email(payload.email) and not has_push:
        raise SubscriptionError("Email or browser notification is required")
    node_ids = [node_id.strip() for node_id in payload.node_ids if node_id.strip()]
    if not node_ids:
        raise SubscriptionError("At least one node ID is required")
    if len(node_ids) > MAX_NODES_PER_SUBSCRIPTION:
        raise SubscriptionError(f"Maximum {MAX_NODES_PER_SUBSCRIPTION} nodes per subscription")
    if not any(getattr(payload, flag) for flag in ALERT_FLAGS):
        raise SubscriptionError("Please select at least one alert type")


def describe_alert_types(payload: SubscriptionCreate) -> List[str]:
    labels = {
        "alert_offline": "Node goes offline",
        "alert_online": "Node comes online",
        "alert_degraded": "Node becomes degraded",
        "alert_score_drop": f"Score drops below {payload.score_drop_threshold:g}",
        "alert_score_rise": f"Score rises above {payload.score_rise_threshold:g}",
        "alert_uptime_drop": f"Uptime drops below {payload.uptime_drop_threshold:g}%",
        "alert_uptime_rise": f"Uptime rises above {payload.uptime_rise_threshold:g}%",
        "alert_version_change": "Version changes",
        "alert_storage_change": "Storage capacity changes",
        "alert_public_status_change": "Public/private status changes",
    }
    return [labels[flag] for flag in ALERT_FLAGS if getattr(payload, flag)]


def _verification_email(to: str, verify_url: str, node_count: int, alert_types: List[str]) -> EmailMessage:
    plural = "s" if node_count != 1 else ""
    items = "".join(f"<li>{escape(label)}</li>" for label in alert_types)
    html = (
        "<h2>Verify your pNode Watch subscription</h2>"
        f"<p>You're subscribing to alerts for <strong>{node_count} node{plural}</strong>.</p>"
        f"<ul>{items}</ul>"
        f'<p><a href="{escape(verify_url)}">Verify email and activate alerts</a></p>'
        "<p>This link expires in 24 hours.</p>"
    )
    text = (
        f"You're subscribing to alerts for {node_count} node{plural}.\n"
        + "\n".join(f"- {label}" for label in alert_types)
        + f"\n\nVerify your email: {verify_url}\n"
    )
    return EmailMessage(to=to, subject="Verify your pNode Watch alert subscription", html=html, text=text)


async def create_subscription(
    session: AsyncSession,
    payload: SubscriptionCreate,
    *,
    notifier: Notifier,
    base_url: str,
    now: datetime,
    token_ttl_hours: int = 24,
) -> SubscribeResult:
    validate_subscription(payload)
    email = payload.email.strip() if has_valid_email(payload.email) else None
    push = payload.push_subscription if payload.push_subscription and payload.push_subscription.endpoint else None
    if email and not notifier.email_enabled:
        raise FeatureDisabledError("Email alerts", "BREVO_API_KEY")

    node_ids = list(dict.fromkeys(node_id.strip() for node_id in payload.node_ids if node_id.strip()))
    subscription = AlertSubscription(
        email=email,
        push_endpoint=push.endpoint if push else None,
        push_p256dh=push.p256dh if push else None,
        push_auth=push.auth if push else None,
        node_ids=node_ids,
        score_drop_threshold=payload.score_drop_threshold,
        score_rise_threshold=payload.score_rise_threshold,
        uptime_drop_threshold=payload.uptime_drop_threshold,
        uptime_rise_threshold=payload.uptime_rise_threshold,
        verified=email is None,
        **{flag: getattr(payload, flag) for flag in ALERT_FLAGS},
    )
    session.add(subscription)
    await session.flush()

    if email is None:
        await session.commit()
        _logger.info(
            "subscriptions.create",
            "Created push-only subscription",
            subscription_id=subscription.id,
            nodes=len(node_ids),
        )
        return SubscribeResult(subscription=subscription, verification_sent=False)

    token = secrets.token_hex(32)
    session.add(
        VerificationToken(
            subscription_id=subscription.id,
            token=token,
            expires_at=now + timedelta(hours=token_ttl_hours),
        )
    )
    verify_url = f"{base_url.rstrip('/')}/api/alerts/verify?token={token}"
    outcome = await notifier.send_email(
        _verification_email(email, verify_url, len(node_ids), describe_alert_types(payload))
    )
    if not outcome.ok:
        await session.rollback()
        raise UpstreamError(f"Failed to send verification email: {outcome.error}")

    await session.commit()
    _logger.info(
        "subscriptions.create",
        "Created subscription pending email verification",
        subscription_id=subscription.id,
        email=email,
        nodes=len(node_ids),
    )
    return SubscribeResult(subscription=subscription, verification_sent=True)


async def verify_token(session: AsyncSession, token: str, *, now: datetime) -> AlertSubscription:
    result = await session.execute(select(VerificationToken).where(VerificationToken.token == token))
    record = result.scalar_one_or_none()
    if record is None or as_utc(record.expires_at) < now:
        raise NotFoundError("Invalid or expired verification token")

    subscription = await session.get(AlertSubscription, record.subscription_id)
    if subscription is None:
        raise NotFoundError("Subscription no longer exists")
    subscription.verified = True
    await session.delete(record)
    await session.commit()
    _logger.info("subscriptions.verify", "Verified subscription", subscription_id=subscription.id)
    return subscription


async def get_subscription(session: AsyncSession, subscription_id: int) -> Optional[AlertSubscription]:
    return await session.get(AlertSubscription, subscription_id)


async def delete_subscription(session: AsyncSession, subscription_id: int) -> bool:
    subscription = await session.get(AlertSubscription, subscription_id)
    if subscription is None:
        return False
    await session.execute(delete(VerificationToken).where(VerificationToken.subscription_id == subscription_id))
    await session.execute(delete(AlertHistory).where(AlertHistory.subscription_id == subscription_id))
    await session.execute(delete(UserAlert).where(UserAlert.subscription_id == subscription_id))
    await session.delete(subscription)
    await session.commit()
    _logger.info("subscriptions.delete", "Deleted subscription", subscription_id=subscription_id)
    return True


async def get_verified_subscription_by_email(session: AsyncSession, email: str) -> Optional[AlertSubscription]:
    result = await session.execute(
        select(AlertSubscription)
        .where(AlertSubscription.email == email.strip(), AlertSubscription.verified.is_(True))
        .order_by(AlertSubscription.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _require_verified(session: AsyncSession, email: str) -> None:
    if await get_verified_subscription_by_email(session, email) is None:
        raise NotFoundError("No verified subscription found for this email")


async def list_user_alerts(session: AsyncSession, email: str, *, limit: int = 50) -> Tuple[List[UserAlert], int]:
    await _require_verified(session, email)
    result = await session.execute(
        select(UserAlert)
        .where(UserAlert.email == email.strip())
        .order_by(UserAlert.created_at.desc(), UserAlert.id.desc())
        .limit(max(1, min(limit, 200)))
    )
    alerts = list(result.scalars().all())
    unread = await session.execute(
        select(func.count(UserAlert.id)).where(UserAlert.email == email.strip(), UserAlert.read.is_(False))
    )
    return alerts, int(unread.scalar_one())


async def mark_alert_read(session: AsyncSession, email: str, alert_id: int) -> int:
    await _require_verified(session, email)
    result = await session.execute(
        update(UserAlert).where(UserAlert.id == alert_id, UserAlert.email == email.strip()).values(read=True)
    )
    await session.commit()
    return int(result.rowcount or 0)


async def mark_all_read(session: AsyncSession, email: str) -> int:
    await _require_verified(session, email)
    result = await session.execute(
        update(UserAlert).where(UserAlert.email == email.strip(), UserAlert.read.is_(False)).values(read=True)
    )
    await session.commit()
    return int(result.rowcount or 0)


async def delete_user_alert(session: AsyncSession, email: str, alert_id: int) -> int:
    await _require_verified(session, email)
    result = await session.execute(
        delete(UserAlert).where(UserAlert.id == alert_id, UserAlert.email == email.strip())
    )
    await session.commit()
    return int(result.rowcount or 0)
