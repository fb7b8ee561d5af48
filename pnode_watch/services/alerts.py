from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from html import escape
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pnode_watch.config import Settings
from pnode_watch.logger import get_logger
from pnode_watch.metrics import record_alert
from pnode_watch.models.alert import AlertHistory, UserAlert
from pnode_watch.models.snapshot import NodeSnapshot
from pnode_watch.models.subscription import AlertSubscription
from pnode_watch.schemas.nodes import Node
from pnode_watch.services.notifications import EmailMessage, Notifier, PushMessage

_logger = get_logger("services.alerts")


@dataclass(frozen=True)
class NodeState:
    node_id: str
    status: str
    score: float
    uptime: float
    version: str
    storage_total: int
    is_public: bool

    @classmethod
    def from_node(cls, node: Node) -> "NodeState":
        return cls(
            node_id=node.id,
            status=node.status,
            score=node.score,
            uptime=node.uptime,
            version=node.version,
            storage_total=node.storage.total,
            is_public=node.is_public,
        )

    @classmethod
    def from_row(cls, row: NodeSnapshot) -> "NodeState":
        return cls(
            node_id=row.node_id,
            status=row.status,
            score=row.score,
            uptime=row.uptime_percent,
            version=row.version,
            storage_total=row.storage_total_bytes,
            is_public=row.is_public,
        )


@dataclass(frozen=True)
class AlertEvent:
    subscription_id: int
    node_id: str
    alert_type: str
    title: str
    message: str


def _short(node_id: str) -> str:
    return f"{node_id[:8]}..."


def _fmt_bytes(value: int) -> str:
    amount = float(value)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if amount < 1024 or unit == "TB":
            return f"{amount:.1f} {unit}"
        amount /= 1024
    return f"{amount:.1f} TB"


@dataclass(frozen=True)
class _AlertRule:
    alert_type: str
    flag: str
    title: str
    fires: Callable[[Any, NodeState, NodeState], bool]
    describe: Callable[[Any, NodeState, NodeState], str]


def _status_became(status: str) -> Callable[[Any, NodeState, NodeState], bool]:
    return lambda _sub, prev, cur: prev.status != status and cur.status == status


ALERT_RULES: tuple[_AlertRule, ...] = (
    _AlertRule(
        "offline",
        "alert_offline",
        "Node Offline",
        _status_became("offline"),
        lambda _s, _p, cur: f"Node {_short(cur.node_id)} has gone offline.",
    ),
    _AlertRule(
        "online",
        "alert_online",
        "Node Online",
        _status_became("online"),
        lambda _s, _p, cur: f"Node {_short(cur.node_id)} is back online.",
    ),
    _AlertRule(
        "degraded",
        "alert_degraded",
        "Node Degraded",
        _status_became("degraded"),
        lambda _s, _p, cur: f"Node {_short(cur.node_id)} is degraded.",
    ),
    _AlertRule(
        "score_drop",
        "alert_score_drop",
        "Score Dropped",
        lambda sub, prev, cur: prev.score >= sub.score_drop_threshold > cur.score,
        lambda _s, prev, cur: f"Node {_short(cur.node_id)} score dropped from {prev.score:.0f} to {cur.score:.0f}.",
    ),
    _AlertRule(
        "score_rise",
        "alert_score_rise",
        "Score Rose",
        lambda sub, prev, cur: prev.score < sub.score_rise_threshold <= cur.score,
        lambda _s, prev, cur: f"Node {_short(cur.node_id)} score rose from {prev.score:.0f} to {cur.score:.0f}.",
    ),
    _AlertRule(
        "uptime_drop",
        "alert_uptime_drop",
        "Uptime Dropped",
        lambda sub, prev, cur: prev.uptime >= sub.uptime_drop_threshold > cur.uptime,
        lambda _s, prev, cur: (
            f"Node {_short(cur.node_id)} uptime dropped from {prev.uptime:.1f}% to {cur.uptime:.1f}%."
        ),
    ),
    _AlertRule(
        "uptime_rise",
        "alert_uptime_rise",
        "Uptime Recovered",
        lambda sub, prev, cur: prev.uptime < sub.uptime_rise_threshold <= cur.uptime,
        lambda _s, prev, cur: (
            f"Node {_short(cur.node_id)} uptime rose from {prev.uptime:.1f}% to {cur.uptime:.1f}%."
        ),
    ),
    _AlertRule(
        "version_change",
        "alert_version_change",
        "Version Changed",
        lambda _s, prev, cur: prev.version != cur.version,
        lambda _s, prev, cur: f"Node {_short(cur.node_id)} changed version from {prev.version} to {cur.version}.",
    ),
    _AlertRule(
        "storage_change",
        "alert_storage_change",
        "Storage Changed",
        lambda _s, prev, cur: prev.storage_total != cur.storage_total,
        lambda _s, prev, cur: (
            f"Node {_short(cur.node_id)} committed storage changed from "
            f"{_fmt_bytes(prev.storage_total)} to {_fmt_bytes(cur.storage_total)}."
        ),
    ),
    _AlertRule(
        "public_status_change",
        "alert_public_status_change",
        "Visibility Changed",
        lambda _s, prev, cur: prev.is_public != cur.is_public,
        lambda _s, _p, cur: f"Node {_short(cur.node_id)} is now {'public' if cur.is_public else 'private'}.",
    ),
)

ALERT_TYPES = tuple(rule.alert_type for rule in ALERT_RULES)
ALERT_FLAGS = tuple(rule.flag for rule in ALERT_RULES)


@dataclass(frozen=True)
class SubscriptionView:
    """Detached copy of a subscription row; survives per-subscription rollbacks."""

    id: int
    email: Optional[str]
    push_endpoint: Optional[str]
    push_p256dh: Optional[str]
    push_auth: Optional[str]
    node_ids: List[str]
    alert_offline: bool = True
    alert_online: bool = False
    alert_degraded: bool = False
    alert_score_drop: bool = True
    alert_score_rise: bool = False
    alert_uptime_drop: bool = False
    alert_uptime_rise: bool = False
    alert_version_change: bool = False
    alert_storage_change: bool = False
    alert_public_status_change: bool = False
    score_drop_threshold: float = 70.0
    score_rise_threshold: float = 80.0
    uptime_drop_threshold: float = 95.0
    uptime_rise_threshold: float = 99.0

    @classmethod
    def from_row(cls, row: AlertSubscription) -> "SubscriptionView":
        flags = {flag: bool(getattr(row, flag)) for flag in ALERT_FLAGS}
        return cls(
            id=row.id,
            email=row.email,
            push_endpoint=row.push_endpoint,
            push_p256dh=row.push_p256dh,
            push_auth=row.push_auth,
            node_ids=list(row.node_ids or []),
            score_drop_threshold=row.score_drop_threshold,
            score_rise_threshold=row.score_rise_threshold,
            uptime_drop_threshold=row.uptime_drop_threshold,
            uptime_rise_threshold=row.uptime_rise_threshold,
            **flags,
        )


def evaluate_subscription(
    subscription: SubscriptionView,
    previous: Mapping[str, NodeState],
    current: Mapping[str, NodeState],
) -> List[AlertEvent]:
    """Transitions between two node states that the subscription asked to hear about."""
    events: List[AlertEvent] = []
    for node_id in subscription.node_ids or []:
        before = previous.get(node_id)
        after = current.get(node_id)
        if before is None or after is None:
            continue
        for rule in ALERT_RULES:
            if not getattr(subscription, rule.flag, False):
                continue
            if rule.fires(subscription, before, after):
                events.append(
                    AlertEvent(
                        subscription_id=subscription.id,
                        node_id=node_id,
                        alert_type=rule.alert_type,
                        title=rule.title,
                        message=rule.describe(subscription, before, after),
                    )
                )
    return events


@dataclass(frozen=True)
class AlertPolicy:
    dedupe_window_hours: float = 6.0
    suppress_while_unread: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertPolicy":
        return cls(
            dedupe_window_hours=settings.alert_dedupe_window_hours,
            suppress_while_unread=settings.alert_suppress_while_unread,
        )


async def was_alert_sent_recently(
    session: AsyncSession,
    event: AlertEvent,
    *,
    now: datetime,
    window_hours: float,
) -> bool:
    if window_hours <= 0:
        return False
    cutoff = now - timedelta(hours=window_hours)
    result = await session.execute(
        select(AlertHistory.id)
        .where(
            AlertHistory.subscription_id == event.subscription_id,
            AlertHistory.node_id == event.node_id,
            AlertHistory.alert_type == event.alert_type,
            AlertHistory.sent_at >= cutoff,
        )
        .limit(1)
    )
    return result.first() is not None


async def has_unread_alert(session: AsyncSession, event: AlertEvent) -> bool:
    result = await session.execute(
        select(UserAlert.id)
        .where(
            UserAlert.subscription_id == event.subscription_id,
            UserAlert.node_id == event.node_id,
            UserAlert.alert_type == event.alert_type,
            UserAlert.read.is_(False),
        )
        .limit(1)
    )
    return result.first() is not None


async def is_suppressed(
    session: AsyncSession,
    event: AlertEvent,
    *,
    policy: AlertPolicy,
    now: datetime,
) -> bool:
    if await was_alert_sent_recently(session, event, now=now, window_hours=policy.dedupe_window_hours):
        return True
    if policy.suppress_while_unread and await has_unread_alert(session, event):
        return True
    return False


@dataclass
class AlertRunResult:
    subscriptions: int = 0
    triggered: int = 0
    sent: int = 0
    suppressed: int = 0
    errors: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)


def _email_for(event: AlertEvent, node_url: str, to: str) -> EmailMessage:
    text = f"{event.message}\n\nView node: {node_url}"
    html = (
        f"<h2>{escape(event.title)}</h2>"
        f"<p>{escape(event.message)}</p>"
        f'<p><a href="{escape(node_url)}">View node details</a></p>'
    )
    return EmailMessage(to=to, subject=f"pNode Watch: {event.title}", html=html, text=text)


async def _deliver(
    session: AsyncSession,
    subscription: SubscriptionView,
    event: AlertEvent,
    *,
    notifier: Notifier,
    now: datetime,
    base_url: str,
) -> bool:
    node_url = f"{base_url.rstrip('/')}/nodes/{quote(event.node_id, safe='')}"
    delivered = False

    if subscription.email:
        outcome = await notifier.send_email(_email_for(event, node_url, subscription.email))
        if outcome.ok:
            delivered = True
            session.add(
                AlertHistory(
                    subscription_id=subscription.id,
                    node_id=event.node_id,
                    alert_type=event.alert_type,
                    channel="email",
                    sent_at=now,
                )
            )

    if subscription.push_endpoint:
        outcome = await notifier.send_push(
            PushMessage(
                endpoint=subscription.push_endpoint,
                p256dh=subscription.push_p256dh or "",
                auth=subscription.push_auth or "",
                title=event.title,
                body=event.message,
                url=node_url,
            )
        )
        if outcome.ok:
            delivered = True
            session.add(
                AlertHistory(
                    subscription_id=subscription.id,
                    node_id=event.node_id,
                    alert_type=event.alert_type,
                    channel="push",
                    sent_at=now,
                )
            )
        elif outcome.expired:
            _logger.warning(
                "alerts.push_expired",
                "Dropping expired push endpoint from subscription",
                subscription_id=subscription.id,
            )
            await session.execute(
                update(AlertSubscription)
                .where(AlertSubscription.id == subscription.id)
                .values(push_endpoint=None, push_p256dh=None, push_auth=None)
            )

    session.add(
        UserAlert(
            subscription_id=subscription.id,
            email=subscription.email,
            node_id=event.node_id,
            alert_type=event.alert_type,
            title=event.title,
            message=event.message,
            read=False,
        )
    )
    return delivered


async def list_verified_subscriptions(session: AsyncSession) -> List[SubscriptionView]:
    result = await session.execute(
        select(AlertSubscription).where(AlertSubscription.verified.is_(True)).order_by(AlertSubscription.id)
    )
    return [SubscriptionView.from_row(row) for row in result.scalars().all()]


async def process_alerts(
    session: AsyncSession,
    *,
    previous: Mapping[str, NodeState],
    current: Mapping[str, NodeState],
    notifier: Notifier,
    policy: AlertPolicy,
    now: datetime,
    base_url: str,
    subscriptions: Optional[Sequence[SubscriptionView]] = None,
) -> AlertRunResult:
    run = AlertRunResult()
    if not previous:
        _logger.info("alerts.skip", "No previous node states to compare, skipping alerts")
        return run

    targets = list(subscriptions) if subscriptions is not None else await list_verified_subscriptions(session)
    run.subscriptions = len(targets)

    for subscription in targets:
        subscription_id = subscription.id
        try:
            events = evaluate_subscription(subscription, previous, current)
            for event in events:
                run.triggered += 1
                if await is_suppressed(session, event, policy=policy, now=now):
                    run.suppressed += 1
                    record_alert(alert_type=event.alert_type, result="suppressed")
                    continue
                delivered = await _deliver(
                    session,
                    subscription,
                    event,
                    notifier=notifier,
                    now=now,
                    base_url=base_url,
                )
                if delivered:
                    run.sent += 1
                    run.by_type[event.alert_type] = run.by_type.get(event.alert_type, 0) + 1
                    record_alert(alert_type=event.alert_type, result="sent")
                else:
                    run.errors += 1
                    record_alert(alert_type=event.alert_type, result="failed")
            await session.commit()
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            run.errors += 1
            _logger.exception(
                "alerts.subscription_error",
                "Alert processing failed for subscription",
                subscription_id=subscription_id,
                error_type=type(exc).__name__,
            )

    _logger.info(
        "alerts.processed",
        "Processed alerts",
        subscriptions=run.subscriptions,
        triggered=run.triggered,
        sent=run.sent,
        suppressed=run.suppressed,
        errors=run.errors,
    )
    return run
