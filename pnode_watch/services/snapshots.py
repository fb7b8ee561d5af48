from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pnode_watch.clock import Now, as_utc, utcnow
from pnode_watch.config import Settings
from pnode_watch.errors import PollError
from pnode_watch.logger import Operation, get_logger
from pnode_watch.metrics import record_snapshot_run
from pnode_watch.models.alert import AlertHistory, UserAlert
from pnode_watch.models.lease import JobLease
from pnode_watch.models.snapshot import NetworkSnapshot, NodeSnapshot
from pnode_watch.models.subscription import VerificationToken
from pnode_watch.schemas.history import SnapshotJobOut
from pnode_watch.schemas.nodes import Node
from pnode_watch.services.alerts import AlertPolicy, AlertRunResult, NodeState, process_alerts
from pnode_watch.services.credits import CreditsService
from pnode_watch.services.nodes import collect_nodes
from pnode_watch.services.normalizer import StatusPolicy
from pnode_watch.services.notifications import Notifier
from pnode_watch.services.poller import PodPoller

_logger = get_logger("services.snapshots")

SNAPSHOT_LEASE = "snapshot"
BIGINT_MAX = 2**63 - 1


def build_network_snapshot(nodes: Sequence[Node], *, timestamp: datetime) -> NetworkSnapshot:
    count = len(nodes)
    total_credits = sum(node.credits for node in nodes)
    return NetworkSnapshot(
        timestamp=timestamp,
        total_nodes=count,
        online_nodes=sum(1 for node in nodes if node.status == "online"),
        degraded_nodes=sum(1 for node in nodes if node.status == "degraded"),
        offline_nodes=sum(1 for node in nodes if node.status == "offline"),
        total_storage_bytes=min(sum(node.storage.total for node in nodes), BIGINT_MAX),
        used_storage_bytes=min(sum(node.storage.used for node in nodes), BIGINT_MAX),
        avg_uptime=round(sum(node.uptime for node in nodes) / count, 2) if count else 0.0,
        avg_score=round(sum(node.score for node in nodes) / count, 2) if count else 0.0,
        total_credits=total_credits,
        avg_credits=round(total_credits / count, 2) if count else 0.0,
    )


def build_node_snapshot(node: Node, snapshot_id: int) -> NodeSnapshot:
    return NodeSnapshot(
        snapshot_id=snapshot_id,
        node_id=node.id,
        public_key=node.public_key,
        status=node.status,
        uptime_percent=node.uptime,
        storage_usage_percent=round(node.storage.usage_percent, 2),
        storage_total_bytes=node.storage.total,
        score=node.score,
        health_score=node.health_score,
        credits=node.credits,
        version=node.version,
        is_public=node.is_public,
    )


async def insert_snapshot(
    session: AsyncSession,
    nodes: Sequence[Node],
    *,
    timestamp: datetime,
) -> NetworkSnapshot:
    snapshot = build_network_snapshot(nodes, timestamp=timestamp)
    session.add(snapshot)
    await session.flush()
    session.add_all([build_node_snapshot(node, snapshot.id) for node in nodes])
    await session.commit()
    _logger.info(
        "snapshots.insert",
        "Stored network snapshot",
        snapshot_id=snapshot.id,
        nodes=len(nodes),
        online=snapshot.online_nodes,
    )
    return snapshot


async def get_latest_snapshot(session: AsyncSession) -> Optional[NetworkSnapshot]:
    result = await session.execute(
        select(NetworkSnapshot).order_by(NetworkSnapshot.timestamp.desc(), NetworkSnapshot.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def get_previous_snapshot(session: AsyncSession) -> Optional[NetworkSnapshot]:
    result = await session.execute(
        select(NetworkSnapshot)
        .order_by(NetworkSnapshot.timestamp.desc(), NetworkSnapshot.id.desc())
        .offset(1)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_snapshots_since(session: AsyncSession, since: datetime) -> List[NetworkSnapshot]:
    result = await session.execute(
        select(NetworkSnapshot)
        .where(NetworkSnapshot.timestamp >= since)
        .order_by(NetworkSnapshot.timestamp.asc(), NetworkSnapshot.id.asc())
    )
    return list(result.scalars().all())


async def get_node_rows(session: AsyncSession, snapshot_id: int) -> List[NodeSnapshot]:
    result = await session.execute(select(NodeSnapshot).where(NodeSnapshot.snapshot_id == snapshot_id))
    return list(result.scalars().all())


async def load_node_states(session: AsyncSession, snapshot_id: int) -> Dict[str, NodeState]:
    return {row.node_id: NodeState.from_row(row) for row in await get_node_rows(session, snapshot_id)}


async def prune_old_snapshots(session: AsyncSession, *, retention_days: int, now: datetime) -> int:
    if retention_days <= 0:
        return 0
    cutoff = now - timedelta(days=retention_days)
    old_ids = select(NetworkSnapshot.id).where(NetworkSnapshot.timestamp < cutoff)
    await session.execute(
        delete(NodeSnapshot).where(NodeSnapshot.snapshot_id.in_(old_ids)).execution_options(synchronize_session=False)
    )
    result = await session.execute(
        delete(NetworkSnapshot).where(NetworkSnapshot.timestamp < cutoff).execution_options(synchronize_session=False)
    )
    await session.commit()
    deleted = int(result.rowcount or 0)
    if deleted:
        _logger.info(
            "snapshots.prune",
            "Pruned snapshots by retention policy",
            retention_days=retention_days,
            deleted=deleted,
            cutoff=cutoff.isoformat(),
        )
    return deleted


async def cleanup_alert_data(session: AsyncSession, *, retention_days: int, now: datetime) -> Dict[str, int]:
    cutoff = now - timedelta(days=retention_days)
    tokens = await session.execute(delete(VerificationToken).where(VerificationToken.expires_at < now))
    history = await session.execute(delete(AlertHistory).where(AlertHistory.sent_at < cutoff))
    inbox = await session.execute(delete(UserAlert).where(UserAlert.created_at < cutoff))
    await session.commit()
    return {
        "tokens": int(tokens.rowcount or 0),
        "alert_history": int(history.rowcount or 0),
        "user_alerts": int(inbox.rowcount or 0),
    }


async def acquire_lease(
    session: AsyncSession,
    name: str,
    *,
    holder: str,
    ttl_seconds: int,
    now: datetime,
) -> bool:
    """Datastore-level run guard; only one holder until the lease expires or is released."""
    expires_at = now + timedelta(seconds=ttl_seconds)
    result = await session.execute(
        update(JobLease)
        .where(JobLease.name == name, JobLease.expires_at < now)
        .values(holder=holder, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount or 0) == 1:
        await session.commit()
        return True

    existing = await session.execute(select(JobLease.name).where(JobLease.name == name))
    if existing.first() is not None:
        await session.rollback()
        return False

    session.add(JobLease(name=name, holder=holder, expires_at=expires_at))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return False
    return True


async def release_lease(session: AsyncSession, name: str, *, holder: str) -> None:
    await session.execute(delete(JobLease).where(JobLease.name == name, JobLease.holder == holder))
    await session.commit()


@dataclass
class SnapshotJobResult:
    status: str
    trigger: str
    reason: Optional[str] = None
    snapshot_id: Optional[int] = None
    node_count: int = 0
    alerts: AlertRunResult = field(default_factory=AlertRunResult)
    pruned: int = 0


@dataclass(frozen=True)
class SnapshotJobConfig:
    min_interval_seconds: int = 240
    lease_ttl_seconds: int = 300
    retention_days: int = 30
    alert_retention_days: int = 30
    base_url: str = "http://localhost:8000"

    @classmethod
    def from_settings(cls, settings: Settings) -> "SnapshotJobConfig":
        return cls(
            min_interval_seconds=settings.snapshot_min_interval_seconds,
            lease_ttl_seconds=settings.snapshot_lease_ttl_seconds,
            retention_days=settings.snapshot_retention_days,
            alert_retention_days=settings.alert_retention_days,
            base_url=settings.public_base_url,
        )


class SnapshotJob:
    """Poll, persist one snapshot, evaluate alerts, prune. Shared by cron, scheduler and auto-trigger."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        poller: PodPoller,
        credits_service: CreditsService,
        notifier: Notifier,
        status_policy: StatusPolicy,
        alert_policy: AlertPolicy,
        config: SnapshotJobConfig,
        now: Now = utcnow,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._poller = poller
        self._credits = credits_service
        self._notifier = notifier
        self._status_policy = status_policy
        self._alert_policy = alert_policy
        self._config = config
        self._now = now

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        return self._sessionmaker

    async def run(self, *, trigger: str, force: bool = False) -> SnapshotJobResult:
        holder = uuid4().hex[:16]
        started = self._now()
        async with _logger.operation("snapshot.run", "Running snapshot job", trigger=trigger) as op:
            async with self._sessionmaker() as session:
                acquired = await acquire_lease(
                    session,
                    SNAPSHOT_LEASE,
                    holder=holder,
                    ttl_seconds=self._config.lease_ttl_seconds,
                    now=started,
                )
                if not acquired:
                    op.step_warning("lease", "Another snapshot run holds the lease")
                    record_snapshot_run(trigger=trigger, result="locked")
                    return SnapshotJobResult(status="skipped", trigger=trigger, reason="locked")
                try:
                    result = await self._run_locked(session, op, trigger=trigger, force=force, started=started)
                finally:
                    await session.rollback()
                    await release_lease(session, SNAPSHOT_LEASE, holder=holder)
            record_snapshot_run(trigger=trigger, result=result.status)
            return result

    async def _run_locked(
        self,
        session: AsyncSession,
        op: Operation,
        *,
        trigger: str,
        force: bool,
        started: datetime,
    ) -> SnapshotJobResult:
        latest = await get_latest_snapshot(session)
        if latest is not None and not force:
            age = (started - as_utc(latest.timestamp)).total_seconds()
            if age < self._config.min_interval_seconds:
                op.step("guard", "Latest snapshot is too recent", age_seconds=round(age, 1))
                return SnapshotJobResult(status="skipped", trigger=trigger, reason="too_soon")

        try:
            collection = await collect_nodes(
                self._poller,
                self._credits,
                policy=self._status_policy,
                now=started,
            )
        except PollError as exc:
            op.step_error("poll", "Node poll failed, nothing written", error=str(exc))
            return SnapshotJobResult(status="failed", trigger=trigger, reason=str(exc))
        op.step("poll", "Collected nodes", nodes=len(collection.nodes), seed=collection.seed)

        previous = await load_node_states(session, latest.id) if latest is not None else {}
        snapshot = await insert_snapshot(session, collection.nodes, timestamp=started)
        snapshot_id = snapshot.id
        op.step("persist", "Stored snapshot", snapshot_id=snapshot_id)

        current = {node.id: NodeState.from_node(node) for node in collection.nodes}
        alerts = await process_alerts(
            session,
            previous=previous,
            current=current,
            notifier=self._notifier,
            policy=self._alert_policy,
            now=started,
            base_url=self._config.base_url,
        )
        op.step("alerts", "Evaluated alerts", sent=alerts.sent, errors=alerts.errors)

        pruned = await prune_old_snapshots(session, retention_days=self._config.retention_days, now=started)
        cleaned = await cleanup_alert_data(session, retention_days=self._config.alert_retention_days, now=started)
        op.step("cleanup", "Pruned old data", snapshots=pruned, **cleaned)

        return SnapshotJobResult(
            status="created",
            trigger=trigger,
            snapshot_id=snapshot_id,
            node_count=len(collection.nodes),
            alerts=alerts,
            pruned=pruned,
        )


def job_result_out(result: SnapshotJobResult) -> SnapshotJobOut:
    return SnapshotJobOut(
        status=result.status,
        trigger=result.trigger,
        reason=result.reason,
        snapshot_id=result.snapshot_id,
        node_count=result.node_count,
        alerts_sent=result.alerts.sent,
        alerts_suppressed=result.alerts.suppressed,
        alert_errors=result.alerts.errors,
        pruned=result.pruned,
    )
