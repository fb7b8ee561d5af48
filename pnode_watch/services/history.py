from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pnode_watch.clock import as_utc
from pnode_watch.logger import get_logger
from pnode_watch.models.snapshot import NetworkSnapshot, NodeSnapshot
from pnode_watch.schemas.history import (
    CreditsTrend,
    NetworkHistoryOut,
    NetworkHistoryPoint,
    NetworkHistorySummary,
    NodeHistoryOut,
    NodeHistoryPoint,
    NodeHistorySummary,
    SnapshotHistoryOut,
    SnapshotOut,
    SnapshotTrends,
)
from pnode_watch.services.snapshots import get_latest_snapshot, get_previous_snapshot, list_snapshots_since

_logger = get_logger("services.history")

NETWORK_MAX_DAYS = 30
NODE_MAX_DAYS = 30
SNAPSHOT_MAX_DAYS = 90
RANGE_DAYS: Dict[str, int] = {"24h": 1, "7d": 7, "30d": 30, "90d": 90}
CREDITS_TREND_HOURS = 24
_TIB = 1024**4


def clamp_days(days: Optional[int], *, default: int = 7, maximum: int) -> int:
    if days is None:
        return min(default, maximum)
    return max(1, min(int(days), maximum))


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole > 0 else 0.0


def snapshot_out(row: NetworkSnapshot) -> SnapshotOut:
    out = SnapshotOut.model_validate(row)
    return out.model_copy(
        update={
            "online_percent": _percent(row.online_nodes, row.total_nodes),
            "storage_utilization": _percent(row.used_storage_bytes, row.total_storage_bytes),
        }
    )


def network_point(row: NetworkSnapshot) -> NetworkHistoryPoint:
    return NetworkHistoryPoint(
        timestamp=row.timestamp,
        total_nodes=row.total_nodes,
        online_nodes=row.online_nodes,
        degraded_nodes=row.degraded_nodes,
        offline_nodes=row.offline_nodes,
        online_percent=_percent(row.online_nodes, row.total_nodes),
        total_storage_tb=round(row.total_storage_bytes / _TIB, 2),
        used_storage_tb=round(row.used_storage_bytes / _TIB, 2),
        storage_utilization=_percent(row.used_storage_bytes, row.total_storage_bytes),
        avg_uptime=round(row.avg_uptime, 1),
        avg_score=round(row.avg_score, 1),
        avg_credits=round(row.avg_credits, 2),
    )


def summarize_network(points: Sequence[NetworkHistoryPoint], days: int) -> Optional[NetworkHistorySummary]:
    if not points:
        return None
    online = [point.online_percent for point in points]
    scores = [point.avg_score for point in points]
    nodes = [point.total_nodes for point in points]
    return NetworkHistorySummary(
        data_points=len(points),
        period_days=days,
        first_snapshot=points[0].timestamp,
        last_snapshot=points[-1].timestamp,
        avg_online_percent=round(sum(online) / len(online), 1),
        min_online_percent=min(online),
        max_online_percent=max(online),
        avg_score=round(sum(scores) / len(scores), 1),
        min_score=min(scores),
        max_score=max(scores),
        min_nodes=min(nodes),
        max_nodes=max(nodes),
    )


def compute_trends(latest: Optional[NetworkSnapshot], previous: Optional[NetworkSnapshot]) -> Optional[SnapshotTrends]:
    if latest is None or previous is None:
        return None
    return SnapshotTrends(
        node_count_change=latest.total_nodes - previous.total_nodes,
        online_change=latest.online_nodes - previous.online_nodes,
        uptime_change=round(latest.avg_uptime - previous.avg_uptime, 2),
        score_change=round(latest.avg_score - previous.avg_score, 2),
        storage_change=latest.total_storage_bytes - previous.total_storage_bytes,
        credits_change=round(latest.total_credits - previous.total_credits, 2),
    )


async def get_network_history(session: AsyncSession, *, days: Optional[int], now: datetime) -> NetworkHistoryOut:
    window = clamp_days(days, maximum=NETWORK_MAX_DAYS)
    rows = await list_snapshots_since(session, now - timedelta(days=window))
    points = [network_point(row) for row in rows]
    latest = await get_latest_snapshot(session)
    _logger.debug("history.network", "Loaded network history", days=window, points=len(points))
    return NetworkHistoryOut(
        days=window,
        points=points,
        summary=summarize_network(points, window),
        latest=snapshot_out(latest) if latest is not None else None,
    )


def resolve_range(range_key: Optional[str], days: Optional[int]) -> tuple[str, int]:
    if days is not None:
        window = clamp_days(days, maximum=SNAPSHOT_MAX_DAYS)
        return f"{window}d", window
    key = range_key if range_key in RANGE_DAYS else "7d"
    return key, RANGE_DAYS[key]


async def get_snapshot_history(
    session: AsyncSession,
    *,
    range_key: Optional[str],
    days: Optional[int],
    now: datetime,
) -> SnapshotHistoryOut:
    label, window = resolve_range(range_key, days)
    rows = await list_snapshots_since(session, now - timedelta(days=window))
    latest = await get_latest_snapshot(session)
    previous = await get_previous_snapshot(session)
    return SnapshotHistoryOut(
        range=label,
        days=window,
        count=len(rows),
        snapshots=[snapshot_out(row) for row in rows],
        latest=snapshot_out(latest) if latest is not None else None,
        trends=compute_trends(latest, previous),
    )


def summarize_node(points: Sequence[NodeHistoryPoint], days: int) -> Optional[NodeHistorySummary]:
    if not points:
        return None
    scores = [point.score for point in points]
    return NodeHistorySummary(
        data_points=len(points),
        period_days=days,
        online_percent=_percent(sum(1 for point in points if point.status == "online"), len(points)),
        avg_uptime=round(sum(point.uptime_percent for point in points) / len(points), 1),
        avg_score=round(sum(scores) / len(scores), 1),
        min_score=min(scores),
        max_score=max(scores),
        latest_version=points[-1].version,
    )


def calculate_credits_trend(
    points: Sequence[NodeHistoryPoint],
    *,
    now: datetime,
    hours: int = CREDITS_TREND_HOURS,
) -> CreditsTrend:
    """Credits movement between the oldest and newest point inside the last ``hours``."""
    cutoff = now - timedelta(hours=hours)
    recent = [point for point in points if as_utc(point.timestamp) > cutoff]
    if len(recent) < 2:
        return CreditsTrend(hours=hours, change=0.0, percent_change=0.0, trend="stable")
    oldest, newest = recent[0].credits, recent[-1].credits
    change = newest - oldest
    return CreditsTrend(
        hours=hours,
        change=round(change, 2),
        percent_change=round(change / oldest * 100, 2) if oldest > 0 else 0.0,
        trend="up" if change > 0 else "down" if change < 0 else "stable",
    )


async def get_node_history(
    session: AsyncSession,
    node_id: str,
    *,
    days: Optional[int],
    now: datetime,
) -> NodeHistoryOut:
    window = clamp_days(days, maximum=NODE_MAX_DAYS)
    since = now - timedelta(days=window)
    result = await session.execute(
        select(NetworkSnapshot.timestamp, NodeSnapshot)
        .join(NetworkSnapshot, NetworkSnapshot.id == NodeSnapshot.snapshot_id)
        .where(NodeSnapshot.node_id == node_id, NetworkSnapshot.timestamp >= since)
        .order_by(NetworkSnapshot.timestamp.asc(), NetworkSnapshot.id.asc())
    )
    points: List[NodeHistoryPoint] = [
        NodeHistoryPoint(
            timestamp=timestamp,
            status=row.status,
            uptime_percent=row.uptime_percent,
            storage_usage_percent=row.storage_usage_percent,
            score=row.score,
            health_score=row.health_score,
            credits=row.credits,
            version=row.version,
            is_public=row.is_public,
        )
        for timestamp, row in result.all()
    ]
    return NodeHistoryOut(
        node_id=node_id,
        days=window,
        points=points,
        summary=summarize_node(points, window),
        credits_trend=calculate_credits_trend(points, now=now) if points else None,
    )
