from __future__ import annotations

from collections import Counter
from typing import Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from pnode_watch.logger import get_logger
from pnode_watch.models.snapshot import NodeSnapshot
from pnode_watch.schemas.history import ActivityEvent, ActivityOut
from pnode_watch.services.snapshots import get_latest_snapshot, get_node_rows, get_previous_snapshot

_logger = get_logger("services.activity")

_STATUS_MESSAGES = {
    "online": "came online",
    "offline": "went offline",
    "degraded": "is experiencing issues",
}


def _short(node_id: str) -> str:
    return node_id[:8]


def detect_changes(previous: Sequence[NodeSnapshot], current: Sequence[NodeSnapshot]) -> List[ActivityEvent]:
    """Events between two consecutive snapshots, ordered by node id with departures last."""
    before: Dict[str, NodeSnapshot] = {row.node_id: row for row in previous}
    after: Dict[str, NodeSnapshot] = {row.node_id: row for row in current}
    events: List[ActivityEvent] = []

    for node_id in sorted(after):
        row = after[node_id]
        old = before.get(node_id)
        if old is None:
            events.append(
                ActivityEvent(
                    type="joined",
                    node_id=node_id,
                    message=f"New node {_short(node_id)} joined the network",
                    current=row.status,
                )
            )
            continue
        if old.status != row.status:
            change = _STATUS_MESSAGES.get(row.status, f"is now {row.status}")
            events.append(
                ActivityEvent(
                    type="status_change",
                    node_id=node_id,
                    message=f"Node {_short(node_id)} {change}",
                    previous=old.status,
                    current=row.status,
                )
            )
        if old.version != row.version:
            events.append(
                ActivityEvent(
                    type="version_change",
                    node_id=node_id,
                    message=f"Node {_short(node_id)} updated to {row.version}",
                    previous=old.version,
                    current=row.version,
                )
            )

    for node_id in sorted(set(before) - set(after)):
        events.append(
            ActivityEvent(
                type="left",
                node_id=node_id,
                message=f"Node {_short(node_id)} left the network",
                previous=before[node_id].status,
            )
        )
    return events


async def get_recent_activity(session: AsyncSession, *, limit: int = 100) -> ActivityOut:
    latest = await get_latest_snapshot(session)
    previous = await get_previous_snapshot(session)
    if latest is None or previous is None:
        return ActivityOut(
            to_snapshot=latest.id if latest is not None else None,
            to_timestamp=latest.timestamp if latest is not None else None,
            events=[],
            counts={},
        )

    events = detect_changes(await get_node_rows(session, previous.id), await get_node_rows(session, latest.id))
    _logger.debug(
        "activity.detect",
        "Compared the two latest snapshots",
        from_snapshot=previous.id,
        to_snapshot=latest.id,
        events=len(events),
    )
    return ActivityOut(
        from_snapshot=previous.id,
        to_snapshot=latest.id,
        from_timestamp=previous.timestamp,
        to_timestamp=latest.timestamp,
        events=events[: max(0, limit)],
        counts=dict(Counter(event.type for event in events)),
    )
