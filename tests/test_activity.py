from __future__ import annotations

from datetime import timedelta

from pnode_watch.models import NodeSnapshot
from pnode_watch.services.activity import detect_changes, get_recent_activity
from pnode_watch.services.snapshots import insert_snapshot
from tests.helpers import NOW, make_node


def _row(node_id: str, status: str = "online", version: str = "0.8.0") -> NodeSnapshot:
    return NodeSnapshot(snapshot_id=1, node_id=node_id, status=status, version=version)


def test_detects_joins_departures_status_and_version_changes() -> None:
    previous = [_row("stable-node"), _row("flappy-node"), _row("gone-node"), _row("upgrade-node")]
    current = [
        _row("stable-node"),
        _row("flappy-node", status="offline"),
        _row("upgrade-node", status="degraded", version="0.9.0"),
        _row("fresh-node"),
    ]

    events = detect_changes(previous, current)

    assert [(event.type, event.node_id) for event in events] == [
        ("status_change", "flappy-node"),
        ("joined", "fresh-node"),
        ("status_change", "upgrade-node"),
        ("version_change", "upgrade-node"),
        ("left", "gone-node"),
    ]
    assert events[0].message == "Node flappy-n went offline"
    assert (events[0].previous, events[0].current) == ("online", "offline")
    assert events[2].message == "Node upgrade- is experiencing issues"
    assert (events[3].previous, events[3].current) == ("0.8.0", "0.9.0")
    assert events[4].message == "Node gone-nod left the network"


def test_identical_snapshots_produce_no_events() -> None:
    rows = [_row("a"), _row("b", status="offline")]

    assert detect_changes(rows, rows) == []


async def test_recent_activity_compares_latest_two_snapshots(session) -> None:
    rounds = [
        [make_node("a"), make_node("b")],
        [make_node("a"), make_node("b", status="offline")],
        [make_node("a", status="offline"), make_node("c")],
    ]
    for hours_ago, nodes in zip((3, 2, 1), rounds):
        await insert_snapshot(session, nodes, timestamp=NOW - timedelta(hours=hours_ago))

    activity = await get_recent_activity(session)

    assert activity.to_snapshot is not None and activity.from_snapshot is not None
    assert activity.to_snapshot > activity.from_snapshot
    assert [(event.type, event.node_id) for event in activity.events] == [
        ("status_change", "a"),
        ("joined", "c"),
        ("left", "b"),
    ]
    assert activity.counts == {"status_change": 1, "joined": 1, "left": 1}


async def test_recent_activity_needs_two_snapshots(session) -> None:
    empty = await get_recent_activity(session)
    await insert_snapshot(session, [make_node("a")], timestamp=NOW)
    single = await get_recent_activity(session)

    assert (empty.to_snapshot, empty.events) == (None, [])
    assert single.to_snapshot is not None
    assert (single.from_snapshot, single.events, single.counts) == (None, [], {})
