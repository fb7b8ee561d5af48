from __future__ import annotations

from datetime import timedelta

from pnode_watch.services.history import (
    NETWORK_MAX_DAYS,
    NODE_MAX_DAYS,
    SNAPSHOT_MAX_DAYS,
    calculate_credits_trend,
    clamp_days,
    get_network_history,
    get_node_history,
    get_snapshot_history,
    resolve_range,
)
from pnode_watch.schemas.history import NodeHistoryPoint
from pnode_watch.services.snapshots import insert_snapshot
from tests.helpers import NOW, make_node


def test_days_are_clamped_to_endpoint_maximum() -> None:
    assert clamp_days(500, maximum=NETWORK_MAX_DAYS) == 30
    assert clamp_days(500, maximum=SNAPSHOT_MAX_DAYS) == 90
    assert clamp_days(0, maximum=NODE_MAX_DAYS) == 1
    assert clamp_days(-3, maximum=NODE_MAX_DAYS) == 1
    assert clamp_days(None, maximum=NODE_MAX_DAYS) == 7
    assert resolve_range(None, 500) == ("90d", 90)
    assert resolve_range("24h", None) == ("24h", 1)
    assert resolve_range("bogus", None) == ("7d", 7)


async def test_empty_history_has_no_summary(session) -> None:
    network = await get_network_history(session, days=500, now=NOW)
    snapshots = await get_snapshot_history(session, range_key=None, days=500, now=NOW)
    node = await get_node_history(session, "missing", days=500, now=NOW)

    assert (network.days, network.points, network.summary, network.latest) == (30, [], None, None)
    assert (snapshots.days, snapshots.count, snapshots.trends) == (90, 0, None)
    assert (node.days, node.points, node.summary) == (30, [], None)


async def test_history_summary_and_trends(session) -> None:
    first = [make_node("a"), make_node("b"), make_node("c", status="offline")]
    second = [make_node("a"), make_node("b", status="offline", score=40.0), make_node("c", status="offline")]
    await insert_snapshot(session, first, timestamp=NOW - timedelta(hours=2))
    await insert_snapshot(session, second, timestamp=NOW - timedelta(hours=1))

    network = await get_network_history(session, days=7, now=NOW)
    snapshots = await get_snapshot_history(session, range_key="7d", days=None, now=NOW)
    node = await get_node_history(session, "b", days=7, now=NOW)

    assert [point.online_nodes for point in network.points] == [2, 1]
    assert network.summary is not None
    assert network.summary.data_points == 2
    assert network.summary.min_nodes == network.summary.max_nodes == 3
    assert snapshots.trends is not None
    assert snapshots.trends.online_change == -1
    assert [point.status for point in node.points] == ["online", "offline"]
    assert node.summary is not None
    assert node.summary.online_percent == 50.0
    assert node.summary.min_score == 40.0


async def test_old_snapshots_fall_outside_window(session) -> None:
    await insert_snapshot(session, [make_node("a")], timestamp=NOW - timedelta(days=10))

    assert (await get_network_history(session, days=7, now=NOW)).points == []
    assert len((await get_network_history(session, days=30, now=NOW)).points) == 1


async def test_node_history_reports_credits_trend_over_last_day(session) -> None:
    await insert_snapshot(session, [make_node("a", credits=50.0)], timestamp=NOW - timedelta(hours=30))
    await insert_snapshot(session, [make_node("a", credits=100.0)], timestamp=NOW - timedelta(hours=20))
    await insert_snapshot(session, [make_node("a", credits=125.0)], timestamp=NOW - timedelta(hours=1))

    node = await get_node_history(session, "a", days=7, now=NOW)

    assert node.credits_trend is not None
    assert (node.credits_trend.change, node.credits_trend.percent_change) == (25.0, 25.0)
    assert node.credits_trend.trend == "up"


def test_credits_trend_needs_two_recent_points() -> None:
    def point(hours_ago: float, credits: float) -> NodeHistoryPoint:
        return NodeHistoryPoint(
            timestamp=NOW - timedelta(hours=hours_ago),
            status="online",
            uptime_percent=99.0,
            storage_usage_percent=10.0,
            score=80.0,
            health_score=90,
            credits=credits,
            version="0.8.0",
            is_public=True,
        )

    lone = calculate_credits_trend([point(48, 10.0), point(1, 500.0)], now=NOW)
    falling = calculate_credits_trend([point(5, 0.0), point(3, 40.0), point(1, 10.0)], now=NOW, hours=4)

    assert (lone.change, lone.trend) == (0.0, "stable")
    assert (falling.change, falling.percent_change, falling.trend) == (-30.0, -75.0, "down")
