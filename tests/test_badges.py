from __future__ import annotations

from pnode_watch.services.badges import calculate_all_badges, calculate_badges, earned_badges
from tests.helpers import make_node


def _network():
    return [
        make_node("fast", uptime=99.9, response_time=20.0, storage_total=2 * 10**12, uptime_seconds=8 * 86_400, credits=5000.0),
        make_node("slow", uptime=70.0, response_time=400.0, storage_total=10**9, uptime_seconds=3600, credits=10.0),
        make_node("mid", uptime=96.0, response_time=60.0, storage_total=5 * 10**11, uptime_seconds=86_400, credits=800.0),
    ]


def test_badges_are_idempotent() -> None:
    nodes = _network()

    first = calculate_all_badges(nodes)
    second = calculate_all_badges(nodes)

    assert first == second
    for node in nodes:
        assert calculate_badges(node, nodes) == first[node.id]


def test_badge_progress_is_bounded() -> None:
    for badges in calculate_all_badges(_network()).values():
        for badge in badges:
            assert 0 <= badge.progress <= 100


def test_earned_badges_for_top_node() -> None:
    nodes = _network()

    earned = {badge.id for badge in earned_badges(nodes[0], nodes)}

    assert earned == {"elite-uptime", "speed-demon", "storage-champion", "hot-streak", "credits-leader"}
    assert earned_badges(nodes[1], nodes) == []
