from __future__ import annotations

from pnode_watch.services.scoring import (
    calculate_contribution_score,
    calculate_contribution_scores,
    calculate_health_score,
    calculate_network_health,
    get_top_contributors,
    tier_for,
    uptime_badge,
    version_status,
    version_type,
    latest_mainnet_version,
)
from tests.helpers import make_node

_CUTS = {"diamond": 95, "platinum": 80, "gold": 60, "silver": 40, "bronze": 0}


def _network(count: int = 20):
    return [
        make_node(
            f"node-{index:02d}",
            uptime=50 + index * 2.5,
            credits=float(index * 100),
            storage_total=(index + 1) * 10**9,
            uptime_seconds=index * 86_400,
        )
        for index in range(count)
    ]


def test_every_node_gets_a_tier_matching_its_percentile() -> None:
    nodes = _network()

    scores = calculate_contribution_scores(nodes)

    assert set(scores) == {node.id for node in nodes}
    for score in scores.values():
        assert score.tier in _CUTS
        assert 0 <= score.percentile <= 100
    assert {score.tier for score in scores.values()} == set(_CUTS)


def test_tier_boundaries() -> None:
    assert tier_for(95) == "diamond"
    assert tier_for(94.9) == "platinum"
    assert tier_for(80) == "platinum"
    assert tier_for(60) == "gold"
    assert tier_for(40) == "silver"
    assert tier_for(39.9) == "bronze"
    assert tier_for(0) == "bronze"


def test_contribution_scores_are_deterministic() -> None:
    nodes = _network()

    assert calculate_contribution_scores(nodes) == calculate_contribution_scores(list(nodes))
    single = calculate_contribution_score(nodes[5], nodes)
    assert single == calculate_contribution_scores(nodes)[nodes[5].id]


def test_empty_network_does_not_divide_by_zero() -> None:
    assert calculate_contribution_scores([]) == {}
    health = calculate_network_health([])
    assert health.score == 0
    assert health.label == "poor"


def test_top_contributors_sorted_by_total() -> None:
    top = get_top_contributors(_network(), count=3)

    assert len(top) == 3
    totals = [score.total for _, score in top]
    assert totals == sorted(totals, reverse=True)
    assert top[0][0].id == "node-19"


def test_health_score_weights() -> None:
    assert calculate_health_score(make_node("a", status="online", uptime=100.0)) == 100
    assert calculate_health_score(make_node("b", status="degraded", uptime=50.0)) == 40
    assert calculate_health_score(make_node("c", status="offline", uptime=0.0)) == 0


def test_uptime_badges() -> None:
    assert uptime_badge(99.9) == "elite"
    assert uptime_badge(96) == "reliable"
    assert uptime_badge(85) == "average"
    assert uptime_badge(10) == "unreliable"


def test_version_classification() -> None:
    nodes = [make_node("a", version="0.8.0"), make_node("b", version="0.7.3"), make_node("c", version="0.9.0-trynet")]
    latest = latest_mainnet_version(nodes)

    assert latest == (0, 8, 0)
    assert version_type("0.9.0-trynet") == "trynet"
    assert version_type("garbage") == "unknown"
    assert version_status("0.8.0", latest) == "current"
    assert version_status("0.7.3", latest) == "outdated"
    assert version_status("0.9.0-trynet", latest) == "unknown"
