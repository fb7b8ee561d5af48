from __future__ import annotations

from pnode_watch.services.benchmark import benchmark_node, compare_nodes, percentile_of, rank_of
from tests.helpers import make_node


def _network():
    return [
        make_node("top", credits=400.0, uptime=99.9, storage_total=4_000_000_000_000, health_score=100),
        make_node("mid-a", credits=200.0, uptime=97.0, storage_total=2_000_000_000_000, health_score=90),
        make_node("mid-b", credits=200.0, uptime=91.0, storage_total=2_000_000_000_000, health_score=85),
        make_node(
            "low",
            credits=10.0,
            uptime=70.0,
            storage_total=500_000_000_000,
            health_score=40,
            version_type="trynet",
        ),
    ]


def test_percentile_counts_strictly_lower_values() -> None:
    assert percentile_of(5.0, []) == 50
    assert percentile_of(5.0, [1.0, 2.0, 5.0, 9.0]) == 50
    assert percentile_of(10.0, [1.0, 2.0, 5.0, 9.0]) == 100


def test_ties_share_a_rank() -> None:
    values = [400.0, 200.0, 200.0, 10.0]

    assert [rank_of(value, values) for value in values] == [1, 2, 2, 4]


def test_benchmark_of_leading_node() -> None:
    nodes = _network()

    result = benchmark_node(nodes[0], nodes)

    assert result.rankings.overall.rank == 1
    assert result.rankings.credits.total == 4
    assert result.percentiles.credits == 100
    assert result.overall_rating == "excellent"
    assert result.network_averages.credits == (200.0 + 200.0 + 10.0) / 3
    assert "Excellent uptime (99.9%)" in result.strengths
    assert result.improvements == []


def test_benchmark_of_tied_and_weak_nodes() -> None:
    nodes = _network()

    tied = benchmark_node(nodes[2], nodes)
    weak = benchmark_node(nodes[3], nodes)

    assert tied.rankings.credits.rank == 2
    assert tied.strengths[0] == "Above average uptime (91.0%)"
    assert weak.rankings.overall.rank == 4
    assert weak.overall_rating == "below_average"
    assert "Low uptime (70.0% - below 80% threshold)" in weak.weaknesses
    assert "Running trynet version (30% score penalty)" in weak.weaknesses
    assert [item.metric for item in weak.improvements] == ["Uptime", "Storage"]
    assert (weak.improvements[1].current, weak.improvements[1].target) == (0.5, 4.0)


def test_benchmark_of_node_outside_the_collection_counts_it_in_ranks() -> None:
    nodes = _network()
    newcomer = make_node("newcomer", credits=300.0)

    result = benchmark_node(newcomer, nodes)

    assert (result.rankings.credits.rank, result.rankings.credits.total) == (2, 5)


def test_compare_nodes_picks_winners_per_metric() -> None:
    nodes = _network()

    result = compare_nodes(nodes[1], nodes[2], nodes)

    by_metric = {item.metric: item for item in result.comparison}
    assert by_metric["Uptime"].winner == "a"
    assert by_metric["Credits"].winner == "tie"
    assert by_metric["Credits"].diff_percent == 0.0
    assert by_metric["Health Score"].diff == 5.0
    assert result.node_a.node.id == "mid-a"
    assert result.node_b.node.id == "mid-b"
