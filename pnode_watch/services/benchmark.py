from __future__ import annotations

from typing import Callable, List, Sequence, Tuple

from pnode_watch.schemas.nodes import Node
from pnode_watch.schemas.scoring import (
    BenchmarkMetrics,
    BenchmarkPercentiles,
    BenchmarkRankings,
    BenchmarkRating,
    ComparisonWinner,
    Improvement,
    MetricComparison,
    NodeBenchmark,
    NodeComparisonOut,
    RankPosition,
)
from pnode_watch.services.scoring import ELITE_UPTIME_PERCENT

_TB = 1e12

_COMPARED_METRICS: Tuple[Tuple[str, str, Callable[[Node], float]], ...] = (
    ("Uptime", "%", lambda node: node.uptime),
    ("Storage", "bytes", lambda node: float(node.storage.total)),
    ("Credits", "", lambda node: node.credits),
    ("Health Score", "", lambda node: float(node.health_score)),
)


def percentile_of(value: float, distribution: Sequence[float]) -> int:
    """Share of ``distribution`` strictly below ``value``; 50 when there is nothing to compare."""
    if not distribution:
        return 50
    below = sum(1 for item in distribution if item < value)
    return round(below / len(distribution) * 100)


def rank_of(value: float, values: Sequence[float]) -> int:
    # Ties share a rank: 1 + number of strictly better values.
    return 1 + sum(1 for item in values if item > value)


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _rating(credits_percentile: float) -> BenchmarkRating:
    if credits_percentile >= 75:
        return "excellent"
    if credits_percentile >= 50:
        return "good"
    if credits_percentile >= 25:
        return "average"
    return "below_average"


def _uptime_notes(uptime: float, network_average: float) -> Tuple[List[str], List[str]]:
    if uptime >= 99:
        return [f"Excellent uptime ({uptime:.1f}%)"], []
    if uptime >= 95:
        return [f"Good uptime ({uptime:.1f}%)"], []
    if uptime >= 90 and uptime >= network_average:
        return [f"Above average uptime ({uptime:.1f}%)"], []
    if uptime < 80:
        return [], [f"Low uptime ({uptime:.1f}% - below 80% threshold)"]
    if uptime < network_average:
        return [], [f"Uptime below network average ({uptime:.1f}% vs {network_average:.1f}% avg)"]
    return [], []


def benchmark_node(node: Node, nodes: Sequence[Node]) -> NodeBenchmark:
    """Place one node against the rest of the network.

    Averages and percentiles use the other nodes only. Ranks are taken over
    the whole network, the node included, and the overall rank follows credits.
    """
    others = [item for item in nodes if item.id != node.id]
    uptimes = [item.uptime for item in others]
    storages = [float(item.storage.total) for item in others]
    credits = [item.credits for item in others]
    health = [float(item.health_score) for item in others]

    averages = BenchmarkMetrics(
        uptime=_average(uptimes),
        storage=_average(storages),
        credits=_average(credits),
        health_score=_average(health),
    )
    percentiles = BenchmarkPercentiles(
        uptime=percentile_of(node.uptime, uptimes),
        storage=percentile_of(node.storage.total, storages),
        credits=percentile_of(node.credits, credits),
        health_score=percentile_of(node.health_score, health),
    )

    population = list(nodes) if any(item.id == node.id for item in nodes) else [*nodes, node]
    total = len(population)

    def position(value: float, metric: Callable[[Node], float]) -> RankPosition:
        return RankPosition(rank=rank_of(value, [metric(item) for item in population]), total=total)

    credits_position = position(node.credits, lambda item: item.credits)
    rankings = BenchmarkRankings(
        uptime=position(node.uptime, lambda item: item.uptime),
        storage=position(node.storage.total, lambda item: float(item.storage.total)),
        credits=credits_position,
        health_score=position(node.health_score, lambda item: float(item.health_score)),
        overall=credits_position,
    )

    strengths, weaknesses = _uptime_notes(node.uptime, averages.uptime)
    if percentiles.storage >= 75:
        strengths.append(f"High storage capacity (top {100 - percentiles.storage}%)")
    elif percentiles.storage < 25:
        weaknesses.append(f"Low storage capacity (bottom {percentiles.storage}%)")
    if percentiles.credits >= 75:
        strengths.append(f"High credits (top {100 - percentiles.credits}%)")
    elif percentiles.credits < 40:
        weaknesses.append(f"Low credits (bottom {percentiles.credits}%)")
    if node.version_type == "mainnet":
        strengths.append("Running Mainnet version")
    elif node.version_type in ("trynet", "devnet"):
        weaknesses.append(f"Running {node.version_type} version (30% score penalty)")

    improvements: List[Improvement] = []
    if node.uptime < ELITE_UPTIME_PERCENT:
        improvements.append(
            Improvement(
                metric="Uptime",
                current=node.uptime,
                target=ELITE_UPTIME_PERCENT,
                benefit="Achieve Elite badge",
                unit="%",
            )
        )
    if percentiles.storage < 75 and storages:
        top_quarter = sorted(storages, reverse=True)[int(len(storages) * 0.25)]
        if top_quarter > node.storage.total:
            improvements.append(
                Improvement(
                    metric="Storage",
                    current=round(node.storage.total / _TB, 3),
                    target=round(top_quarter / _TB, 3),
                    benefit="Reach top 25%",
                    unit="TB",
                )
            )

    return NodeBenchmark(
        node=node,
        network_averages=averages,
        percentiles=percentiles,
        rankings=rankings,
        strengths=strengths,
        weaknesses=weaknesses,
        overall_rating=_rating(percentiles.credits),
        improvements=improvements,
    )


def _compare(label: str, unit: str, value_a: float, value_b: float) -> MetricComparison:
    winner: ComparisonWinner = "tie"
    if value_a != value_b:
        winner = "a" if value_a > value_b else "b"
    diff = abs(value_a - value_b)
    larger = max(value_a, value_b)
    return MetricComparison(
        metric=label,
        unit=unit,
        value_a=value_a,
        value_b=value_b,
        winner=winner,
        diff=diff,
        diff_percent=round(diff / larger * 100, 2) if larger > 0 else 0.0,
    )


def compare_nodes(node_a: Node, node_b: Node, nodes: Sequence[Node]) -> NodeComparisonOut:
    return NodeComparisonOut(
        node_a=benchmark_node(node_a, nodes),
        node_b=benchmark_node(node_b, nodes),
        comparison=[
            _compare(label, unit, metric(node_a), metric(node_b)) for label, unit, metric in _COMPARED_METRICS
        ],
    )
