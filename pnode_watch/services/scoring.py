from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from pnode_watch.schemas.nodes import Node, UptimeBadge, VersionStatus, VersionType
from pnode_watch.schemas.scoring import (
    ContributionComponents,
    ContributionScore,
    HealthLabel,
    NetworkHealth,
    Tier,
)

ELITE_UPTIME_PERCENT = 99.5
LONGEVITY_WINDOW_SECONDS = 30 * 24 * 60 * 60

_STATUS_POINTS = {"online": 100.0, "degraded": 50.0, "offline": 0.0}
_CONTRIBUTION_WEIGHTS = {
    "uptime": 0.30,
    "credits": 0.35,
    "storage": 0.20,
    "longevity": 0.15,
}
_TIER_CUTS: Tuple[Tuple[float, Tier], ...] = (
    (95.0, "diamond"),
    (80.0, "platinum"),
    (60.0, "gold"),
    (40.0, "silver"),
)
_SEMVER = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)")


def calculate_health_score(node: Node) -> int:
    score = _STATUS_POINTS.get(node.status, 0.0) * 0.4 + min(100.0, node.uptime) * 0.4
    if node.uptime >= ELITE_UPTIME_PERCENT:
        score += 20
    return int(max(0, min(100, round(score))))


def health_label(score: float) -> HealthLabel:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


def calculate_network_health(nodes: Sequence[Node]) -> NetworkHealth:
    if not nodes:
        return NetworkHealth(score=0, label="poor", online_percent=0.0, avg_uptime=0.0, elite_percent=0.0)
    count = len(nodes)
    online_percent = sum(1 for node in nodes if node.status == "online") / count * 100
    avg_uptime = sum(node.uptime for node in nodes) / count
    elite_percent = sum(1 for node in nodes if node.uptime >= ELITE_UPTIME_PERCENT) / count * 100
    score = round(online_percent * 0.4 + avg_uptime * 0.4 + min(elite_percent * 2, 20))
    return NetworkHealth(
        score=score,
        label=health_label(score),
        online_percent=round(online_percent, 1),
        avg_uptime=round(avg_uptime, 2),
        elite_percent=round(elite_percent, 1),
    )


def uptime_badge(uptime: float) -> UptimeBadge:
    if uptime >= ELITE_UPTIME_PERCENT:
        return "elite"
    if uptime >= 95:
        return "reliable"
    if uptime >= 80:
        return "average"
    return "unreliable"


def parse_version(version: str) -> Optional[Tuple[int, int, int]]:
    match = _SEMVER.match(version.strip())
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def version_type(version: str) -> VersionType:
    lowered = version.lower()
    if "trynet" in lowered:
        return "trynet"
    if "devnet" in lowered:
        return "devnet"
    if parse_version(version) is not None:
        return "mainnet"
    return "unknown"


def latest_mainnet_version(nodes: Sequence[Node]) -> Optional[Tuple[int, int, int]]:
    parsed = [
        parse_version(node.version) for node in nodes if version_type(node.version) == "mainnet"
    ]
    versions = [item for item in parsed if item is not None]
    return max(versions) if versions else None


def version_status(version: str, latest: Optional[Tuple[int, int, int]]) -> VersionStatus:
    if latest is None or version_type(version) != "mainnet":
        return "unknown"
    parsed = parse_version(version)
    if parsed is None:
        return "unknown"
    return "current" if parsed >= latest else "outdated"


def tier_for(percentile: float) -> Tier:
    for cut, tier in _TIER_CUTS:
        if percentile >= cut:
            return tier
    return "bronze"


@dataclass(frozen=True)
class _Maxima:
    credits: float
    storage: float


def _maxima(nodes: Sequence[Node]) -> _Maxima:
    credits = [node.credits for node in nodes if node.credits > 0]
    storage = [node.storage.total for node in nodes if node.storage.total > 0]
    return _Maxima(credits=max(credits + [1.0]), storage=float(max(storage + [1])))


def _components(node: Node, maxima: _Maxima) -> ContributionComponents:
    return ContributionComponents(
        uptime=min(100.0, node.uptime),
        credits=node.credits / maxima.credits * 100,
        storage=node.storage.total / maxima.storage * 100,
        longevity=min(100.0, node.uptime_seconds / LONGEVITY_WINDOW_SECONDS * 100),
    )


def _weighted(components: ContributionComponents) -> float:
    return (
        components.uptime * _CONTRIBUTION_WEIGHTS["uptime"]
        + components.credits * _CONTRIBUTION_WEIGHTS["credits"]
        + components.storage * _CONTRIBUTION_WEIGHTS["storage"]
        + components.longevity * _CONTRIBUTION_WEIGHTS["longevity"]
    )


def _score_from(total: float, components: ContributionComponents, raw_totals: Sequence[float]) -> ContributionScore:
    rank = sum(1 for value in raw_totals if value < total)
    percentile = rank / len(raw_totals) * 100 if raw_totals else 0.0
    return ContributionScore(
        total=round(total, 1),
        components=ContributionComponents(
            uptime=round(components.uptime, 1),
            credits=round(components.credits, 1),
            storage=round(components.storage, 1),
            longevity=round(components.longevity, 1),
        ),
        percentile=round(percentile),
        tier=tier_for(percentile),
    )


def calculate_contribution_scores(nodes: Sequence[Node]) -> Dict[str, ContributionScore]:
    """Score every node against the same network maxima in one pass."""
    maxima = _maxima(nodes)
    components = [_components(node, maxima) for node in nodes]
    raw_totals = [_weighted(item) for item in components]
    return {
        node.id: _score_from(total, parts, raw_totals)
        for node, parts, total in zip(nodes, components, raw_totals)
    }


def calculate_contribution_score(node: Node, nodes: Sequence[Node]) -> ContributionScore:
    maxima = _maxima(nodes)
    parts = _components(node, maxima)
    raw_totals = [_weighted(_components(item, maxima)) for item in nodes]
    return _score_from(_weighted(parts), parts, raw_totals)


def get_top_contributors(nodes: Sequence[Node], count: int = 10) -> List[Tuple[Node, ContributionScore]]:
    scores = calculate_contribution_scores(nodes)
    ranked = sorted(nodes, key=lambda node: scores[node.id].total, reverse=True)
    return [(node, scores[node.id]) for node in ranked[: max(0, count)]]
