from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple

from pnode_watch.schemas.nodes import Node
from pnode_watch.schemas.scoring import Badge

ELITE_UPTIME_THRESHOLD = 99.5
SPEED_THRESHOLD_MS = 50.0
STORAGE_CHAMPION_BYTES = 1e12
HOT_STREAK_SECONDS = 7 * 24 * 60 * 60

_Check = Callable[[Node, float], Tuple[bool, float]]


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    name: str
    description: str
    check: _Check


def _elite_uptime(node: Node, _: float) -> Tuple[bool, float]:
    progress = min(100.0, node.uptime / ELITE_UPTIME_THRESHOLD * 100)
    return node.uptime >= ELITE_UPTIME_THRESHOLD, progress


def _speed_demon(node: Node, _: float) -> Tuple[bool, float]:
    if node.response_time <= SPEED_THRESHOLD_MS:
        progress = 100.0
    else:
        progress = max(0.0, 100 - (node.response_time - SPEED_THRESHOLD_MS) / SPEED_THRESHOLD_MS * 100)
    return node.response_time < SPEED_THRESHOLD_MS, progress


def _storage_champion(node: Node, _: float) -> Tuple[bool, float]:
    progress = min(100.0, node.storage.total / STORAGE_CHAMPION_BYTES * 100)
    return node.storage.total >= STORAGE_CHAMPION_BYTES, progress


def _hot_streak(node: Node, _: float) -> Tuple[bool, float]:
    progress = min(100.0, node.uptime_seconds / HOT_STREAK_SECONDS * 100)
    return node.uptime_seconds >= HOT_STREAK_SECONDS, progress


def _credits_leader(node: Node, threshold: float) -> Tuple[bool, float]:
    earned = node.credits > 0 and node.credits >= threshold
    progress = min(100.0, node.credits / (threshold or 1) * 100)
    return earned, progress


BADGES: Tuple[BadgeDefinition, ...] = (
    BadgeDefinition("elite-uptime", "Elite Uptime", "99.5%+ uptime", _elite_uptime),
    BadgeDefinition("speed-demon", "Speed Demon", "Response time < 50ms", _speed_demon),
    BadgeDefinition("storage-champion", "Storage Champion", "1TB+ committed", _storage_champion),
    BadgeDefinition("hot-streak", "Hot Streak", "7+ days online", _hot_streak),
    BadgeDefinition("credits-leader", "Credits Leader", "Top 10% in credits", _credits_leader),
)


def credits_leader_threshold(nodes: Sequence[Node]) -> float:
    ranked = sorted((node.credits for node in nodes if node.credits > 0), reverse=True)
    if not ranked:
        return 0.0
    return ranked[min(len(ranked) - 1, math.floor(len(ranked) * 0.1))]


def calculate_badges(node: Node, nodes: Sequence[Node]) -> List[Badge]:
    return _badges_for(node, credits_leader_threshold(nodes))


def calculate_all_badges(nodes: Sequence[Node]) -> Dict[str, List[Badge]]:
    threshold = credits_leader_threshold(nodes)
    return {node.id: _badges_for(node, threshold) for node in nodes}


def earned_badges(node: Node, nodes: Sequence[Node]) -> List[Badge]:
    return [badge for badge in calculate_badges(node, nodes) if badge.earned]


def _badges_for(node: Node, credits_threshold: float) -> List[Badge]:
    badges: List[Badge] = []
    for definition in BADGES:
        earned, progress = definition.check(node, credits_threshold)
        badges.append(
            Badge(
                id=definition.id,
                name=definition.name,
                description=definition.description,
                earned=earned,
                progress=round(progress, 1),
            )
        )
    return badges
