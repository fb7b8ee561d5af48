from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from pnode_watch.config import Settings
from pnode_watch.schemas.nodes import IssueSeverity, NetworkStats, Node, NodeIssue
from pnode_watch.services.credits import calculate_credit_stats
from pnode_watch.services.scoring import (
    ELITE_UPTIME_PERCENT,
    calculate_contribution_scores,
    calculate_health_score,
    calculate_network_health,
    latest_mainnet_version,
    uptime_badge,
    version_status,
    version_type,
)

_SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def enrich_nodes(nodes: Sequence[Node], credits: Mapping[str, float]) -> List[Node]:
    """Attach credits and derived scores; returns new node records."""
    with_credits = [
        node.model_copy(update={"credits": float(credits.get(node.public_key or node.id, 0.0))})
        for node in nodes
    ]
    latest = latest_mainnet_version(with_credits)
    scores = calculate_contribution_scores(with_credits)
    return [
        node.model_copy(
            update={
                "health_score": calculate_health_score(node),
                "score": scores[node.id].total,
                "version_type": version_type(node.version),
                "version_status": version_status(node.version, latest),
                "uptime_badge": uptime_badge(node.uptime),
            }
        )
        for node in with_credits
    ]


def calculate_network_stats(nodes: Sequence[Node], *, now: datetime) -> NetworkStats:
    timestamp = now.isoformat()
    if not nodes:
        return NetworkStats(timestamp=timestamp)

    count = len(nodes)
    statuses = Counter(node.status for node in nodes)
    total_storage = sum(node.storage.total for node in nodes)
    used_storage = sum(node.storage.used for node in nodes)
    public_nodes = sum(1 for node in nodes if node.is_public)
    credit_stats = calculate_credit_stats(node.credits for node in nodes)
    health = calculate_network_health(nodes)

    return NetworkStats(
        total_nodes=count,
        online_nodes=statuses["online"],
        offline_nodes=statuses["offline"],
        degraded_nodes=statuses["degraded"],
        avg_uptime=round(sum(node.uptime for node in nodes) / count, 2),
        avg_response_time=round(sum(node.response_time for node in nodes) / count, 1),
        total_storage=total_storage,
        used_storage=used_storage,
        storage_utilization=round(used_storage / total_storage * 100, 2) if total_storage > 0 else 0.0,
        public_nodes=public_nodes,
        private_nodes=count - public_nodes,
        version_distribution=dict(Counter(node.version for node in nodes)),
        health_score=health.score,
        health_label=health.label,
        avg_health_score=round(sum(node.health_score for node in nodes) / count, 1),
        avg_credits=round(sum(node.credits for node in nodes) / count, 2),
        avg_score=round(sum(node.score for node in nodes) / count, 2),
        total_credits=sum(node.credits for node in nodes),
        credits_threshold=credit_stats.threshold80,
        elite_nodes=sum(1 for node in nodes if node.uptime >= ELITE_UPTIME_PERCENT),
        timestamp=timestamp,
    )


@dataclass(frozen=True)
class IssuePolicy:
    low_uptime_percent: float = 95.0
    high_latency_ms: float = 1000.0
    storage_full_percent: float = 90.0
    stale_after_seconds: int = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> "IssuePolicy":
        return cls(
            low_uptime_percent=settings.issue_low_uptime_percent,
            high_latency_ms=settings.issue_high_latency_ms,
            storage_full_percent=settings.issue_storage_full_percent,
            stale_after_seconds=settings.issue_stale_after_seconds,
        )


def _issue(
    node: Node,
    kind: str,
    severity: IssueSeverity,
    message: str,
    timestamp: str,
    value: Optional[float] = None,
    threshold: Optional[float] = None,
) -> NodeIssue:
    return NodeIssue(
        id=f"{node.id}:{kind}",
        node_id=node.id,
        type=kind,
        severity=severity,
        message=message,
        timestamp=timestamp,
        value=value,
        threshold=threshold,
    )


def detect_issues(nodes: Sequence[Node], *, now: datetime, policy: IssuePolicy) -> List[NodeIssue]:
    timestamp = now.isoformat()
    issues: List[NodeIssue] = []
    for node in nodes:
        if node.status == "offline":
            issues.append(_issue(node, "offline", "high", f"Node {node.short_id} is offline", timestamp))
            continue

        age = now.timestamp() - node.last_seen_timestamp
        if node.last_seen_timestamp > 0 and age > policy.stale_after_seconds:
            issues.append(
                _issue(
                    node,
                    "stale",
                    "low",
                    f"Last seen {int(age)}s ago",
                    timestamp,
                    value=float(int(age)),
                    threshold=float(policy.stale_after_seconds),
                )
            )

        if node.uptime < policy.low_uptime_percent:
            severity: IssueSeverity = "high" if node.uptime < 50 else "medium" if node.uptime < 80 else "low"
            issues.append(
                _issue(
                    node,
                    "low_uptime",
                    severity,
                    f"Uptime {node.uptime:.1f}% is below {policy.low_uptime_percent:g}%",
                    timestamp,
                    value=node.uptime,
                    threshold=policy.low_uptime_percent,
                )
            )

        if node.response_time > policy.high_latency_ms:
            severity = "high" if node.response_time > policy.high_latency_ms * 3 else "medium"
            issues.append(
                _issue(
                    node,
                    "high_latency",
                    severity,
                    f"Response time {node.response_time:.0f}ms exceeds {policy.high_latency_ms:g}ms",
                    timestamp,
                    value=node.response_time,
                    threshold=policy.high_latency_ms,
                )
            )

        usage = node.storage.usage_percent
        if node.storage.total > 0 and usage >= policy.storage_full_percent:
            severity = "high" if usage >= 98 else "medium"
            issues.append(
                _issue(
                    node,
                    "storage_full",
                    severity,
                    f"Storage {usage:.1f}% full",
                    timestamp,
                    value=round(usage, 2),
                    threshold=policy.storage_full_percent,
                )
            )

    issues.sort(key=lambda issue: _SEVERITY_ORDER[issue.severity])
    return issues


def index_by_id(nodes: Sequence[Node]) -> Dict[str, Node]:
    return {node.id: node for node in nodes}
