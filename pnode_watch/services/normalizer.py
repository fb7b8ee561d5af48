from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from pnode_watch.config import Settings
from pnode_watch.logger import get_logger
from pnode_watch.schemas.nodes import Node, NodeNetwork, NodeStatus, NodeStorage, RawPod

_logger = get_logger("services.normalizer")

SHORT_ID_LENGTH = 8

# Per-node storage cap (1 PiB); keeps network sums inside a signed BIGINT.
MAX_STORAGE_BYTES = 2**50


@dataclass(frozen=True)
class StatusPolicy:
    offline_after_seconds: int = 300
    degraded_uptime_percent: float = 50.0
    degraded_min_free_percent: float = 5.0
    uptime_window_seconds: int = 86400

    @classmethod
    def from_settings(cls, settings: Settings) -> "StatusPolicy":
        return cls(
            offline_after_seconds=settings.status_offline_after_seconds,
            degraded_uptime_percent=settings.status_degraded_uptime_percent,
            degraded_min_free_percent=settings.status_degraded_min_free_percent,
            uptime_window_seconds=settings.uptime_window_seconds,
        )


def _finite(value: Optional[float]) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return max(0.0, value)


def _clamp_bytes(value: Optional[float]) -> float:
    return min(_finite(value), float(MAX_STORAGE_BYTES))


def _iso_timestamp(seconds: float) -> Optional[str]:
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def split_address(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        return (address or "unknown"), 0
    try:
        return (host or "unknown"), int(port)
    except ValueError:
        return (host or "unknown"), 0


def node_id_for(raw: RawPod) -> str:
    pubkey = (raw.pubkey or "").strip()
    if pubkey:
        return pubkey
    return raw.address.strip() or "unknown"


def storage_usage_percent(used: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return used / total * 100


def uptime_percent(uptime_seconds: float, window_seconds: int) -> float:
    if window_seconds <= 0:
        return 0.0
    return min(100.0, _finite(uptime_seconds) / window_seconds * 100)


def classify_status(
    *,
    reachable: bool,
    last_seen_timestamp: float,
    uptime: float,
    usage_percent: float,
    storage_total: float,
    now: datetime,
    policy: StatusPolicy,
) -> NodeStatus:
    if not reachable:
        return "offline"
    age_seconds = now.timestamp() - last_seen_timestamp
    if last_seen_timestamp <= 0 or age_seconds > policy.offline_after_seconds:
        return "offline"
    if uptime < policy.degraded_uptime_percent:
        return "degraded"
    if storage_total > 0 and 100 - usage_percent < policy.degraded_min_free_percent:
        return "degraded"
    return "online"


def normalize_pod(
    raw: RawPod,
    response_time_ms: float,
    *,
    now: datetime,
    policy: StatusPolicy,
    reachable: bool = True,
) -> Node:
    node_id = node_id_for(raw)
    ip_address, port = split_address(raw.address)
    total = _clamp_bytes(raw.storage_committed)
    used = _clamp_bytes(raw.storage_used)
    usage = storage_usage_percent(used, total)
    uptime_seconds = _finite(raw.uptime)
    uptime = uptime_percent(uptime_seconds, policy.uptime_window_seconds)
    last_seen_ts = _finite(raw.last_seen_timestamp)
    last_seen = _iso_timestamp(last_seen_ts)
    if last_seen is None:
        last_seen_ts = 0.0
    status = classify_status(
        reachable=reachable,
        last_seen_timestamp=last_seen_ts,
        uptime=uptime,
        usage_percent=usage,
        storage_total=total,
        now=now,
        policy=policy,
    )
    return Node(
        id=node_id,
        short_id=node_id[:SHORT_ID_LENGTH],
        public_key=(raw.pubkey or None),
        status=status,
        uptime=round(uptime, 2),
        uptime_seconds=int(uptime_seconds),
        response_time=round(_finite(response_time_ms), 1),
        storage=NodeStorage(total=int(total), used=int(used), usage_percent=usage),
        last_seen=last_seen,
        last_seen_timestamp=int(last_seen_ts),
        version=(raw.version or "").strip() or "unknown",
        is_public=bool(raw.is_public),
        network=NodeNetwork(ip_address=ip_address, port=port, rpc_port=raw.rpc_port or 0),
    )


def normalize_pods(
    pods: Iterable[object],
    response_time_ms: float,
    *,
    now: datetime,
    policy: StatusPolicy,
) -> List[Node]:
    nodes: List[Node] = []
    seen: set[str] = set()
    skipped = 0
    for item in pods:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            raw = RawPod.model_validate(item)
            node = normalize_pod(raw, response_time_ms, now=now, policy=policy)
        except (ValueError, TypeError, OverflowError) as exc:
            skipped += 1
            _logger.debug("normalize.bad_pod", "Dropped unparseable pod record", error=str(exc))
            continue
        if node.id in seen:
            skipped += 1
            continue
        seen.add(node.id)
        nodes.append(node)
    if skipped:
        _logger.warning(
            "normalize.skipped",
            "Skipped malformed or duplicate pod records",
            skipped=skipped,
            kept=len(nodes),
        )
    return nodes
