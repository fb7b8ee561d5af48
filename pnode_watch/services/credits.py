from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional

from pnode_watch.cache import TTLCache
from pnode_watch.clock import Now, utcnow
from pnode_watch.config import Settings
from pnode_watch.errors import UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.schemas.scoring import CreditStats
from pnode_watch.transport import FetchJson, http_json

_logger = get_logger("services.credits")

REWARD_THRESHOLD_RATIO = 0.8


@dataclass(frozen=True)
class CreditsSnapshot:
    credits: Dict[str, float] = field(default_factory=dict)
    fetched_at: Optional[datetime] = None
    stale: bool = False


def calculate_credit_stats(values: Iterable[float]) -> CreditStats:
    positive = sorted(value for value in values if value > 0)
    if not positive:
        return CreditStats()
    total = sum(positive)
    maximum = positive[-1]
    p95_index = math.floor(len(positive) * 0.95)
    p95 = positive[p95_index] if p95_index < len(positive) else maximum
    return CreditStats(
        total=total,
        average=total / len(positive),
        max=maximum,
        min=positive[0],
        p95=p95,
        threshold80=p95 * REWARD_THRESHOLD_RATIO,
        count=len(positive),
    )


def is_reward_eligible(credits: float, threshold: float) -> bool:
    return credits >= threshold


def parse_credits_payload(payload: object) -> Dict[str, float]:
    if not isinstance(payload, dict) or payload.get("status") != "success":
        raise UpstreamError("Credits feed returned an unexpected payload")
    items = payload.get("pods_credits")
    if not isinstance(items, list):
        raise UpstreamError("Credits feed payload is missing pods_credits")
    credits: Dict[str, float] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        pod_id = item.get("pod_id")
        value = item.get("credits")
        if isinstance(pod_id, str) and pod_id and isinstance(value, (int, float)) and not isinstance(value, bool):
            credits[pod_id] = float(value)
    return credits


class CreditsService:
    """Credits feed client backed by an explicit TTL cache."""

    def __init__(
        self,
        url: str,
        cache: TTLCache[CreditsSnapshot],
        *,
        timeout_seconds: float = 10.0,
        fetch_json: FetchJson = http_json,
        now: Now = utcnow,
    ) -> None:
        self._url = url
        self._cache = cache
        self._timeout = timeout_seconds
        self._fetch_json = fetch_json
        self._now = now

    @classmethod
    def from_settings(cls, settings: Settings) -> "CreditsService":
        return cls(
            settings.credits_url,
            TTLCache(settings.credits_cache_ttl_seconds),
            timeout_seconds=settings.credits_timeout_seconds,
        )

    @property
    def cache(self) -> TTLCache[CreditsSnapshot]:
        return self._cache

    async def get_credits(self) -> CreditsSnapshot:
        cached = self._cache.get()
        if cached is not None:
            return cached
        if not self._url:
            return CreditsSnapshot(stale=True)

        try:
            payload = await asyncio.to_thread(
                self._fetch_json, self._url, method="GET", timeout_seconds=self._timeout
            )
            credits = parse_credits_payload(payload)
        except UpstreamError as exc:
            previous = self._cache.get_stale()
            _logger.warning(
                "credits.fetch_failed",
                "Credits feed unavailable, serving last known values",
                error=str(exc),
                cached=previous is not None,
            )
            if previous is None:
                return CreditsSnapshot(stale=True)
            return CreditsSnapshot(credits=previous.credits, fetched_at=previous.fetched_at, stale=True)

        snapshot = CreditsSnapshot(credits=credits, fetched_at=self._now())
        self._cache.set(snapshot)
        _logger.info("credits.fetch", "Fetched credits feed", pods=len(credits))
        return snapshot
