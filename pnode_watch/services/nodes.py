from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from pnode_watch.cache import TTLCache
from pnode_watch.clock import Now, utcnow
from pnode_watch.config import Settings
from pnode_watch.errors import PollError
from pnode_watch.logger import get_logger
from pnode_watch.schemas.nodes import Node
from pnode_watch.services.credits import CreditsService
from pnode_watch.services.network import enrich_nodes
from pnode_watch.services.normalizer import StatusPolicy, normalize_pods
from pnode_watch.services.poller import PodPoller

_logger = get_logger("services.nodes")


@dataclass(frozen=True)
class NodeCollection:
    nodes: List[Node]
    seed: str
    response_time_ms: float
    fetched_at: datetime
    stale: bool = False


async def collect_nodes(
    poller: PodPoller,
    credits_service: CreditsService,
    *,
    policy: StatusPolicy,
    now: datetime,
) -> NodeCollection:
    """One poll cycle: race the seeds, normalize pods, attach credits and scores."""
    pods, rpc = await poller.fetch_pods()
    nodes = normalize_pods(pods, rpc.response_time_ms, now=now, policy=policy)
    credits = await credits_service.get_credits()
    enriched = enrich_nodes(nodes, credits.credits)
    return NodeCollection(
        nodes=enriched,
        seed=rpc.seed,
        response_time_ms=rpc.response_time_ms,
        fetched_at=now,
    )


class NodeStore:
    """Holds the last good node collection and refreshes it on a TTL."""

    def __init__(
        self,
        poller: PodPoller,
        credits_service: CreditsService,
        cache: TTLCache[NodeCollection],
        *,
        policy: StatusPolicy,
        now: Now = utcnow,
    ) -> None:
        self._poller = poller
        self._credits = credits_service
        self._cache = cache
        self._policy = policy
        self._now = now
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        poller: PodPoller,
        credits_service: CreditsService,
    ) -> "NodeStore":
        return cls(
            poller,
            credits_service,
            TTLCache(settings.node_cache_ttl_seconds),
            policy=StatusPolicy.from_settings(settings),
        )

    @property
    def poller(self) -> PodPoller:
        return self._poller

    @property
    def credits_service(self) -> CreditsService:
        return self._credits

    @property
    def policy(self) -> StatusPolicy:
        return self._policy

    async def get_collection(self, *, force: bool = False) -> NodeCollection:
        cached = None if force else self._cache.get()
        if cached is not None:
            return cached

        async with self._lock:
            cached = None if force else self._cache.get()
            if cached is not None:
                return cached
            try:
                collection = await collect_nodes(
                    self._poller,
                    self._credits,
                    policy=self._policy,
                    now=self._now(),
                )
            except PollError as exc:
                previous = self._cache.get_stale()
                if previous is None:
                    raise
                _logger.warning(
                    "nodes.refresh_failed",
                    "Node refresh failed, serving last good collection",
                    error=str(exc),
                    age_seconds=round(self._cache.age_seconds() or 0.0, 1),
                )
                return replace(previous, stale=True)

            self._cache.set(collection)
            _logger.info(
                "nodes.refresh",
                "Refreshed node collection",
                nodes=len(collection.nodes),
                seed=collection.seed,
            )
            return collection

    async def find_node(self, node_id: str) -> Optional[Node]:
        collection = await self.get_collection()
        return find_node(collection.nodes, node_id)


def find_node(nodes: List[Node], query: str) -> Optional[Node]:
    """Exact id or public key match first, then a unique id prefix."""
    needle = query.strip()
    if not needle:
        return None
    for node in nodes:
        if node.id == needle or node.public_key == needle:
            return node
    matches = [node for node in nodes if node.id.startswith(needle)]
    if len(matches) == 1:
        return matches[0]
    return None
