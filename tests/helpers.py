from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pnode_watch.schemas.nodes import Node, NodeNetwork, NodeStorage
from pnode_watch.services.notifications import DeliveryResult, EmailMessage, PushMessage

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_node(node_id: str, **overrides: Any) -> Node:
    storage_total = overrides.pop("storage_total", 1_000_000_000)
    storage_used = overrides.pop("storage_used", 250_000_000)
    fields: Dict[str, Any] = {
        "id": node_id,
        "short_id": node_id[:8],
        "public_key": node_id,
        "status": "online",
        "uptime": 99.0,
        "uptime_seconds": 86_400,
        "response_time": 120.0,
        "health_score": 80,
        "storage": NodeStorage(
            total=storage_total,
            used=storage_used,
            usage_percent=storage_used / storage_total * 100 if storage_total else 0.0,
        ),
        "last_seen": NOW.isoformat(),
        "last_seen_timestamp": int(NOW.timestamp()),
        "version": "0.8.0",
        "is_public": True,
        "network": NodeNetwork(ip_address="10.0.0.1", port=9001, rpc_port=6000),
        "credits": 0.0,
        "score": 75.0,
    }
    fields.update(overrides)
    return Node(**fields)


def raw_pod(pubkey: str, **overrides: Any) -> Dict[str, Any]:
    pod: Dict[str, Any] = {
        "address": "10.0.0.1:9001",
        "pubkey": pubkey,
        "version": "0.8.0",
        "last_seen_timestamp": NOW.timestamp() - 10,
        "is_public": True,
        "rpc_port": 6000,
        "storage_committed": 1_000_000_000,
        "storage_used": 100_000_000,
        "uptime": 86_400,
    }
    pod.update(overrides)
    return pod


class FakeNotifier:
    """Records outgoing messages instead of calling Brevo or Web Push."""

    def __init__(
        self,
        *,
        email_ok: bool = True,
        push_ok: bool = True,
        email_enabled: bool = True,
        vapid_public_key: str = "",
    ) -> None:
        self.email_ok = email_ok
        self.push_ok = push_ok
        self.email_enabled = email_enabled
        self.push_enabled = True
        self.vapid_public_key = vapid_public_key
        self.emails: List[EmailMessage] = []
        self.pushes: List[PushMessage] = []

    async def send_email(self, message: EmailMessage) -> DeliveryResult:
        self.emails.append(message)
        if not self.email_ok:
            return DeliveryResult(ok=False, error="smtp down")
        return DeliveryResult(ok=True)

    async def send_push(self, message: PushMessage) -> DeliveryResult:
        self.pushes.append(message)
        return DeliveryResult(ok=self.push_ok, error=None if self.push_ok else "push failed")


def rpc_fetcher(pods: List[Dict[str, Any]], *, failing: Optional[set] = None):
    """Stand-in for ``http_json`` answering get-pods-with-stats from a fixed pod list."""
    failing = failing or set()
    calls: List[str] = []

    def fetch(url: str, **kwargs: Any) -> Any:
        from pnode_watch.errors import UpstreamError

        calls.append(url)
        if any(host in url for host in failing):
            raise UpstreamError(f"connection refused: {url}")
        return {"jsonrpc": "2.0", "id": 1, "result": {"pods": pods, "total_count": len(pods)}}

    fetch.calls = calls  # type: ignore[attr-defined]
    return fetch
