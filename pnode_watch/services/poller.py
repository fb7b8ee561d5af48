from __future__ import annotations

import asyncio
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, List, Optional, Sequence, Set

from pnode_watch.config import Settings
from pnode_watch.errors import PollError, UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.metrics import record_seed_poll
from pnode_watch.transport import FetchJson, http_json

_logger = get_logger("services.poller")

PODS_METHOD = "get-pods-with-stats"
STATS_METHOD = "get-stats"


@dataclass(frozen=True)
class RpcResult:
    result: Any
    seed: str
    response_time_ms: float


@dataclass(frozen=True)
class _SeedOutcome:
    seed: str
    result: Any = None
    error: Optional[str] = None
    response_time_ms: float = 0.0


def rpc_body(method: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "id": 1}


def unwrap_rpc(payload: Any) -> Any:
    if not isinstance(payload, dict):
        raise UpstreamError("JSON-RPC response is not an object")
    rpc_error = payload.get("error")
    if rpc_error:
        if isinstance(rpc_error, dict):
            rpc_error = rpc_error.get("message") or rpc_error
        raise UpstreamError(f"JSON-RPC error: {rpc_error}")
    if "result" not in payload:
        raise UpstreamError("JSON-RPC response has no result")
    return payload["result"]


class PodPoller:
    """Races a JSON-RPC call across all seeds and keeps the first success."""

    def __init__(
        self,
        seeds: Sequence[str],
        *,
        port: int = 6000,
        path: str = "/rpc",
        timeout_seconds: float = 10.0,
        stats_timeout_seconds: float = 20.0,
        fetch_json: FetchJson = http_json,
    ) -> None:
        self._seeds = list(seeds)
        self._port = port
        self._path = path if path.startswith("/") else f"/{path}"
        self._timeout = timeout_seconds
        self._stats_timeout = stats_timeout_seconds
        self._fetch_json = fetch_json
        self._stragglers: Set[asyncio.Task[_SeedOutcome]] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PodPoller":
        return cls(
            settings.seed_ips,
            port=settings.prpc_port,
            path=settings.prpc_path,
            timeout_seconds=settings.prpc_timeout_seconds,
            stats_timeout_seconds=settings.node_stats_timeout_seconds,
        )

    @property
    def seeds(self) -> List[str]:
        return list(self._seeds)

    def _url(self, host: str, port: Optional[int] = None) -> str:
        return f"http://{host}:{port or self._port}{self._path}"

    async def _call_seed(self, seed: str, method: str) -> _SeedOutcome:
        start = perf_counter()
        try:
            payload = await asyncio.to_thread(
                self._fetch_json,
                self._url(seed),
                method="POST",
                payload=rpc_body(method),
                timeout_seconds=self._timeout,
            )
            result = unwrap_rpc(payload)
        except UpstreamError as exc:
            record_seed_poll(method=method, ok=False)
            return _SeedOutcome(seed=seed, error=f"{seed}: {exc}")
        except Exception as exc:  # noqa: BLE001
            # CancelledError is a BaseException and still propagates.
            record_seed_poll(method=method, ok=False)
            _logger.warning(
                "poll.seed_error",
                "Seed call raised unexpectedly",
                seed=seed,
                error_type=type(exc).__name__,
            )
            return _SeedOutcome(seed=seed, error=f"{seed}: {type(exc).__name__}: {exc}")
        elapsed_ms = (perf_counter() - start) * 1000
        record_seed_poll(method=method, ok=True)
        return _SeedOutcome(seed=seed, result=result, response_time_ms=round(elapsed_ms, 1))

    async def call(self, method: str) -> RpcResult:
        if not self._seeds:
            raise PollError([])

        tasks = [asyncio.create_task(self._call_seed(seed, method)) for seed in self._seeds]
        errors: List[str] = []
        winner: Optional[_SeedOutcome] = None
        for next_done in asyncio.as_completed(tasks):
            outcome = await next_done
            if outcome.error is None:
                winner = outcome
                break
            errors.append(outcome.error)

        pending = [task for task in tasks if not task.done()]
        for task in pending:
            self._stragglers.add(task)
            task.add_done_callback(self._stragglers.discard)

        if winner is None:
            _logger.error("poll.failed", "All seed nodes failed", method=method, errors=len(errors))
            raise PollError(errors)

        _logger.info(
            "poll.success",
            "Seed answered JSON-RPC call",
            method=method,
            seed=winner.seed,
            response_time_ms=winner.response_time_ms,
            failed_before=len(errors),
        )
        return RpcResult(result=winner.result, seed=winner.seed, response_time_ms=winner.response_time_ms)

    async def fetch_pods(self) -> tuple[List[Any], RpcResult]:
        rpc = await self.call(PODS_METHOD)
        pods = rpc.result.get("pods") if isinstance(rpc.result, dict) else None
        if not isinstance(pods, list):
            raise PollError([f"{rpc.seed}: result has no pods list"])
        return pods, rpc

    async def get_stats(self, host: str, port: Optional[int] = None) -> RpcResult:
        """Single-node ``get-stats`` call; raises UpstreamError when unreachable."""
        start = perf_counter()
        try:
            payload = await asyncio.to_thread(
                self._fetch_json,
                self._url(host, port),
                method="POST",
                payload=rpc_body(STATS_METHOD),
                timeout_seconds=self._stats_timeout,
            )
            result = unwrap_rpc(payload)
        except UpstreamError:
            record_seed_poll(method=STATS_METHOD, ok=False)
            raise
        record_seed_poll(method=STATS_METHOD, ok=True)
        elapsed_ms = (perf_counter() - start) * 1000
        return RpcResult(result=result, seed=host, response_time_ms=round(elapsed_ms, 1))
