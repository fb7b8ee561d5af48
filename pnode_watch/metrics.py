from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_REQ_COUNT = Counter(
    "pnodewatch_http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
_REQ_LATENCY = Histogram(
    "pnodewatch_http_request_duration_seconds",
    "HTTP request latency seconds",
    labelnames=("method", "path"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0),
)
_SEED_POLLS = Counter(
    "pnodewatch_seed_polls_total",
    "JSON-RPC calls made to seed nodes",
    labelnames=("method", "result"),
)
_SNAPSHOT_RUNS = Counter(
    "pnodewatch_snapshot_runs_total",
    "Snapshot job runs",
    labelnames=("trigger", "result"),
)
_ALERTS_SENT = Counter(
    "pnodewatch_alerts_total",
    "Alert notifications by delivery result",
    labelnames=("alert_type", "result"),
)


def observe_http_request(*, method: str, path: str, status: int, duration_seconds: float) -> None:
    _REQ_COUNT.labels(method=method, path=path, status=str(status)).inc()
    _REQ_LATENCY.labels(method=method, path=path).observe(duration_seconds)


def record_seed_poll(*, method: str, ok: bool) -> None:
    _SEED_POLLS.labels(method=method, result="ok" if ok else "error").inc()


def record_snapshot_run(*, trigger: str, result: str) -> None:
    _SNAPSHOT_RUNS.labels(trigger=trigger, result=result).inc()


def record_alert(*, alert_type: str, result: str) -> None:
    _ALERTS_SENT.labels(alert_type=alert_type, result=result).inc()


def render_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
