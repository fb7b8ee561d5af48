from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request, Response

from pnode_watch.config import Settings, get_settings
from pnode_watch.dependencies import get_sessionmaker
from pnode_watch.logger import configure_logging, get_logger
from pnode_watch.metrics import observe_http_request
from pnode_watch.routes import alerts, bots, credits, cron, history, nodes, system
from pnode_watch.scheduler import SnapshotScheduler
from pnode_watch.services.alerts import AlertPolicy
from pnode_watch.services.auto_snapshot import AutoSnapshotTrigger
from pnode_watch.services.bots import BotCommands, TelegramClient
from pnode_watch.services.credits import CreditsService
from pnode_watch.services.nodes import NodeStore
from pnode_watch.services.normalizer import StatusPolicy
from pnode_watch.services.notifications import Notifier
from pnode_watch.services.poller import PodPoller
from pnode_watch.services.snapshots import SnapshotJob, SnapshotJobConfig

settings = get_settings()
configure_logging(settings.log_level, settings.log_file, log_format=settings.log_format)
logger = get_logger("api")


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the long-lived services and caches shared by request handlers."""
    credits_service = CreditsService.from_settings(settings)
    poller = PodPoller.from_settings(settings)
    node_store = NodeStore.from_settings(settings, poller, credits_service)
    notifier = Notifier.from_settings(settings)
    job = SnapshotJob(
        get_sessionmaker(settings.database_url),
        poller=poller,
        credits_service=credits_service,
        notifier=notifier,
        status_policy=StatusPolicy.from_settings(settings),
        alert_policy=AlertPolicy.from_settings(settings),
        config=SnapshotJobConfig.from_settings(settings),
    )

    app.state.credits_service = credits_service
    app.state.node_store = node_store
    app.state.notifier = notifier
    app.state.snapshot_job = job
    app.state.auto_snapshot = AutoSnapshotTrigger.from_settings(settings, job)
    app.state.scheduler = SnapshotScheduler(job, settings.snapshot_cron)
    app.state.bot_commands = BotCommands.from_settings(settings, node_store)
    app.state.telegram_client = TelegramClient.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", "Starting app", env=settings.app_env, version=settings.app_version)
    if not settings.cron_secret:
        logger.warning("security.defaults", "CRON_SECRET is not set; the snapshot trigger is unauthenticated")
    if not app.state.notifier.email_enabled:
        logger.warning("features.disabled", "BREVO_API_KEY is not set; email alerts are disabled")
    if not app.state.notifier.push_enabled:
        logger.warning("features.disabled", "VAPID keys are not set; push alerts are disabled")

    scheduler: SnapshotScheduler = app.state.scheduler
    if settings.snapshot_scheduler_enabled:
        await scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        logger.info("app.shutdown", "Shutting down app")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)
init_state(app, settings)


@app.middleware("http")
async def request_logging(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    client: Optional[str] = None
    if request.client:
        client = request.client.host

    start = perf_counter()
    with logger.context(request_id=request_id):
        logger.info(
            "request.start",
            "Started",
            method=request.method,
            path=request.url.path,
            client=client,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (perf_counter() - start) * 1000
            logger.exception(
                "request.error",
                "Failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            )
            raise

        duration = perf_counter() - start
        route = request.scope.get("route")
        observe_http_request(
            method=request.method,
            path=getattr(route, "path", "unmatched"),
            status=response.status_code,
            duration_seconds=duration,
        )
        logger.info(
            "request.complete",
            "Completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 1),
        )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(system.router)
app.include_router(nodes.router)
app.include_router(credits.router)
app.include_router(history.router)
app.include_router(alerts.router)
app.include_router(cron.router)
app.include_router(bots.router)


def run() -> None:
    uvicorn.run(app, host=settings.server_host, port=settings.server_port, log_config=None)
