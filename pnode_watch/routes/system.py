from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from pnode_watch.config import get_settings
from pnode_watch.logger import get_logger
from pnode_watch.metrics import metrics_content_type, render_metrics

router = APIRouter()
_logger = get_logger("api.system")


@router.get("/health", tags=["system"])
async def health() -> Dict[str, str]:
    now = datetime.now(timezone.utc).isoformat()
    _logger.debug("health.check", "Health check", status="ok")
    return {"status": "ok", "time": now}


@router.get("/version", tags=["system"])
async def version() -> Dict[str, str]:
    settings = get_settings()
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "env": settings.app_env,
    }


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics are disabled.")
    return Response(content=render_metrics(), media_type=metrics_content_type())
