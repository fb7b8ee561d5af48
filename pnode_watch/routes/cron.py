from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from pnode_watch.config import Settings, get_settings
from pnode_watch.dependencies import get_auto_snapshot, get_snapshot_job
from pnode_watch.logger import get_logger
from pnode_watch.schemas.history import AutoSnapshotRunOut, AutoSnapshotStatusOut, SnapshotJobOut
from pnode_watch.services.auto_snapshot import AutoSnapshotTrigger
from pnode_watch.services.snapshots import SnapshotJob, job_result_out

router = APIRouter(prefix="/api", tags=["snapshots"])
_logger = get_logger("api.cron")


def _presented_secret(key: Optional[str], authorization: Optional[str]) -> str:
    if key:
        return key
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return ""


def require_cron_secret(
    key: Optional[str] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.cron_secret:
        return
    presented = _presented_secret(key, authorization)
    if not hmac.compare_digest(presented.encode("utf-8"), settings.cron_secret.encode("utf-8")):
        _logger.warning("cron.unauthorized", "Rejected snapshot trigger with a bad secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _run_snapshot(job: SnapshotJob, force: bool) -> SnapshotJobOut:
    result = await job.run(trigger="cron", force=force)
    if result.status == "failed":
        raise HTTPException(status_code=502, detail=result.reason or "Snapshot failed")
    return job_result_out(result)


@router.get("/cron/snapshot", response_model=SnapshotJobOut, dependencies=[Depends(require_cron_secret)])
async def cron_snapshot_get(
    force: bool = Query(default=False),
    job: SnapshotJob = Depends(get_snapshot_job),
) -> SnapshotJobOut:
    return await _run_snapshot(job, force)


@router.post("/cron/snapshot", response_model=SnapshotJobOut, dependencies=[Depends(require_cron_secret)])
async def cron_snapshot_post(
    force: bool = Query(default=False),
    job: SnapshotJob = Depends(get_snapshot_job),
) -> SnapshotJobOut:
    return await _run_snapshot(job, force)


@router.get("/auto-snapshot", response_model=AutoSnapshotStatusOut)
async def auto_snapshot_status(trigger: AutoSnapshotTrigger = Depends(get_auto_snapshot)) -> AutoSnapshotStatusOut:
    return await trigger.status()


@router.post("/auto-snapshot", response_model=AutoSnapshotRunOut)
async def auto_snapshot_check(trigger: AutoSnapshotTrigger = Depends(get_auto_snapshot)) -> AutoSnapshotRunOut:
    return await trigger.check_and_trigger()
