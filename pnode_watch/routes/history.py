from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pnode_watch.clock import utcnow
from pnode_watch.dependencies import get_db_session
from pnode_watch.schemas.history import ActivityOut, NetworkHistoryOut, NodeHistoryOut, SnapshotHistoryOut
from pnode_watch.services import activity as activity_service
from pnode_watch.services import history as history_service

router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("/network", response_model=NetworkHistoryOut)
async def network_history(
    days: Optional[int] = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> NetworkHistoryOut:
    return await history_service.get_network_history(session, days=days, now=utcnow())


@router.get("/snapshots", response_model=SnapshotHistoryOut)
async def snapshot_history(
    range_key: Optional[str] = Query(default=None, alias="range"),
    days: Optional[int] = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> SnapshotHistoryOut:
    return await history_service.get_snapshot_history(session, range_key=range_key, days=days, now=utcnow())


@router.get("/node/{node_id}", response_model=NodeHistoryOut)
async def node_history(
    node_id: str,
    days: Optional[int] = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> NodeHistoryOut:
    return await history_service.get_node_history(session, node_id, days=days, now=utcnow())


@router.get("/activity", response_model=ActivityOut)
async def activity(
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
) -> ActivityOut:
    return await activity_service.get_recent_activity(session, limit=limit)
