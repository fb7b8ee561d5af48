from __future__ import annotations

from fastapi import APIRouter, Depends

from pnode_watch.dependencies import get_credits_service
from pnode_watch.schemas.scoring import CreditsOut
from pnode_watch.services.credits import CreditsService, calculate_credit_stats

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("", response_model=CreditsOut)
async def get_credits(service: CreditsService = Depends(get_credits_service)) -> CreditsOut:
    snapshot = await service.get_credits()
    return CreditsOut(
        credits=snapshot.credits,
        stats=calculate_credit_stats(snapshot.credits.values()),
        stale=snapshot.stale,
        fetched_at=snapshot.fetched_at.isoformat() if snapshot.fetched_at else None,
    )
