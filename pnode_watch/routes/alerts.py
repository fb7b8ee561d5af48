from __future__ import annotations

from html import escape

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pnode_watch.clock import utcnow
from pnode_watch.config import Settings, get_settings
from pnode_watch.dependencies import get_db_session, get_notifier
from pnode_watch.errors import FeatureDisabledError, NotFoundError, SubscriptionError, UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.schemas.alerts import (
    ActionOut,
    AlertActionIn,
    AlertListOut,
    SubscribeOut,
    SubscriptionCreate,
    SubscriptionOut,
    UnsubscribeIn,
    UserAlertOut,
    VapidKeyOut,
)
from pnode_watch.services import subscriptions as subscription_service
from pnode_watch.services.notifications import Notifier

router = APIRouter(prefix="/api/alerts", tags=["alerts"])
_logger = get_logger("api.alerts")


def _page(title: str, body: str, *, status_code: int = 200) -> HTMLResponse:
    html = (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{escape(title)} - pNode Watch</title></head>"
        f"<body style='font-family:sans-serif;max-width:32rem;margin:4rem auto'>"
        f"<h1>{escape(title)}</h1><p>{escape(body)}</p><p><a href='/'>Back to dashboard</a></p>"
        "</body></html>"
    )
    return HTMLResponse(content=html, status_code=status_code)


@router.get("/vapid-public-key", response_model=VapidKeyOut)
async def vapid_public_key(notifier: Notifier = Depends(get_notifier)) -> VapidKeyOut:
    if not notifier.push_enabled or not notifier.vapid_public_key:
        raise HTTPException(status_code=503, detail="Push notifications are not configured")
    return VapidKeyOut(public_key=notifier.vapid_public_key)


@router.post("/subscribe", response_model=SubscribeOut, status_code=status.HTTP_201_CREATED)
async def subscribe(
    payload: SubscriptionCreate,
    session: AsyncSession = Depends(get_db_session),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> SubscribeOut:
    try:
        result = await subscription_service.create_subscription(
            session,
            payload,
            notifier=notifier,
            base_url=settings.public_base_url,
            now=utcnow(),
            token_ttl_hours=settings.verification_token_ttl_hours,
        )
    except SubscriptionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FeatureDisabledError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    subscription = result.subscription
    if result.verification_sent:
        message = "Check your email to verify your subscription."
    else:
        message = "Browser notifications are active."
    return SubscribeOut(subscription_id=subscription.id, verified=subscription.verified, message=message)


@router.get("/verify", response_class=HTMLResponse)
async def verify(
    token: str = Query(default=""),
    session: AsyncSession = Depends(get_db_session),
) -> HTMLResponse:
    if not token:
        return _page("Verification failed", "The verification link is missing its token.", status_code=400)
    try:
        subscription = await subscription_service.verify_token(session, token, now=utcnow())
    except NotFoundError as exc:
        return _page("Verification failed", str(exc), status_code=400)
    count = len(subscription.node_ids or [])
    return _page("Subscription verified", f"You will now receive alerts for {count} node(s).")


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionOut)
async def get_subscription(
    subscription_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> SubscriptionOut:
    subscription = await subscription_service.get_subscription(session, subscription_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return SubscriptionOut(
        id=subscription.id,
        email=subscription.email,
        node_ids=list(subscription.node_ids or []),
        verified=subscription.verified,
        has_push=bool(subscription.push_endpoint),
        created_at=subscription.created_at,
    )


@router.get("/unsubscribe", response_class=HTMLResponse)
async def unsubscribe_link(
    subscription_id: int = Query(alias="id"),
    session: AsyncSession = Depends(get_db_session),
) -> HTMLResponse:
    if not await subscription_service.delete_subscription(session, subscription_id):
        return _page("Not found", "This subscription no longer exists.", status_code=404)
    return _page("Unsubscribed", "You will no longer receive alerts for this subscription.")


@router.post("/unsubscribe", response_model=ActionOut)
async def unsubscribe(
    payload: UnsubscribeIn,
    session: AsyncSession = Depends(get_db_session),
) -> ActionOut:
    if not await subscription_service.delete_subscription(session, payload.subscription_id):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return ActionOut(affected=1)


@router.get("/list", response_model=AlertListOut)
async def list_alerts(
    email: str = Query(default=""),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db_session),
) -> AlertListOut:
    if not subscription_service.has_valid_email(email):
        raise HTTPException(status_code=400, detail="Email is required")
    try:
        alerts, unread = await subscription_service.list_user_alerts(session, email, limit=limit)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return AlertListOut(
        alerts=[UserAlertOut.model_validate(alert) for alert in alerts],
        unread_count=unread,
        total=len(alerts),
    )


@router.post("/list", response_model=ActionOut)
async def alert_action(
    payload: AlertActionIn,
    session: AsyncSession = Depends(get_db_session),
) -> ActionOut:
    if not subscription_service.has_valid_email(payload.email):
        raise HTTPException(status_code=400, detail="Email is required")
    if payload.action != "mark_all_read" and payload.alert_id is None:
        raise HTTPException(status_code=400, detail="alert_id is required for this action")
    try:
        if payload.action == "mark_read":
            affected = await subscription_service.mark_alert_read(session, payload.email, payload.alert_id)
        elif payload.action == "mark_all_read":
            affected = await subscription_service.mark_all_read(session, payload.email)
        else:
            affected = await subscription_service.delete_user_alert(session, payload.email, payload.alert_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    _logger.info("alerts.action", "Applied inbox action", action=payload.action, affected=affected)
    return ActionOut(affected=affected)
