from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PushSubscriptionIn(BaseModel):
    endpoint: str = ""
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class SubscriptionCreate(BaseModel):
    email: Optional[str] = None
    push_subscription: Optional[PushSubscriptionIn] = None
    node_ids: List[str] = Field(default_factory=list)

    alert_offline: bool = True
    alert_online: bool = False
    alert_degraded: bool = False
    alert_score_drop: bool = True
    alert_score_rise: bool = False
    alert_uptime_drop: bool = False
    alert_uptime_rise: bool = False
    alert_version_change: bool = False
    alert_storage_change: bool = False
    alert_public_status_change: bool = False

    score_drop_threshold: float = 70.0
    score_rise_threshold: float = 80.0
    uptime_drop_threshold: float = 95.0
    uptime_rise_threshold: float = 99.0


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: Optional[str]
    node_ids: List[str]
    verified: bool
    has_push: bool = False
    created_at: datetime


class SubscribeOut(BaseModel):
    success: bool = True
    subscription_id: int
    verified: bool
    message: str


class UnsubscribeIn(BaseModel):
    subscription_id: int


class UserAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    node_id: str
    alert_type: str
    title: str
    message: str
    read: bool
    created_at: datetime


class AlertListOut(BaseModel):
    alerts: List[UserAlertOut]
    unread_count: int
    total: int


class AlertActionIn(BaseModel):
    action: Literal["mark_read", "mark_all_read", "delete"]
    email: str
    alert_id: Optional[int] = None


class ActionOut(BaseModel):
    success: bool = True
    affected: int = 0


class VapidKeyOut(BaseModel):
    public_key: str
