from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pnode_watch.models.base import Base, TimestampMixin


class AlertSubscription(TimestampMixin, Base):
    __tablename__ = "alert_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True, index=True)
    push_endpoint: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    push_p256dh: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    push_auth: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    node_ids: Mapped[List[str]] = mapped_column(JSON, default=list)

    alert_offline: Mapped[bool] = mapped_column(Boolean, default=True)
    alert_online: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_score_drop: Mapped[bool] = mapped_column(Boolean, default=True)
    alert_score_rise: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_uptime_drop: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_uptime_rise: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_version_change: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_storage_change: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_public_status_change: Mapped[bool] = mapped_column(Boolean, default=False)

    score_drop_threshold: Mapped[float] = mapped_column(Float, default=70.0)
    score_rise_threshold: Mapped[float] = mapped_column(Float, default=80.0)
    uptime_drop_threshold: Mapped[float] = mapped_column(Float, default=95.0)
    uptime_rise_threshold: Mapped[float] = mapped_column(Float, default=99.0)

    verified: Mapped[bool] = mapped_column(Boolean, default=False)


class VerificationToken(TimestampMixin, Base):
    __tablename__ = "verification_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("alert_subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
