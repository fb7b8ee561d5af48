from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pnode_watch.models.base import Base


class NetworkSnapshot(Base):
    __tablename__ = "snapshots"
    __table_args__ = (Index("ix_snapshots_timestamp", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_nodes: Mapped[int] = mapped_column(Integer, default=0)
    online_nodes: Mapped[int] = mapped_column(Integer, default=0)
    degraded_nodes: Mapped[int] = mapped_column(Integer, default=0)
    offline_nodes: Mapped[int] = mapped_column(Integer, default=0)
    total_storage_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    used_storage_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    avg_uptime: Mapped[float] = mapped_column(Float, default=0.0)
    avg_score: Mapped[float] = mapped_column(Float, default=0.0)
    total_credits: Mapped[float] = mapped_column(Float, default=0.0)
    avg_credits: Mapped[float] = mapped_column(Float, default=0.0)


class NodeSnapshot(Base):
    __tablename__ = "node_snapshots"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "node_id", name="uq_node_snapshots_snapshot_node"),
        Index("ix_node_snapshots_node_id", "node_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False
    )
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    public_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    uptime_percent: Mapped[float] = mapped_column(Float, default=0.0)
    storage_usage_percent: Mapped[float] = mapped_column(Float, default=0.0)
    storage_total_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    score: Mapped[float] = mapped_column(Float, default=0.0)
    health_score: Mapped[int] = mapped_column(Integer, default=0)
    credits: Mapped[float] = mapped_column(Float, default=0.0)
    version: Mapped[str] = mapped_column(String(64), default="unknown")
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
