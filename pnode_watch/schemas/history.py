from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class SnapshotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    total_nodes: int
    online_nodes: int
    degraded_nodes: int
    offline_nodes: int
    total_storage_bytes: int
    used_storage_bytes: int
    avg_uptime: float
    avg_score: float
    total_credits: float
    avg_credits: float
    online_percent: float = 0.0
    storage_utilization: float = 0.0


class NetworkHistoryPoint(BaseModel):
    timestamp: datetime
    total_nodes: int
    online_nodes: int
    degraded_nodes: int
    offline_nodes: int
    online_percent: float
    total_storage_tb: float
    used_storage_tb: float
    storage_utilization: float
    avg_uptime: float
    avg_score: float
    avg_credits: float


class NetworkHistorySummary(BaseModel):
    data_points: int
    period_days: int
    first_snapshot: datetime
    last_snapshot: datetime
    avg_online_percent: float
    min_online_percent: float
    max_online_percent: float
    avg_score: float
    min_score: float
    max_score: float
    min_nodes: int
    max_nodes: int


class NetworkHistoryOut(BaseModel):
    days: int
    points: List[NetworkHistoryPoint]
    summary: Optional[NetworkHistorySummary] = None
    latest: Optional[SnapshotOut] = None


class SnapshotTrends(BaseModel):
    node_count_change: int
    online_change: int
    uptime_change: float
    score_change: float
    storage_change: int
    credits_change: float


class SnapshotHistoryOut(BaseModel):
    range: str
    days: int
    count: int
    snapshots: List[SnapshotOut]
    latest: Optional[SnapshotOut] = None
    trends: Optional[SnapshotTrends] = None


class NodeHistoryPoint(BaseModel):
    timestamp: datetime
    status: str
    uptime_percent: float
    storage_usage_percent: float
    score: float
    health_score: int
    credits: float
    version: str
    is_public: bool


class NodeHistorySummary(BaseModel):
    data_points: int
    period_days: int
    online_percent: float
    avg_uptime: float
    avg_score: float
    min_score: float
    max_score: float
    latest_version: str


class CreditsTrend(BaseModel):
    hours: int
    change: float
    percent_change: float
    trend: Literal["up", "down", "stable"]


class NodeHistoryOut(BaseModel):
    node_id: str
    days: int
    points: List[NodeHistoryPoint]
    summary: Optional[NodeHistorySummary] = None
    credits_trend: Optional[CreditsTrend] = None


class SnapshotJobOut(BaseModel):
    status: str
    trigger: str
    reason: Optional[str] = None
    snapshot_id: Optional[int] = None
    node_count: int = 0
    alerts_sent: int = 0
    alerts_suppressed: int = 0
    alert_errors: int = 0
    pruned: int = 0


class AutoSnapshotStatusOut(BaseModel):
    last_snapshot_at: Optional[datetime] = None
    last_snapshot_age_minutes: Optional[float] = None
    is_stale: bool
    is_check_in_progress: bool
    cooldown_remaining_seconds: float = 0.0


class AutoSnapshotRunOut(BaseModel):
    triggered: bool
    reason: str
    status: AutoSnapshotStatusOut
    result: Optional[SnapshotJobOut] = None


ActivityType = Literal["joined", "left", "status_change", "version_change"]


class ActivityEvent(BaseModel):
    type: ActivityType
    node_id: str
    message: str
    previous: Optional[str] = None
    current: Optional[str] = None


class ActivityOut(BaseModel):
    from_snapshot: Optional[int] = None
    to_snapshot: Optional[int] = None
    from_timestamp: Optional[datetime] = None
    to_timestamp: Optional[datetime] = None
    events: List[ActivityEvent]
    counts: Dict[str, int]
