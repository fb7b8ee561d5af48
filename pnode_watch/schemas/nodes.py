from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

NodeStatus = Literal["online", "degraded", "offline"]
VersionStatus = Literal["current", "outdated", "unknown"]
VersionType = Literal["mainnet", "trynet", "devnet", "unknown"]
UptimeBadge = Literal["elite", "reliable", "average", "unreliable"]
IssueType = Literal["low_uptime", "high_latency", "storage_full", "offline", "stale"]
IssueSeverity = Literal["low", "medium", "high"]


class RawPod(BaseModel):
    """One entry of a seed's ``get-pods-with-stats`` result."""

    model_config = ConfigDict(extra="ignore")

    address: str = ""
    pubkey: Optional[str] = None
    version: Optional[str] = None
    last_seen_timestamp: Optional[float] = None
    is_public: Optional[bool] = None
    rpc_port: Optional[int] = None
    storage_committed: Optional[float] = None
    storage_used: Optional[float] = None
    storage_usage_percent: Optional[float] = None
    uptime: Optional[float] = None

    @field_validator(
        "last_seen_timestamp",
        "storage_committed",
        "storage_used",
        "storage_usage_percent",
        "uptime",
        mode="before",
    )
    @classmethod
    def _coerce_number(cls, value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @field_validator("rpc_port", mode="before")
    @classmethod
    def _coerce_port(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @field_validator("address", mode="before")
    @classmethod
    def _coerce_address(cls, value: Any) -> str:
        return str(value) if value is not None else ""

    @field_validator("pubkey", "version", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator("is_public", mode="before")
    @classmethod
    def _coerce_public(cls, value: Any) -> Optional[bool]:
        return value if isinstance(value, bool) else None


class NodeStorage(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    used: int = 0
    usage_percent: float = 0.0


class NodeNetwork(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip_address: str = "unknown"
    port: int = 0
    rpc_port: int = 0


class NodeLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str
    country_code: str
    region: str = ""
    city: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    short_id: str
    public_key: Optional[str] = None
    status: NodeStatus
    uptime: float = 0.0
    uptime_seconds: int = 0
    response_time: float = 0.0
    health_score: int = 0
    storage: NodeStorage = Field(default_factory=NodeStorage)
    location: Optional[NodeLocation] = None
    last_seen: Optional[str] = None
    last_seen_timestamp: int = 0
    version: str = "unknown"
    is_public: bool = False
    network: NodeNetwork = Field(default_factory=NodeNetwork)
    credits: float = 0.0
    score: float = 0.0
    version_status: VersionStatus = "unknown"
    version_type: VersionType = "unknown"
    uptime_badge: UptimeBadge = "unreliable"


class NodeIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    node_id: str
    type: IssueType
    severity: IssueSeverity
    message: str
    timestamp: str
    value: Optional[float] = None
    threshold: Optional[float] = None


class NetworkStats(BaseModel):
    total_nodes: int = 0
    online_nodes: int = 0
    offline_nodes: int = 0
    degraded_nodes: int = 0
    avg_uptime: float = 0.0
    avg_response_time: float = 0.0
    total_storage: int = 0
    used_storage: int = 0
    storage_utilization: float = 0.0
    public_nodes: int = 0
    private_nodes: int = 0
    version_distribution: Dict[str, int] = Field(default_factory=dict)
    health_score: int = 0
    health_label: str = "poor"
    avg_health_score: float = 0.0
    avg_credits: float = 0.0
    avg_score: float = 0.0
    total_credits: float = 0.0
    credits_threshold: float = 0.0
    elite_nodes: int = 0
    timestamp: str


class NodeListOut(BaseModel):
    nodes: List[Node]
    total: int
    stale: bool = False
    seed: Optional[str] = None
    response_time_ms: float = 0.0
    timestamp: str


class RpcRequest(BaseModel):
    method: str = "get-pods-with-stats"


class RpcResponse(BaseModel):
    success: bool = True
    data: Any = None
    response_time_ms: float
    seed: str


class NodeStatsRequest(BaseModel):
    ip: str
    port: Optional[int] = None


class NodeStatsOut(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    unreachable: bool = False
    error: Optional[str] = None
    response_time_ms: Optional[float] = None
