from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from pnode_watch.schemas.nodes import Node

Tier = Literal["diamond", "platinum", "gold", "silver", "bronze"]
HealthLabel = Literal["excellent", "good", "fair", "poor"]


class ContributionComponents(BaseModel):
    model_config = ConfigDict(frozen=True)

    uptime: float
    credits: float
    storage: float
    longevity: float


class ContributionScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: float
    components: ContributionComponents
    percentile: int
    tier: Tier


class Badge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    earned: bool
    progress: float


class NetworkHealth(BaseModel):
    score: int
    label: HealthLabel
    online_percent: float
    avg_uptime: float
    elite_percent: float


class CreditStats(BaseModel):
    total: float = 0.0
    average: float = 0.0
    max: float = 0.0
    min: float = 0.0
    p95: float = 0.0
    threshold80: float = 0.0
    count: int = 0


class CreditsOut(BaseModel):
    credits: Dict[str, float]
    stats: CreditStats
    stale: bool = False
    fetched_at: Optional[str] = None


class LeaderboardEntry(BaseModel):
    rank: int
    node: Node
    contribution: ContributionScore
    badges: List[Badge]


class NodeDetailOut(BaseModel):
    node: Node
    contribution: ContributionScore
    badges: List[Badge]
    reward_eligible: bool
    credits_threshold: float


BenchmarkRating = Literal["excellent", "good", "average", "below_average"]
ComparisonWinner = Literal["a", "b", "tie"]


class BenchmarkMetrics(BaseModel):
    uptime: float
    storage: float
    credits: float
    health_score: float


class BenchmarkPercentiles(BaseModel):
    uptime: int
    storage: int
    credits: int
    health_score: int


class RankPosition(BaseModel):
    rank: int
    total: int


class BenchmarkRankings(BaseModel):
    uptime: RankPosition
    storage: RankPosition
    credits: RankPosition
    health_score: RankPosition
    overall: RankPosition


class Improvement(BaseModel):
    metric: str
    current: float
    target: float
    benefit: str
    unit: str


class NodeBenchmark(BaseModel):
    node: Node
    network_averages: BenchmarkMetrics
    percentiles: BenchmarkPercentiles
    rankings: BenchmarkRankings
    strengths: List[str]
    weaknesses: List[str]
    overall_rating: BenchmarkRating
    improvements: List[Improvement]


class MetricComparison(BaseModel):
    metric: str
    unit: str
    value_a: float
    value_b: float
    winner: ComparisonWinner
    diff: float
    diff_percent: float


class NodeComparisonOut(BaseModel):
    node_a: NodeBenchmark
    node_b: NodeBenchmark
    comparison: List[MetricComparison]
