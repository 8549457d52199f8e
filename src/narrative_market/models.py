"""Data models for Narrative Market."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

STAKE = "stake"
UNSTAKE = "unstake"
ACTIONS = (STAKE, UNSTAKE)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class ScoringConfig:
    """Policy constants for trending and sentiment scoring."""

    velocity_weight: float = 0.3
    momentum_weight: float = 0.3
    recency_weight: float = 0.2
    diversity_weight: float = 0.2
    bullish_threshold: float = 5.0  # percent change over 24h
    bearish_threshold: float = -5.0
    momentum_window_hours: float = 4
    velocity_window_hours: float = 24
    recency_horizon_hours: float = 100
    diversity_per_staker: float = 2
    diversity_cap: float = 100


@dataclass
class EngineConfig:
    """Configuration for NarrativeMarketEngine."""

    db_path: str
    embedding_backend: str = "hash"  # "hash" | "local" | "openai"
    embedding_model: str = "all-mpnet-base-v2"  # for local
    openai_model: str = "text-embedding-3-small"  # if backend="openai"
    vector_dimensions: int = 768
    max_text_length: int = 5000
    embedding_timeout: float = 10.0  # seconds
    scoring: ScoringConfig = field(default_factory=ScoringConfig)


@dataclass
class Embedding:
    """A unit-length vector generated for a text snapshot."""

    vector: list[float]
    model: str
    generated_at: datetime


@dataclass(frozen=True)
class ActivityRecord:
    """A single stake or unstake event. Never mutated once appended."""

    timestamp: datetime
    narrative_id: int
    staker_address: str
    amount: float
    action: str  # 'stake' | 'unstake'


@dataclass
class NarrativeMetric:
    """Per-narrative aggregates rebuilt from the activity ledger."""

    narrative_id: int
    total_staked: float
    unique_stakers: int
    staking_velocity: float
    trending_score: float
    created_at: datetime


@dataclass
class TrendingData:
    """A narrative's momentum snapshot."""

    metric: NarrativeMetric
    momentum: float
    percentage_change: float
    timeframe: str = "24h"


@dataclass
class MarketSentiment:
    """Counts of narratives per sentiment class and the overall verdict."""

    bullish: int
    bearish: int
    neutral: int
    overall: str  # 'bullish', 'bearish', 'neutral'


@dataclass
class MarketMetrics:
    """Market-wide aggregates."""

    total_value_locked: float
    total_narratives: int
    active_stakers: int
    average_stake_size: float
    top_narratives_by_stake: list[NarrativeMetric]
    staking_volume_24h: float
    price_change_24h: float


@dataclass
class SimilarityResult:
    """A candidate that passed the similarity threshold."""

    key: object
    similarity: float


@dataclass
class Narrative:
    """A narrative record held by the directory."""

    id: int
    name: str
    description: str
    content: str
    creator: str
    tags: list[str]
    modality: str
    embedding: list[float]
    embedding_model: str
    created_at: datetime
    updated_at: datetime

    @property
    def embedded_text(self) -> str:
        """Text the embedding was generated from."""
        return f"{self.name} {self.description} {self.content}"


@dataclass
class StakePosition:
    """A staker's position on one narrative."""

    narrative_id: int
    staker_address: str
    total_staked: float = 0.0
    history: list[ActivityRecord] = field(default_factory=list)
    projected_daily_rewards: float = 0.0


@dataclass
class StakingRewards:
    """Reward accrual for a position."""

    narrative_id: int
    staker_address: str
    total_earned: float = 0.0
    pending_rewards: float = 0.0
    last_claimed_at: datetime | None = None
    next_claimable_at: datetime | None = None
