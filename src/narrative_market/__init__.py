"""Narrative Market - similarity search and trending analytics for staked narratives."""

from narrative_market.models import (
    EngineConfig,
    ScoringConfig,
    Embedding,
    ActivityRecord,
    NarrativeMetric,
    TrendingData,
    MarketMetrics,
    MarketSentiment,
    SimilarityResult,
    Narrative,
    StakePosition,
    StakingRewards,
)
from narrative_market.errors import InvalidInput, DimensionMismatch, ServiceUnavailable
from narrative_market.similarity import cosine_similarity, find_similar, are_similar
from narrative_market.embedding import EmbeddingProvider, HashEmbedding
from narrative_market.ledger import (
    ActivityLedger,
    InMemoryActivityStore,
    SqliteActivityStore,
)
from narrative_market.analytics import MarketAnalyticsEngine
from narrative_market.staking import StakingService
from narrative_market.engine import NarrativeMarketEngine

__version__ = "0.1.0"

__all__ = [
    "NarrativeMarketEngine",
    "EngineConfig",
    "ScoringConfig",
    "Embedding",
    "ActivityRecord",
    "NarrativeMetric",
    "TrendingData",
    "MarketMetrics",
    "MarketSentiment",
    "SimilarityResult",
    "Narrative",
    "StakePosition",
    "StakingRewards",
    "InvalidInput",
    "DimensionMismatch",
    "ServiceUnavailable",
    "cosine_similarity",
    "find_similar",
    "are_similar",
    "EmbeddingProvider",
    "HashEmbedding",
    "ActivityLedger",
    "InMemoryActivityStore",
    "SqliteActivityStore",
    "MarketAnalyticsEngine",
    "StakingService",
]
