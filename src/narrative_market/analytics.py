"""Market analytics over the staking activity ledger.

Every figure is recomputed from a single ledger snapshot taken at the start
of the call, so repeated calls against an unchanged ledger (and the same
``now``) return identical results. Nothing here raises on ledger content:
a narrative with no activity simply scores zero.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from narrative_market.ledger import (
    ActivityLedger,
    count_stakers,
    in_window,
)
from narrative_market.models import (
    STAKE,
    ActivityRecord,
    MarketMetrics,
    MarketSentiment,
    NarrativeMetric,
    ScoringConfig,
    TrendingData,
)

Records = Sequence[ActivityRecord]


class MarketAnalyticsEngine:
    """Trending, momentum and market-wide metrics for staked narratives."""

    def __init__(self, ledger: ActivityLedger, scoring: ScoringConfig | None = None):
        self.ledger = ledger
        self.scoring = scoring or ScoringConfig()

    def _begin(self, now: datetime | None) -> tuple[Records, datetime]:
        return self.ledger.snapshot(), now or self.ledger.clock()

    # -------------------------------------------------------------------------
    # Per-narrative primitives (operate on a snapshot)
    # -------------------------------------------------------------------------

    @staticmethod
    def _for_narrative(records: Records, narrative_id: int) -> list[ActivityRecord]:
        return [r for r in records if r.narrative_id == narrative_id]

    def _velocity(
        self, records: Records, narrative_id: int, hours_back: float, now: datetime
    ) -> float:
        # Stakes and unstakes both count as activity volume
        window = in_window(self._for_narrative(records, narrative_id), hours_back, now)
        return sum(r.amount for r in window)

    def _momentum(self, records: Records, narrative_id: int, now: datetime) -> float:
        short = self.scoring.momentum_window_hours
        long = self.scoring.velocity_window_hours
        recent = self._velocity(records, narrative_id, short, now)
        baseline = self._velocity(records, narrative_id, long, now)
        if baseline == 0:
            return 0.0
        # Scale the short window up to the long window's time base
        return recent * (long / short) / baseline

    def _percentage_change(
        self, records: Records, narrative_id: int, hours_back: float, now: datetime
    ) -> float:
        cutoff = now - timedelta(hours=hours_back)
        before = 0.0
        after = 0.0
        for r in self._for_narrative(records, narrative_id):
            signed = r.amount if r.action == STAKE else -r.amount
            if r.timestamp < cutoff:
                before += signed
            else:
                after += signed

        if before == 0:
            return 100.0 if after > 0 else 0.0
        return (after - before) / before * 100

    def _recency(self, created_at: datetime, now: datetime) -> float:
        hours_old = (now - created_at).total_seconds() / 3600
        return max(0.0, self.scoring.recency_horizon_hours - hours_old)

    def _diversity(self, unique_stakers: int) -> float:
        return min(
            self.scoring.diversity_cap,
            unique_stakers * self.scoring.diversity_per_staker,
        )

    def _fold(self, history: list[ActivityRecord]) -> tuple[float, int, datetime]:
        """Running total (unstakes clamped at zero), staker count, first seen."""
        total = 0.0
        for r in history:
            if r.action == STAKE:
                total += r.amount
            else:
                # Over-unstakes drain to zero and the excess is discarded
                total = max(0.0, total - r.amount)
        return total, count_stakers(history), history[0].timestamp

    def _metric(
        self, records: Records, narrative_id: int, now: datetime
    ) -> NarrativeMetric | None:
        history = self._for_narrative(records, narrative_id)
        if not history:
            return None

        total, unique, created_at = self._fold(history)
        s = self.scoring
        velocity = self._velocity(records, narrative_id, s.velocity_window_hours, now)
        momentum = self._momentum(records, narrative_id, now)
        score = (
            velocity * s.velocity_weight
            + momentum * s.momentum_weight
            + self._recency(created_at, now) * s.recency_weight
            + self._diversity(unique) * s.diversity_weight
        )
        return NarrativeMetric(
            narrative_id=narrative_id,
            total_staked=total,
            unique_stakers=unique,
            staking_velocity=velocity,
            trending_score=score,
            created_at=created_at,
        )

    def _metrics(self, records: Records, now: datetime) -> list[NarrativeMetric]:
        ids = dict.fromkeys(r.narrative_id for r in records)
        return [self._metric(records, nid, now) for nid in ids]

    # -------------------------------------------------------------------------
    # Public per-narrative API
    # -------------------------------------------------------------------------

    def staking_velocity(
        self, narrative_id: int, hours_back: float = 24, now: datetime | None = None
    ) -> float:
        """Stake plus unstake volume for a narrative in the trailing window."""
        records, now = self._begin(now)
        return self._velocity(records, narrative_id, hours_back, now)

    def momentum(self, narrative_id: int, now: datetime | None = None) -> float:
        """Short-window velocity against the 24h velocity, on a 24h time base.

        1.0 means the last 4 hours ran at the day's average rate. Zero when
        there was no activity in the last 24 hours.
        """
        records, now = self._begin(now)
        return self._momentum(records, narrative_id, now)

    def percentage_change(
        self, narrative_id: int, hours_back: float = 24, now: datetime | None = None
    ) -> float:
        """Change in net stake after the cutoff relative to before it.

        From a zero baseline any positive net stake counts as +100%, and no
        net stake counts as flat.
        """
        records, now = self._begin(now)
        return self._percentage_change(records, narrative_id, hours_back, now)

    def recency_score(self, created_at: datetime, now: datetime | None = None) -> float:
        """Linear decay from 100 at creation to 0 at 100 hours old."""
        return self._recency(created_at, now or self.ledger.clock())

    def staking_diversity(self, narrative_id: int) -> float:
        """Two points per unique staker, capped at 100."""
        history = self._for_narrative(self.ledger.snapshot(), narrative_id)
        return self._diversity(count_stakers(history))

    def trending_score(self, narrative_id: int, now: datetime | None = None) -> float:
        """Weighted sum of velocity, momentum, recency and diversity."""
        records, now = self._begin(now)
        metric = self._metric(records, narrative_id, now)
        return metric.trending_score if metric else 0.0

    def narrative_metric(
        self, narrative_id: int, now: datetime | None = None
    ) -> NarrativeMetric | None:
        """Aggregates for one narrative, or None if it has no activity."""
        records, now = self._begin(now)
        return self._metric(records, narrative_id, now)

    def narrative_metrics(self, now: datetime | None = None) -> list[NarrativeMetric]:
        """Aggregates for every narrative with activity, in first-seen order."""
        records, now = self._begin(now)
        return self._metrics(records, now)

    def narrative_activity(
        self, narrative_id: int, hours_back: float = 168, now: datetime | None = None
    ) -> list[ActivityRecord]:
        """Activity timeline for a narrative, newest first."""
        return self.ledger.query(narrative_id, hours_back, now)

    # -------------------------------------------------------------------------
    # Market-wide API
    # -------------------------------------------------------------------------

    def trending_narratives(
        self, limit: int = 20, now: datetime | None = None
    ) -> list[TrendingData]:
        """Narratives ranked by momentum, highest first."""
        records, now = self._begin(now)
        trending = [
            TrendingData(
                metric=metric,
                momentum=self._momentum(records, metric.narrative_id, now),
                percentage_change=self._percentage_change(
                    records, metric.narrative_id, 24, now
                ),
            )
            for metric in self._metrics(records, now)
        ]
        trending.sort(key=lambda t: t.momentum, reverse=True)
        return trending[: max(0, limit)]

    def market_sentiment(self, now: datetime | None = None) -> MarketSentiment:
        """Classify each narrative by its 24h change and take a majority vote."""
        records, now = self._begin(now)
        bullish = bearish = neutral = 0
        for nid in dict.fromkeys(r.narrative_id for r in records):
            change = self._percentage_change(records, nid, 24, now)
            if change > self.scoring.bullish_threshold:
                bullish += 1
            elif change < self.scoring.bearish_threshold:
                bearish += 1
            else:
                neutral += 1

        if bullish > bearish:
            overall = "bullish" if bullish > neutral else "neutral"
        else:
            overall = "bearish" if bearish > neutral else "neutral"

        return MarketSentiment(
            bullish=bullish, bearish=bearish, neutral=neutral, overall=overall
        )

    def _price_change_24h(self, recent: Records) -> float:
        stakes = sum(1 for r in recent if r.action == STAKE)
        unstakes = len(recent) - stakes
        return (stakes - unstakes) / max(1, len(recent)) * 10

    def price_change_24h(self, now: datetime | None = None) -> float:
        """Net stake-vs-unstake pressure over 24h, scaled to +/-10."""
        records, now = self._begin(now)
        return self._price_change_24h(in_window(records, 24, now))

    def market_metrics(self, now: datetime | None = None) -> MarketMetrics:
        """TVL, active stakers, volume and the top narratives by stake."""
        records, now = self._begin(now)
        metrics = self._metrics(records, now)
        recent = in_window(records, 24, now)

        tvl = sum(m.total_staked for m in metrics)
        top = sorted(metrics, key=lambda m: m.total_staked, reverse=True)[:10]

        return MarketMetrics(
            total_value_locked=tvl,
            total_narratives=len(metrics),
            active_stakers=count_stakers(recent),
            average_stake_size=tvl / len(metrics) if metrics else 0.0,
            top_narratives_by_stake=top,
            staking_volume_24h=sum(r.amount for r in recent if r.action == STAKE),
            price_change_24h=self._price_change_24h(recent),
        )

