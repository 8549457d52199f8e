"""Pytest fixtures for Narrative Market tests."""

from datetime import datetime, timedelta, timezone

import pytest
from narrative_market import (
    ActivityLedger,
    EngineConfig,
    MarketAnalyticsEngine,
    NarrativeMarketEngine,
    StakingService,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "c" * 40


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)


class FakeClock:
    """Settable clock shared by ledger, analytics and engine."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    """An in-memory ledger on the fake clock."""
    return ActivityLedger(clock=clock)


@pytest.fixture
def analytics(ledger):
    return MarketAnalyticsEngine(ledger)


@pytest.fixture
def staking(ledger, analytics):
    return StakingService(ledger, analytics)


@pytest.fixture
def engine(clock):
    """Create an in-memory engine for testing."""
    config = EngineConfig(db_path=":memory:", embedding_backend="hash")
    engine = NarrativeMarketEngine(config, clock=clock)
    yield engine
    engine.close()


@pytest.fixture
def seeded_engine(engine):
    """Engine with a few narratives created."""
    fraud = engine.create_narrative(
        "Corporate fraud",
        "Financial misstatements and SEC violations",
        "A mid-size firm inflates revenue for three years.",
        creator=ALICE,
        tags=["finance", "crime"],
    )
    space = engine.create_narrative(
        "Mars colony",
        "First settlers on the red planet",
        "A crew of twelve lands near Jezero crater.",
        creator=BOB,
        tags=["scifi"],
    )
    heist = engine.create_narrative(
        "Crypto heist",
        "A bridge exploit drains a protocol",
        "An attacker forges withdrawal proofs.",
        creator=ALICE,
        tags=["finance", "crypto"],
        modality="video",
    )
    return engine, (fraud, space, heist)
