"""Tests for the staking service."""

import math

import pytest
from conftest import ALICE, BOB, NOW
from narrative_market import InvalidInput, StakingService


def test_stake_appends_to_ledger(staking, ledger):
    record = staking.stake(1, ALICE, 100)

    assert record.action == "stake"
    assert record.timestamp == NOW
    assert ledger.snapshot() == (record,)


def test_stake_creates_position(staking):
    staking.stake(1, ALICE, 100)
    staking.stake(1, ALICE, 50)

    position = staking.position(1, ALICE)
    assert position.total_staked == 150
    assert len(position.history) == 2


def test_position_lookup_case_insensitive(staking):
    staking.stake(1, ALICE, 10)
    assert staking.position(1, ALICE.upper().replace("0X", "0x")) is not None


@pytest.mark.parametrize("address", ["", "alice", "0x123", "0x" + "g" * 40])
def test_invalid_address(staking, address):
    with pytest.raises(InvalidInput, match="address"):
        staking.stake(1, address, 10)


@pytest.mark.parametrize("amount", [0, -5, math.nan, math.inf])
def test_invalid_amount(staking, amount):
    with pytest.raises(InvalidInput, match="positive"):
        staking.stake(1, ALICE, amount)

    # no empty position is left behind
    assert staking.position(1, ALICE) is None
    assert staking.narrative_ids() == []
    assert staking.positions_for(ALICE) == []


def test_invalid_narrative_id(staking):
    with pytest.raises(InvalidInput, match="narrative ID"):
        staking.stake(-1, ALICE, 10)


def test_unstake(staking):
    staking.stake(1, ALICE, 100)
    record = staking.unstake(1, ALICE, 40)

    assert record.action == "unstake"
    assert staking.position(1, ALICE).total_staked == 60


def test_unstake_more_than_staked_rejected(staking, ledger):
    staking.stake(1, ALICE, 10)

    with pytest.raises(InvalidInput, match="Insufficient"):
        staking.unstake(1, ALICE, 11)

    # nothing reached the ledger
    assert len(ledger.snapshot()) == 1


def test_unstake_without_position_rejected(staking):
    with pytest.raises(InvalidInput, match="Insufficient"):
        staking.unstake(1, ALICE, 1)


def test_positions_for_sorted(staking):
    staking.stake(1, ALICE, 10)
    staking.stake(2, ALICE, 30)
    staking.stake(3, BOB, 99)

    positions = staking.positions_for(ALICE)

    assert [p.narrative_id for p in positions] == [2, 1]


def test_narrative_total_stake(staking):
    staking.stake(1, ALICE, 10)
    staking.stake(1, BOB, 15)
    staking.unstake(1, BOB, 5)

    assert staking.narrative_total_stake(1) == 20
    assert staking.narrative_total_stake(2) == 0


def test_apy_no_activity(staking):
    assert staking.narrative_apy(1) == 0


def test_apy(staking):
    staking.stake(1, ALICE, 2000)
    staking.stake(1, BOB, 1000)

    # base 5 + 2 activities * 0.1 + min(5, 3000 / 1000)
    assert staking.narrative_apy(1) == pytest.approx(5 + 0.2 + 3)


def test_apy_bonuses_capped(staking):
    for _ in range(120):
        staking.stake(1, ALICE, 100)

    # activity bonus caps at 10, velocity bonus at 5
    assert staking.narrative_apy(1) == pytest.approx(20)


def test_apy_zero_when_fully_unstaked(staking):
    staking.stake(1, ALICE, 10)
    staking.unstake(1, ALICE, 10)

    assert staking.narrative_apy(1) == 0


def test_apy_ignores_activity_older_than_a_week(staking, clock):
    staking.stake(1, ALICE, 10)
    clock.advance(hours=169)

    assert staking.narrative_apy(1) == 0


def test_projected_daily_rewards(staking):
    staking.stake(1, ALICE, 1000)

    apy = staking.narrative_apy(1)
    position = staking.position(1, ALICE)
    assert position.projected_daily_rewards == pytest.approx(1000 * apy / 100 / 365)


def test_pending_rewards_accrue_over_time(staking, clock):
    staking.stake(1, ALICE, 1000)
    assert staking.pending_rewards(1, ALICE) == 0

    clock.advance(hours=10)
    apy = staking.narrative_apy(1)
    expected = 1000 * apy / 100 / (365 * 24) * 10

    assert staking.pending_rewards(1, ALICE) == pytest.approx(expected)


def test_pending_rewards_period_capped_at_24h(staking, clock):
    staking.stake(1, ALICE, 1000)
    clock.advance(hours=24)
    at_cap = staking.pending_rewards(1, ALICE)
    clock.advance(hours=48)

    # still inside the weekly APY window, so only the cap differs
    assert at_cap > 0
    assert staking.pending_rewards(1, ALICE) == pytest.approx(at_cap)


def test_claim_rewards(staking, clock):
    staking.stake(1, ALICE, 1000)
    clock.advance(hours=5)
    pending = staking.pending_rewards(1, ALICE)

    claimed = staking.claim_rewards(1, ALICE)

    assert claimed == pytest.approx(pending)
    rewards = staking.rewards(1, ALICE)
    assert rewards.total_earned == pytest.approx(claimed)
    assert rewards.pending_rewards == 0
    assert rewards.last_claimed_at == clock.now
    assert staking.pending_rewards(1, ALICE) == 0


def test_claim_rewards_nothing_pending(staking):
    staking.stake(1, ALICE, 1000)

    with pytest.raises(InvalidInput, match="No pending rewards"):
        staking.claim_rewards(1, ALICE)


def test_claim_rewards_no_position(staking):
    with pytest.raises(InvalidInput, match="No rewards found"):
        staking.claim_rewards(1, ALICE)


def test_rewards_carry_across_new_stakes(staking, clock):
    staking.stake(1, ALICE, 1000)
    clock.advance(hours=6)
    before = staking.pending_rewards(1, ALICE)

    staking.stake(1, ALICE, 1)

    assert staking.rewards(1, ALICE).pending_rewards == pytest.approx(before)


def test_statistics(staking):
    staking.stake(1, ALICE, 100)
    staking.stake(2, BOB, 300)

    stats = staking.statistics()

    assert stats["total_value_locked"] == pytest.approx(400)
    assert stats["active_stakers"] == 2
    assert [t["narrative_id"] for t in stats["top_staked_narratives"]] == [2, 1]
    expected_avg = (staking.narrative_apy(1) + staking.narrative_apy(2)) / 2
    assert stats["average_apy"] == pytest.approx(expected_avg)


def test_statistics_empty(staking):
    stats = staking.statistics()
    assert stats["average_apy"] == 0
    assert stats["top_staked_narratives"] == []


def test_ledger_total_matches_positions(staking, analytics):
    staking.stake(1, ALICE, 100)
    staking.stake(1, BOB, 20)
    staking.unstake(1, ALICE, 30)

    assert analytics.narrative_metric(1).total_staked == staking.narrative_total_stake(1)


def test_positions_rebuilt_from_ledger(staking, ledger, analytics):
    staking.stake(1, ALICE, 100)
    staking.unstake(1, ALICE, 25)
    staking.stake(2, BOB, 10)

    restarted = StakingService(ledger, analytics)

    assert restarted.position(1, ALICE).total_staked == 75
    assert len(restarted.position(1, ALICE).history) == 2
    assert restarted.narrative_total_stake(2) == 10
    assert restarted.position(1, ALICE).projected_daily_rewards == pytest.approx(
        staking.position(1, ALICE).projected_daily_rewards
    )
    restarted.unstake(1, ALICE, 75)


def test_rebuilt_projected_rewards_match_live(staking, ledger, analytics, clock):
    staking.stake(1, ALICE, 100)
    clock.advance(hours=1)
    staking.stake(1, BOB, 5000)
    live = {
        addr: staking.position(1, addr).projected_daily_rewards for addr in (ALICE, BOB)
    }

    restarted = StakingService(ledger, analytics)

    for addr, projected in live.items():
        assert restarted.position(1, addr).projected_daily_rewards == pytest.approx(
            projected
        )
    # projections are as of each position's last activity
    assert live[ALICE] == pytest.approx(100 * 5.2 / 100 / 365)
