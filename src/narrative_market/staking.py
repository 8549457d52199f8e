"""Stake positions, APY and rewards layered on the activity ledger."""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta
from typing import Sequence

from narrative_market.analytics import MarketAnalyticsEngine
from narrative_market.errors import InvalidInput
from narrative_market.ledger import ActivityLedger, in_window
from narrative_market.models import (
    STAKE,
    UNSTAKE,
    ActivityRecord,
    StakePosition,
    StakingRewards,
)

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

BASE_APY = 5.0
MAX_ACTIVITY_BONUS = 10.0
MAX_VELOCITY_BONUS = 5.0
APY_WINDOW_HOURS = 168
CLAIM_INTERVAL = timedelta(hours=24)


def position_key(narrative_id: int, staker_address: str) -> str:
    return f"{narrative_id}_{staker_address.lower()}"


class StakingService:
    """Accepts stakes and unstakes and tracks the resulting positions.

    Positions are keyed by narrative and lower-cased address. Every accepted
    request is appended to the ledger, which the analytics engine reads.
    """

    def __init__(self, ledger: ActivityLedger, analytics: MarketAnalyticsEngine):
        self.ledger = ledger
        self.analytics = analytics
        self._positions: dict[str, StakePosition] = {}
        self._rewards: dict[str, StakingRewards] = {}

        # Positions are rebuilt from activity already in the ledger. Rewards
        # start accruing again from each position's last activity.
        records = ledger.snapshot()
        for i, record in enumerate(records):
            position = self._open_position(record.narrative_id, record.staker_address)
            # APY as it stood when the record was appended
            self._apply(position, record, records[: i + 1])

    def _validate(self, narrative_id: int, staker_address: str, amount: float) -> None:
        if not isinstance(staker_address, str) or not _ADDRESS_RE.match(staker_address):
            raise InvalidInput(f"Invalid staker address: {staker_address!r}")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidInput("Amount must be positive")
        if not math.isfinite(amount) or amount <= 0:
            raise InvalidInput("Amount must be positive")
        if isinstance(narrative_id, bool) or not isinstance(narrative_id, int) or narrative_id < 0:
            raise InvalidInput(f"Invalid narrative ID: {narrative_id!r}")

    # -------------------------------------------------------------------------
    # Stake / Unstake
    # -------------------------------------------------------------------------

    def stake(
        self, narrative_id: int, staker_address: str, amount: float
    ) -> ActivityRecord:
        """Stake tokens on a narrative.

        Returns:
            The appended activity record
        """
        self._validate(narrative_id, staker_address, amount)
        position = self.position(narrative_id, staker_address)
        if position is not None:
            self._accrue(position, self.ledger.clock())
        record = self.ledger.record(narrative_id, staker_address, amount, STAKE)
        position = self._open_position(narrative_id, staker_address)
        self._apply(position, record)
        logger.info(f"{staker_address} staked {amount} on narrative {narrative_id}")
        return record

    def unstake(
        self, narrative_id: int, staker_address: str, amount: float
    ) -> ActivityRecord:
        """Unstake tokens from a narrative.

        Raises:
            InvalidInput: if the position holds less than `amount`
        """
        self._validate(narrative_id, staker_address, amount)
        position = self.position(narrative_id, staker_address)
        if position is None or position.total_staked < amount:
            raise InvalidInput("Insufficient staked amount")

        # Accrue on the balance held since the previous activity
        self._accrue(position, self.ledger.clock())
        record = self.ledger.record(narrative_id, staker_address, amount, UNSTAKE)
        self._apply(position, record)
        logger.info(
            f"{staker_address} unstaked {amount} from narrative {narrative_id}"
        )
        return record

    def _open_position(self, narrative_id: int, staker_address: str) -> StakePosition:
        key = position_key(narrative_id, staker_address)
        position = self._positions.get(key)
        if position is None:
            position = StakePosition(
                narrative_id=narrative_id, staker_address=staker_address
            )
            self._positions[key] = position
            self._rewards[key] = StakingRewards(
                narrative_id=narrative_id, staker_address=staker_address
            )
        return position

    def _apply(
        self,
        position: StakePosition,
        record: ActivityRecord,
        records: Sequence[ActivityRecord] | None = None,
    ) -> None:
        if record.action == STAKE:
            position.total_staked += record.amount
        else:
            position.total_staked = max(0.0, position.total_staked - record.amount)
        position.history.append(record)

        if records is None:
            records = self.ledger.snapshot()
        apy = self._apy(records, record.narrative_id, record.timestamp)
        position.projected_daily_rewards = position.total_staked * apy / 100 / 365

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    def position(self, narrative_id: int, staker_address: str) -> StakePosition | None:
        """Get a staker's position on a narrative."""
        return self._positions.get(position_key(narrative_id, staker_address))

    def positions_for(self, staker_address: str) -> list[StakePosition]:
        """All positions held by an address, largest first."""
        address = staker_address.lower()
        positions = [
            p for p in self._positions.values() if p.staker_address.lower() == address
        ]
        return sorted(positions, key=lambda p: p.total_staked, reverse=True)

    def narrative_total_stake(self, narrative_id: int) -> float:
        """Sum of every position on a narrative."""
        return sum(
            p.total_staked
            for p in self._positions.values()
            if p.narrative_id == narrative_id
        )

    def narrative_ids(self) -> list[int]:
        return list(dict.fromkeys(p.narrative_id for p in self._positions.values()))

    # -------------------------------------------------------------------------
    # APY and rewards
    # -------------------------------------------------------------------------

    def narrative_apy(self, narrative_id: int, now: datetime | None = None) -> float:
        """APY in percent: a 5% base plus activity and velocity bonuses.

        Zero for a narrative with no activity in the last week or nothing
        currently staked.
        """
        return self._apy(self.ledger.snapshot(), narrative_id, now or self.ledger.clock())

    def _apy(
        self, records: Sequence[ActivityRecord], narrative_id: int, now: datetime
    ) -> float:
        activities = in_window(
            [r for r in records if r.narrative_id == narrative_id],
            APY_WINDOW_HOURS,
            now,
        )
        if not activities:
            return 0.0
        if self.narrative_total_stake(narrative_id) == 0:
            return 0.0

        # Stakes and unstakes both count toward velocity
        velocity = sum(r.amount for r in activities)
        activity_bonus = min(MAX_ACTIVITY_BONUS, len(activities) * 0.1)
        velocity_bonus = min(MAX_VELOCITY_BONUS, velocity / 1000)
        return BASE_APY + activity_bonus + velocity_bonus

    def _accrue(self, position: StakePosition, now: datetime) -> StakingRewards:
        key = position_key(position.narrative_id, position.staker_address)
        rewards = self._rewards[key]
        rewards.pending_rewards += self._accrue_preview(position, rewards, now)
        return rewards

    def pending_rewards(
        self, narrative_id: int, staker_address: str, now: datetime | None = None
    ) -> float:
        """Rewards accrued and not yet claimed, including the current period."""
        position = self.position(narrative_id, staker_address)
        if position is None:
            return 0.0
        now = now or self.ledger.clock()
        rewards = self._rewards[position_key(narrative_id, staker_address)]
        accrued = self._accrue_preview(position, rewards, now)
        return rewards.pending_rewards + accrued

    def _accrue_preview(
        self, position: StakePosition, rewards: StakingRewards, now: datetime
    ) -> float:
        """Rewards earned since the later of the last activity and last claim.

        The period is capped at 24 hours.
        """
        if not position.history or position.total_staked <= 0:
            return 0.0
        since = position.history[-1].timestamp
        if rewards.last_claimed_at is not None and rewards.last_claimed_at > since:
            since = rewards.last_claimed_at
        hours = min(24.0, max(0.0, (now - since).total_seconds() / 3600))
        hourly_rate = self.narrative_apy(position.narrative_id, now=now) / 100 / (365 * 24)
        return position.total_staked * hourly_rate * hours

    def claim_rewards(
        self, narrative_id: int, staker_address: str, now: datetime | None = None
    ) -> float:
        """Move pending rewards to earned.

        Returns:
            The claimed amount

        Raises:
            InvalidInput: if the position has nothing to claim
        """
        position = self.position(narrative_id, staker_address)
        if position is None:
            raise InvalidInput("No rewards found for this position")

        now = now or self.ledger.clock()
        rewards = self._rewards[position_key(narrative_id, staker_address)]
        claimed = rewards.pending_rewards + self._accrue_preview(position, rewards, now)
        if claimed == 0:
            raise InvalidInput("No pending rewards to claim")

        rewards.total_earned += claimed
        rewards.pending_rewards = 0.0
        rewards.last_claimed_at = now
        rewards.next_claimable_at = now + CLAIM_INTERVAL
        logger.info(
            f"{staker_address} claimed {claimed:.6f} on narrative {narrative_id}"
        )
        return claimed

    def rewards(self, narrative_id: int, staker_address: str) -> StakingRewards | None:
        return self._rewards.get(position_key(narrative_id, staker_address))

    def statistics(self, now: datetime | None = None) -> dict:
        """TVL, active stakers, average APY and the top staked narratives."""
        market = self.analytics.market_metrics(now=now)

        top = []
        total_apy = 0.0
        ids = self.narrative_ids()
        for nid in ids:
            apy = self.narrative_apy(nid, now=now)
            total_apy += apy
            top.append(
                {
                    "narrative_id": nid,
                    "total_staked": self.narrative_total_stake(nid),
                    "apy": apy,
                }
            )
        top.sort(key=lambda t: t["total_staked"], reverse=True)

        return {
            "total_value_locked": market.total_value_locked,
            "active_stakers": market.active_stakers,
            "average_apy": total_apy / len(ids) if ids else 0.0,
            "top_staked_narratives": top[:10],
        }
