"""Append-only staking activity ledger."""

from __future__ import annotations

import logging
import math
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from narrative_market.errors import InvalidInput
from narrative_market.models import ACTIONS, ActivityRecord, utc_now
from narrative_market.queries import (
    build_activity_narratives_query,
    build_activity_query,
    build_activity_table_ddl,
)

logger = logging.getLogger(__name__)


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC ISO timestamp, so stored values sort lexically."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


class ActivityStore(Protocol):
    """Storage behind an ActivityLedger."""

    def append(self, record: ActivityRecord) -> None:
        """Persist a record."""
        ...

    def records(self, narrative_id: int | None = None) -> list[ActivityRecord]:
        """All records (or one narrative's) in append order."""
        ...

    def narrative_ids(self) -> list[int]:
        """Narrative ids in order of first activity."""
        ...

    def clear(self) -> None:
        """Drop every record."""
        ...


class InMemoryActivityStore:
    """Process-lifetime store backed by a list."""

    def __init__(self):
        self._records: list[ActivityRecord] = []

    def append(self, record: ActivityRecord) -> None:
        self._records.append(record)

    def records(self, narrative_id: int | None = None) -> list[ActivityRecord]:
        if narrative_id is None:
            return list(self._records)
        return [r for r in self._records if r.narrative_id == narrative_id]

    def narrative_ids(self) -> list[int]:
        return list(dict.fromkeys(r.narrative_id for r in self._records))

    def clear(self) -> None:
        self._records.clear()


class SqliteActivityStore:
    """Store backed by the staking_activity table of a SQLite database."""

    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.db.executescript(build_activity_table_ddl())
        self.db.commit()

    def append(self, record: ActivityRecord) -> None:
        self.db.execute(
            """
            INSERT INTO staking_activity
                (narrative_id, staker_address, amount, action, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record.narrative_id,
                record.staker_address,
                record.amount,
                record.action,
                to_db_time(record.timestamp),
            ),
        )
        self.db.commit()

    def records(self, narrative_id: int | None = None) -> list[ActivityRecord]:
        rows = self.db.execute(
            build_activity_query(narrative_id),
            {"narrative_id": narrative_id},
        ).fetchall()
        return [
            ActivityRecord(
                timestamp=from_db_time(row[4]),
                narrative_id=row[0],
                staker_address=row[1],
                amount=row[2],
                action=row[3],
            )
            for row in rows
        ]

    def narrative_ids(self) -> list[int]:
        rows = self.db.execute(build_activity_narratives_query()).fetchall()
        return [row[0] for row in rows]

    def clear(self) -> None:
        self.db.execute("DELETE FROM staking_activity")
        self.db.commit()


def validate_record(record: ActivityRecord) -> None:
    """Raise InvalidInput unless the record can be appended."""
    nid = record.narrative_id
    if isinstance(nid, bool) or not isinstance(nid, int) or nid < 0:
        raise InvalidInput(f"Invalid narrative ID: {nid!r}")

    if not isinstance(record.staker_address, str) or not record.staker_address:
        raise InvalidInput("Staker address is required")

    if record.action not in ACTIONS:
        raise InvalidInput(f"Invalid action: {record.action}")

    amount = record.amount
    if (
        isinstance(amount, bool)
        or not isinstance(amount, (int, float))
        or not math.isfinite(amount)
        or amount <= 0
    ):
        raise InvalidInput(f"Amount must be positive: {amount!r}")

    ts = record.timestamp
    if not isinstance(ts, datetime) or ts.tzinfo is None:
        raise InvalidInput("Timestamp must be a timezone-aware datetime")


class ActivityLedger:
    """Append-only log of stake/unstake records.

    Appends and snapshots share one lock, so a reader working from a
    snapshot never sees a half-applied append.
    """

    def __init__(
        self,
        store: ActivityStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store if store is not None else InMemoryActivityStore()
        self.clock = clock
        self._lock = threading.RLock()

    def append(self, record: ActivityRecord) -> ActivityRecord:
        """Validate and append a record.

        The ledger does not check that an unstake is covered by earlier
        stakes; that belongs to the staking service.

        Raises:
            InvalidInput: if the record is malformed
        """
        validate_record(record)
        with self._lock:
            self.store.append(record)
        logger.debug(
            f"Appended {record.action} of {record.amount} on narrative "
            f"{record.narrative_id} by {record.staker_address}"
        )
        return record

    def record(
        self,
        narrative_id: int,
        staker_address: str,
        amount: float,
        action: str,
        timestamp: datetime | None = None,
    ) -> ActivityRecord:
        """Build a record (timestamped now unless given) and append it."""
        return self.append(
            ActivityRecord(
                timestamp=timestamp if timestamp is not None else self.clock(),
                narrative_id=narrative_id,
                staker_address=staker_address,
                amount=amount,
                action=action,
            )
        )

    def snapshot(self) -> tuple[ActivityRecord, ...]:
        """Every record in append order, read under the ledger lock."""
        with self._lock:
            return tuple(self.store.records())

    def narrative_ids(self) -> list[int]:
        with self._lock:
            return self.store.narrative_ids()

    def query(
        self,
        narrative_id: int,
        window_hours: float,
        now: datetime | None = None,
    ) -> list[ActivityRecord]:
        """Records for a narrative within the trailing window, newest first.

        A record exactly at the window's lower bound is included.
        """
        with self._lock:
            records = self.store.records(narrative_id)
        return newest_first(in_window(records, window_hours, now or self.clock()))

    def active_stakers(self, window_hours: float, now: datetime | None = None) -> int:
        """Distinct stakers with activity on any narrative in the window."""
        return count_stakers(
            in_window(self.snapshot(), window_hours, now or self.clock())
        )

    def clear(self) -> None:
        """Drop every record. Intended for tests and resets."""
        with self._lock:
            self.store.clear()


def in_window(
    records, window_hours: float, now: datetime
) -> list[ActivityRecord]:
    cutoff = now - timedelta(hours=window_hours)
    return [r for r in records if r.timestamp >= cutoff]


def newest_first(records) -> list[ActivityRecord]:
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def count_stakers(records) -> int:
    return len({r.staker_address for r in records})
