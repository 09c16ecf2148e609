"""
podium.engine.records — Typed Records
======================================

Every row that crosses a store boundary is decoded into one of these
frozen dataclasses.  The ledger reader produces ``Ledger*`` records, the
projection store produces ``*Row`` records, and the coordinator hands
:class:`NewVote` back to the store for insertion.  Nothing above the
adapters ever touches an untyped result row.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

__all__ = [
    "LedgerVote",
    "LedgerPowerLevel",
    "LedgerBrand",
    "PodiumLog",
    "UserRow",
    "VoteRow",
    "RankedBrand",
    "NewVote",
    "StreakResult",
    "SyncStats",
]


# ---------------------------------------------------------------------------
# Ledger side (read-only)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerVote:
    """A podium vote as recorded by the indexer.

    ``brand_ids`` is ``None`` when the raw payload could not be parsed;
    the raw text is kept in ``raw_brand_ids`` for error reporting.
    """

    event_id: str
    voter_address: str | None
    fid: int
    day_bucket: int | None
    brand_ids: tuple[int, ...] | None
    raw_brand_ids: str
    cost: int                 # wei
    block_number: int | None
    tx_hash: str
    timestamp: int            # unix seconds

    @property
    def occurred_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


@dataclass(frozen=True, slots=True)
class LedgerPowerLevel:
    fid: int
    power_level: int
    timestamp: int | None = None


@dataclass(frozen=True, slots=True)
class LedgerBrand:
    on_ledger_id: int
    fid: int | None
    wallet_address: str | None
    handle: str
    metadata_hash: str | None
    created_at: int | None
    block_number: int | None
    tx_hash: str | None


@dataclass(frozen=True, slots=True)
class PodiumLog:
    """Decoded ``PodiumCreated`` log from a transaction receipt."""

    voter: str
    fid: int
    day: int
    brand_ids: tuple[int, int, int]
    cost: int


# ---------------------------------------------------------------------------
# Projection side
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class UserRow:
    id: int
    fid: int
    power_level: int
    points: int
    daily_streak: int
    max_daily_streak: int
    total_votes: int
    last_vote_at: datetime | None


@dataclass(frozen=True, slots=True)
class VoteRow:
    tx_hash: str
    user_id: int
    brand1_id: int | None
    brand2_id: int | None
    brand3_id: int | None
    date: datetime
    day_bucket: int | None
    cost_paid: int
    reward_amount: str | None
    claim_tx_hash: str | None
    points_earned: int
    season: int | None

    @property
    def is_corrupted(self) -> bool:
        return None in (self.brand1_id, self.brand2_id, self.brand3_id)

    @property
    def is_placeholder(self) -> bool:
        """Row created by a claim that arrived before its vote."""
        return self.claim_tx_hash is not None and self.tx_hash == self.claim_tx_hash


@dataclass(frozen=True, slots=True)
class RankedBrand:
    """One brand's standing in a single period."""

    id: int
    score: float
    rank: int
    banned: bool


@dataclass(frozen=True, slots=True)
class NewVote:
    tx_hash: str
    event_id: str | None
    user_id: int
    brand_ids: tuple[int, int, int]   # projection brand ids, podium order
    date: datetime
    day_bucket: int
    cost_paid: int
    reward_amount: str
    points_earned: int
    season: int


@dataclass(frozen=True, slots=True)
class StreakResult:
    current: int
    max: int


# ---------------------------------------------------------------------------
# SyncStats — ephemeral result of one coordinator run
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class SyncStats:
    """Counters and errors collected during one :meth:`SyncCoordinator.sync`.

    Not persisted.  ``fatal`` is set when a connectivity failure aborted
    one of the sync types; the counters still reflect the partial work.
    """

    window_hours: int = 0
    dry_run: bool = False
    users_checked: int = 0
    users_updated: int = 0
    users_created: int = 0
    votes_checked: int = 0
    votes_inserted: int = 0
    votes_skipped: int = 0
    brands_checked: int = 0
    brands_created: int = 0
    brands_updated: int = 0
    errors: list[str] = field(default_factory=list)
    fatal: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def record_error(self, message: str) -> None:
        self.errors.append(message)

    def record_fatal(self, sync_type: str, exc: BaseException) -> None:
        self.fatal = True
        self.errors.append(f"Fatal {sync_type} sync error: {exc}")

    def finish(self) -> SyncStats:
        self.finished_at = datetime.now(UTC)
        return self

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["duration_seconds"] = round(self.duration_seconds, 3)
        return data
