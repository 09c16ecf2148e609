"""
podium.database.models — SQLAlchemy 2.0 Data Models
====================================================

The projection schema: the relational store kept in sync with the ledger
and used to serve reads.

Tables:
- users      — one row per voter, keyed internally by ``id`` and externally by ``fid``
- brands     — brands voted on, linked to their on-ledger id
- votes      — one row per podium transaction (``tx_hash`` primary key)
- job_state  — key/value rows holding the scheduler's persisted state
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Podium ORM models."""


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    Naive values are assumed to already be UTC, both on the way in and on
    the way out (SQLite drops tzinfo on storage).
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Users — one row per voter
# ---------------------------------------------------------------------------
class User(Base):
    """A voter.  ``points`` only ever grows; streak fields are derived."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fid: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str | None] = mapped_column(String(42), default=None)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_daily_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    power_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_vote_at: Mapped[datetime | None] = mapped_column(UtcDateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} fid={self.fid} points={self.points}>"


# ---------------------------------------------------------------------------
# Brands — ranked by period score
# ---------------------------------------------------------------------------
class Brand(Base):
    """A brand that can appear on a podium.

    ``ranking*`` columns hold the dense rank from the last recompute;
    banned brands always carry rank 0.  ``unique_voters_count`` is the
    number of distinct users with the brand in any podium slot.
    """

    __tablename__ = "brands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    on_ledger_id: Mapped[int | None] = mapped_column(Integer, unique=True, default=None)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    handle: Mapped[str | None] = mapped_column(String(100), default=None)
    fid: Mapped[int | None] = mapped_column(BigInteger, default=None)
    wallet_address: Mapped[str | None] = mapped_column(String(42), default=None)
    metadata_hash: Mapped[str | None] = mapped_column(String(100), default=None)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    score_day: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    score_week: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    score_month: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ranking: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ranking_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ranking_week: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ranking_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_voters_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Brand id={self.id} name={self.name!r} score={self.score}>"


# ---------------------------------------------------------------------------
# Votes — one row per podium transaction
# ---------------------------------------------------------------------------
class Vote(Base):
    """A projected podium vote.

    ``tx_hash`` is the idempotency key: sync inserts a row on first sight
    and never overwrites it.  Brand links stay NULL until resolved, which
    is what the repair path looks for.
    """

    __tablename__ = "votes"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    event_id: Mapped[str | None] = mapped_column(String(100), default=None)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    brand1_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), default=None)
    brand2_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), default=None)
    brand3_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), default=None)
    date: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    day_bucket: Mapped[int | None] = mapped_column(Integer, default=None)
    cost_paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    reward_amount: Mapped[str | None] = mapped_column(String(78), default=None)
    shared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, default=None)
    claim_tx_hash: Mapped[str | None] = mapped_column(String(66), default=None)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    season: Mapped[int | None] = mapped_column(Integer, default=None)

    __table_args__ = (
        Index("ix_votes_user_date", "user_id", "date"),
        Index("ix_votes_date", "date"),
    )

    def __repr__(self) -> str:
        return f"<Vote tx={self.tx_hash[:10]!r} user={self.user_id} date={self.date}>"


# ---------------------------------------------------------------------------
# JobState — persisted scheduler state
# ---------------------------------------------------------------------------
class JobState(Base):
    """Key/value store for the job runner.  Values are JSON strings."""

    __tablename__ = "job_state"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<JobState key={self.key!r}>"
