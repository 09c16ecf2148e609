"""
podium.services.projection_store — Projection Store Adapter
============================================================

All reads and writes against the projection (users, brands, votes,
job_state) go through :class:`ProjectionStore`.  Each public method opens
its own short transaction via :func:`get_session`; no locks are held
between calls.  Results are decoded into the frozen records in
:mod:`podium.engine.records` before they leave this module.

Write paths are idempotent:

* vote insert — keyed by ``tx_hash``; a duplicate raises
  :class:`IntegrityError`, which is swallowed and reported as ``False``
* power level / rank writes — compare-and-set, only rows that differ
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import Engine, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from podium.constants import VOTE_POINTS, podium_scores
from podium.database.engine import get_session
from podium.database.models import Brand, JobState, User, Vote
from podium.engine.periods import Period
from podium.engine.records import (
    LedgerBrand,
    NewVote,
    RankedBrand,
    StreakResult,
    UserRow,
    VoteRow,
)

logger = logging.getLogger(__name__)

# Period → (score column, ranking column) on ``brands``
PERIOD_COLUMNS: dict[Period, tuple[str, str]] = {
    Period.ALL: ("score", "ranking"),
    Period.DAY: ("score_day", "ranking_day"),
    Period.WEEK: ("score_week", "ranking_week"),
    Period.MONTH: ("score_month", "ranking_month"),
}


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _user_row(user: User) -> UserRow:
    return UserRow(
        id=user.id,
        fid=user.fid,
        power_level=user.power_level,
        points=user.points,
        daily_streak=user.daily_streak,
        max_daily_streak=user.max_daily_streak,
        total_votes=user.total_votes,
        last_vote_at=user.last_vote_at,
    )


def _vote_row(vote: Vote) -> VoteRow:
    return VoteRow(
        tx_hash=vote.tx_hash,
        user_id=vote.user_id,
        brand1_id=vote.brand1_id,
        brand2_id=vote.brand2_id,
        brand3_id=vote.brand3_id,
        date=vote.date,
        day_bucket=vote.day_bucket,
        cost_paid=vote.cost_paid,
        reward_amount=vote.reward_amount,
        claim_tx_hash=vote.claim_tx_hash,
        points_earned=vote.points_earned,
        season=vote.season,
    )


class ProjectionStore:
    """Typed gateway to the projection database."""

    def __init__(self, engine: Engine, lookup_chunk_size: int = 500) -> None:
        self.engine = engine
        self.lookup_chunk_size = lookup_chunk_size

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------
    def users_by_fid(self, fids: Iterable[int]) -> dict[int, UserRow]:
        """Map fid → user for every known fid in *fids* (batched IN lookups)."""
        wanted = sorted(set(fids))
        found: dict[int, UserRow] = {}
        with get_session(self.engine) as session:
            for chunk in _chunks(wanted, self.lookup_chunk_size):
                for user in session.scalars(select(User).where(User.fid.in_(chunk))):
                    found[user.fid] = _user_row(user)
        return found

    def get_user(self, user_id: int) -> UserRow | None:
        with get_session(self.engine) as session:
            user = session.get(User, user_id)
            return _user_row(user) if user else None

    def create_placeholder_user(self, fid: int, address: str | None = None) -> int:
        """Bootstrap a user for an unseen *fid* and return its id.

        Aggregates start at zero and ``username`` is a placeholder until the
        profile collaborator fills it in.  If another writer created the
        same fid first, the existing id is returned.
        """
        try:
            with get_session(self.engine) as session:
                user = User(
                    fid=fid,
                    username=f"user_{fid}",
                    address=address,
                    points=0,
                    daily_streak=0,
                    max_daily_streak=0,
                    power_level=0,
                    total_votes=0,
                )
                session.add(user)
                session.flush()
                user_id = user.id
            logger.info("Created placeholder user fid=%d id=%d", fid, user_id)
            return user_id
        except IntegrityError:
            with get_session(self.engine) as session:
                existing = session.scalar(select(User.id).where(User.fid == fid))
            if existing is None:
                raise
            return existing

    def set_power_level(self, fid: int, power_level: int) -> bool:
        """Write *power_level* for *fid* only if it differs.  True if changed."""
        with get_session(self.engine) as session:
            result = session.execute(
                update(User)
                .where(User.fid == fid, User.power_level != power_level)
                .values(power_level=power_level)
            )
            return result.rowcount > 0

    def users_with_votes(self) -> list[int]:
        with get_session(self.engine) as session:
            return list(session.scalars(select(Vote.user_id).distinct().order_by(Vote.user_id)))

    def vote_dates(self, user_id: int) -> list[datetime]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(Vote.date).where(Vote.user_id == user_id).order_by(Vote.date)
            ))

    def store_streak(self, user_id: int, current: int, computed_max: int) -> StreakResult | None:
        """Persist streak counters.  ``max_daily_streak`` never decreases."""
        with get_session(self.engine) as session:
            user = session.get(User, user_id)
            if user is None:
                return None
            user.daily_streak = current
            user.max_daily_streak = max(user.max_daily_streak or 0, computed_max)
            return StreakResult(current=user.daily_streak, max=user.max_daily_streak)

    def reset_stale_streaks(self, cutoff: datetime) -> int:
        """Zero ``daily_streak`` for users whose last vote is before *cutoff*."""
        with get_session(self.engine) as session:
            result = session.execute(
                update(User)
                .where(
                    User.daily_streak > 0,
                    or_(User.last_vote_at.is_(None), User.last_vote_at < cutoff),
                )
                .values(daily_streak=0)
            )
            return result.rowcount

    # -------------------------------------------------------------------
    # Brands
    # -------------------------------------------------------------------
    def brand_id_map(self) -> dict[int, int]:
        """Map on-ledger brand id → projection brand id for linked brands."""
        with get_session(self.engine) as session:
            rows = session.execute(
                select(Brand.on_ledger_id, Brand.id).where(Brand.on_ledger_id.is_not(None))
            ).all()
        return {row.on_ledger_id: row.id for row in rows}

    def brand_metadata_hashes(self, on_ledger_ids: Iterable[int]) -> dict[int, str | None]:
        wanted = sorted(set(on_ledger_ids))
        found: dict[int, str | None] = {}
        with get_session(self.engine) as session:
            for chunk in _chunks(wanted, self.lookup_chunk_size):
                rows = session.execute(
                    select(Brand.on_ledger_id, Brand.metadata_hash)
                    .where(Brand.on_ledger_id.in_(chunk))
                ).all()
                found.update({row.on_ledger_id: row.metadata_hash for row in rows})
        return found

    def create_brand(self, brand: LedgerBrand) -> int:
        with get_session(self.engine) as session:
            row = Brand(
                on_ledger_id=brand.on_ledger_id,
                name=brand.handle,
                handle=brand.handle,
                fid=brand.fid,
                wallet_address=brand.wallet_address,
                metadata_hash=brand.metadata_hash,
            )
            session.add(row)
            session.flush()
            return row.id

    def refresh_brand(self, brand: LedgerBrand) -> bool:
        """Overwrite the on-ledger fields of an existing brand."""
        with get_session(self.engine) as session:
            result = session.execute(
                update(Brand)
                .where(Brand.on_ledger_id == brand.on_ledger_id)
                .values(
                    handle=brand.handle,
                    fid=brand.fid,
                    wallet_address=brand.wallet_address,
                    metadata_hash=brand.metadata_hash,
                )
            )
            return result.rowcount > 0

    def ranked_brands(self, period: Period) -> list[RankedBrand]:
        """Every brand with its score and stored rank for *period*."""
        score_col, rank_col = PERIOD_COLUMNS[period]
        with get_session(self.engine) as session:
            rows = session.execute(
                select(
                    Brand.id,
                    getattr(Brand, score_col).label("score"),
                    getattr(Brand, rank_col).label("rank"),
                    Brand.banned,
                )
            ).all()
        return [
            RankedBrand(id=r.id, score=float(r.score or 0), rank=int(r.rank or 0), banned=bool(r.banned))
            for r in rows
        ]

    def write_ranks(self, period: Period, ranks: dict[int, int]) -> int:
        """Store brand id → rank for *period*.  Returns rows written."""
        if not ranks:
            return 0
        _, rank_col = PERIOD_COLUMNS[period]
        column = getattr(Brand, rank_col)
        written = 0
        with get_session(self.engine) as session:
            for brand_id, rank in ranks.items():
                result = session.execute(
                    update(Brand).where(Brand.id == brand_id, column != rank).values({rank_col: rank})
                )
                written += result.rowcount
        return written

    def top_brands(self, period: Period, limit: int = 3) -> list[dict]:
        score_col, _ = PERIOD_COLUMNS[period]
        column = getattr(Brand, score_col)
        with get_session(self.engine) as session:
            rows = session.execute(
                select(Brand.id, Brand.name, column.label("score"))
                .where(Brand.banned.is_(False))
                .order_by(column.desc(), Brand.id)
                .limit(limit)
            ).all()
        return [{"id": r.id, "name": r.name, "score": float(r.score or 0)} for r in rows]

    def reset_period_scores(self, period: Period) -> int:
        """Zero the score and rank columns of *period* for every brand."""
        if period is Period.ALL:
            raise ValueError("the all-time leaderboard is never reset")
        score_col, rank_col = PERIOD_COLUMNS[period]
        with get_session(self.engine) as session:
            result = session.execute(update(Brand).values({score_col: 0.0, rank_col: 0}))
            return result.rowcount

    # -------------------------------------------------------------------
    # Votes
    # -------------------------------------------------------------------
    def existing_tx_hashes(self, tx_hashes: Iterable[str]) -> set[str]:
        """Subset of *tx_hashes* already projected, in chunked IN lookups."""
        wanted = sorted(set(tx_hashes))
        found: set[str] = set()
        with get_session(self.engine) as session:
            for chunk in _chunks(wanted, self.lookup_chunk_size):
                found.update(session.scalars(select(Vote.tx_hash).where(Vote.tx_hash.in_(chunk))))
        return found

    def insert_vote(
        self,
        vote: NewVote,
        *,
        credit_day: bool = False,
        credit_week: bool = False,
        credit_month: bool = False,
    ) -> bool:
        """Insert *vote* and apply its aggregates in one transaction.

        Besides the vote row this awards the user ``points_earned``, bumps
        ``total_votes`` and ``last_vote_at``, and credits the three brands
        with their 60/30/10 share of ``cost_paid``.  Period scores are only
        credited when the caller says the vote falls in the current period.

        Returns False (and writes nothing) when ``tx_hash`` already exists.
        """
        try:
            with get_session(self.engine) as session:
                session.add(Vote(
                    tx_hash=vote.tx_hash,
                    event_id=vote.event_id,
                    user_id=vote.user_id,
                    brand1_id=vote.brand_ids[0],
                    brand2_id=vote.brand_ids[1],
                    brand3_id=vote.brand_ids[2],
                    date=vote.date,
                    day_bucket=vote.day_bucket,
                    cost_paid=vote.cost_paid,
                    reward_amount=vote.reward_amount,
                    shared=False,
                    share_verified=False,
                    points_earned=vote.points_earned,
                    season=vote.season,
                ))
                session.flush()

                session.execute(
                    update(User)
                    .where(User.id == vote.user_id)
                    .values(
                        points=User.points + vote.points_earned,
                        total_votes=User.total_votes + 1,
                    )
                )
                session.execute(
                    update(User)
                    .where(
                        User.id == vote.user_id,
                        or_(User.last_vote_at.is_(None), User.last_vote_at < vote.date),
                    )
                    .values(last_vote_at=vote.date)
                )

                # Brand rows are locked in id order so concurrent inserts can't deadlock.
                shares: dict[int, float] = {}
                for brand_id, share in zip(vote.brand_ids, podium_scores(vote.cost_paid)):
                    shares[brand_id] = shares.get(brand_id, 0.0) + share
                for brand_id, share in sorted(shares.items()):
                    values = {"score": Brand.score + share}
                    if credit_day:
                        values["score_day"] = Brand.score_day + share
                    if credit_week:
                        values["score_week"] = Brand.score_week + share
                    if credit_month:
                        values["score_month"] = Brand.score_month + share
                    session.execute(update(Brand).where(Brand.id == brand_id).values(values))
            return True
        except IntegrityError:
            if not self.existing_tx_hashes([vote.tx_hash]):
                raise
            logger.debug("Vote %s already projected, skipping", vote.tx_hash)
            return False

    def find_corrupted_votes(self) -> list[VoteRow]:
        """Votes with at least one unresolved brand link, newest first."""
        with get_session(self.engine) as session:
            votes = session.scalars(
                select(Vote)
                .where(or_(
                    Vote.brand1_id.is_(None),
                    Vote.brand2_id.is_(None),
                    Vote.brand3_id.is_(None),
                ))
                .order_by(Vote.date.desc())
            ).all()
            return [_vote_row(v) for v in votes]

    def repair_vote(
        self,
        tx_hash: str,
        brand_ids: tuple[int, int, int],
        *,
        cost_paid: int,
        reward_amount: str,
        day_bucket: int,
    ) -> bool:
        """Overwrite the chain-derived fields of an existing vote."""
        with get_session(self.engine) as session:
            result = session.execute(
                update(Vote)
                .where(Vote.tx_hash == tx_hash)
                .values(
                    brand1_id=brand_ids[0],
                    brand2_id=brand_ids[1],
                    brand3_id=brand_ids[2],
                    cost_paid=cost_paid,
                    reward_amount=reward_amount,
                    day_bucket=day_bucket,
                )
            )
            return result.rowcount > 0

    def refresh_unique_voters(self, brand_ids: Iterable[int]) -> int:
        """Recount distinct voters for *brand_ids*.  Returns rows changed."""
        changed = 0
        with get_session(self.engine) as session:
            for brand_id in sorted(set(brand_ids)):
                count = session.scalar(
                    select(func.count(func.distinct(Vote.user_id))).where(or_(
                        Vote.brand1_id == brand_id,
                        Vote.brand2_id == brand_id,
                        Vote.brand3_id == brand_id,
                    ))
                ) or 0
                result = session.execute(
                    update(Brand)
                    .where(Brand.id == brand_id, Brand.unique_voters_count != count)
                    .values(unique_voters_count=count)
                )
                changed += result.rowcount
        return changed

    def count_votes(self, since: datetime | None = None) -> int:
        q = select(func.count()).select_from(Vote)
        if since is not None:
            q = q.where(Vote.date >= since)
        with get_session(self.engine) as session:
            return int(session.scalar(q) or 0)

    def count_zero_cost_votes(self) -> int:
        with get_session(self.engine) as session:
            return int(session.scalar(
                select(func.count()).select_from(Vote).where(Vote.cost_paid == 0)
            ) or 0)

    def points_mismatches(self, limit: int | None = None) -> list[dict]:
        """Users whose ``points`` differ from the sum of their votes' points."""
        earned = (
            select(Vote.user_id, func.coalesce(func.sum(Vote.points_earned), 0).label("earned"))
            .group_by(Vote.user_id)
            .subquery()
        )
        q = (
            select(User.id, User.fid, User.points, func.coalesce(earned.c.earned, 0).label("earned"))
            .outerjoin(earned, earned.c.user_id == User.id)
            .where(User.points != func.coalesce(earned.c.earned, 0))
            .order_by(User.id)
        )
        if limit is not None:
            q = q.limit(limit)
        with get_session(self.engine) as session:
            rows = session.execute(q).all()
        return [
            {
                "user_id": r.id,
                "fid": r.fid,
                "points": r.points,
                "earned": int(r.earned),
                "diff": r.points - int(r.earned),
            }
            for r in rows
        ]

    # -------------------------------------------------------------------
    # Job state
    # -------------------------------------------------------------------
    def load_state(self, key: str) -> dict | None:
        with get_session(self.engine) as session:
            row = session.get(JobState, key)
            return json.loads(row.value_json) if row else None

    def save_state(self, key: str, value: dict) -> None:
        with get_session(self.engine) as session:
            row = session.get(JobState, key)
            if row is None:
                session.add(JobState(key=key, value_json=json.dumps(value)))
            else:
                row.value_json = json.dumps(value)
