"""
podium.services.sync_service — Ledger → Projection Sync Coordinator
====================================================================

Drives one reconciliation pass from the indexer into the projection.

How it works (per sync type, in this order):

    1. **Brands** — create projection brands for new on-ledger brands and
       refresh the ones whose metadata hash changed, so the votes that
       follow can resolve their brand references.
    2. **Power levels** — compare each ledger level with the projected one
       and write only on mismatch.
    3. **Votes** — fetch candidates (ascending timestamp), drop the ones
       whose ``tx_hash`` is already projected (batched IN lookups), validate
       the brand triple, bootstrap unseen users, then insert the vote and
       its points/brand-score aggregates in one transaction.  After each
       batch the touched users' streaks are recomputed, the touched brands'
       unique voter counts are refreshed and those brands are handed to the
       ranking queue.

Every step is idempotent, so overlapping windows and re-runs are safe.

Failure semantics:
    * malformed / unresolved events are skipped and recorded in
      ``SyncStats.errors``; processing continues
    * a duplicate ``tx_hash`` is a silent no-op
    * a connectivity failure (``OperationalError`` / ``InterfaceError``)
      aborts the rest of that sync type, marks the stats ``fatal`` and the
      partial stats are returned; the next scheduled run retries through
      its window overlap
    * a deadlock or serialization failure on one insert is recorded as that
      vote's error; the next run picks the vote up again
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

from podium.config import DEFAULT_PERIOD_ANCHOR, SeasonSettings, SyncSettings
from podium.constants import (
    BRANDS_PER_VOTE,
    CONNECTIVITY_ERRORS,
    VOTE_POINTS,
    cost_in_tokens,
    day_bucket,
    is_write_conflict,
    reward_amount,
    season_for,
)
from podium.engine.periods import Period, in_current_period
from podium.engine.records import LedgerVote, NewVote, SyncStats
from podium.ledger.reader import LedgerReader
from podium.services.projection_store import ProjectionStore
from podium.services.ranking_service import RankingQueue
from podium.services.streak_service import StreakService

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class InvalidVoteError(ValueError):
    """A ledger vote that can't be projected as-is."""


class SyncCoordinator:
    """Runs windowed or full syncs of ledger events into the projection.

    Parameters
    ----------
    reader / store:
        Ledger and projection adapters.
    settings:
        Batch size, worker count and lookup chunking.
    seasons:
        Season boundary used to stamp new votes.
    period_anchor:
        Anchor of the ranking periods; decides whether a vote counts toward
        the current day/week/month scores.
    streaks / ranking_queue:
        Optional downstream aggregators fed after each vote batch.
    """

    def __init__(
        self,
        reader: LedgerReader,
        store: ProjectionStore,
        *,
        settings: SyncSettings | None = None,
        seasons: SeasonSettings | None = None,
        period_anchor: datetime | None = None,
        streaks: StreakService | None = None,
        ranking_queue: RankingQueue | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.reader = reader
        self.store = store
        self.settings = settings or SyncSettings()
        self.seasons = seasons or SeasonSettings()
        self.period_anchor = period_anchor or DEFAULT_PERIOD_ANCHOR
        self.streaks = streaks
        self.ranking_queue = ranking_queue
        self.clock = clock

    # -------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------
    def sync(
        self,
        window_hours: int = 48,
        sync_power_levels: bool = True,
        sync_votes: bool = True,
        *,
        sync_brands: bool = True,
        dry_run: bool = False,
    ) -> SyncStats:
        """Run one reconciliation pass.  ``window_hours=0`` syncs all history.

        Never raises for data or connectivity problems; everything is
        reported through the returned :class:`SyncStats`.
        """
        stats = SyncStats(window_hours=window_hours, dry_run=dry_run)
        scope = "full history" if window_hours == 0 else f"last {window_hours}h"
        logger.info("Sync started (%s%s)", scope, ", dry run" if dry_run else "")

        steps: list[tuple[str, bool, Callable[[SyncStats], None]]] = [
            ("brand", sync_brands, self._sync_brands),
            ("power level", sync_power_levels, self._sync_power_levels),
            ("vote", sync_votes, self._sync_votes),
        ]
        for name, enabled, step in steps:
            if not enabled:
                continue
            try:
                step(stats)
            except CONNECTIVITY_ERRORS as exc:
                logger.error("%s sync aborted, store unreachable: %s", name.capitalize(), exc)
                stats.record_fatal(name, exc)
            except Exception as exc:
                logger.exception("%s sync failed", name.capitalize())
                stats.record_error(f"{name.capitalize()} sync error: {exc}")

        stats.finish()
        self._log_summary(stats)
        return stats

    @staticmethod
    def _log_summary(stats: SyncStats) -> None:
        level = logging.WARNING if stats.errors else logging.INFO
        logger.log(
            level,
            "Sync finished in %.1fs: brands %d checked/%d created/%d updated, "
            "users %d checked/%d updated/%d created, votes %d checked/%d inserted/%d skipped, "
            "%d errors%s",
            stats.duration_seconds,
            stats.brands_checked, stats.brands_created, stats.brands_updated,
            stats.users_checked, stats.users_updated, stats.users_created,
            stats.votes_checked, stats.votes_inserted, stats.votes_skipped,
            len(stats.errors), " (FATAL)" if stats.fatal else "",
        )
        for error in stats.errors[:20]:
            logger.warning("  %s", error)
        if len(stats.errors) > 20:
            logger.warning("  … and %d more", len(stats.errors) - 20)

    def _now_ts(self) -> float:
        return self.clock().timestamp()

    # -------------------------------------------------------------------
    # Brands
    # -------------------------------------------------------------------
    def _sync_brands(self, stats: SyncStats) -> None:
        brands = self.reader.fetch_brands(stats.window_hours, now=self._now_ts())
        stats.brands_checked = len(brands)
        if not brands:
            return

        known = self.store.brand_metadata_hashes(b.on_ledger_id for b in brands)
        for brand in brands:
            try:
                if brand.on_ledger_id not in known:
                    if not stats.dry_run:
                        self.store.create_brand(brand)
                    logger.info("Brand %d (%s) created", brand.on_ledger_id, brand.handle)
                    stats.brands_created += 1
                elif known[brand.on_ledger_id] != brand.metadata_hash:
                    if not stats.dry_run:
                        self.store.refresh_brand(brand)
                    logger.info("Brand %d metadata changed, refreshed", brand.on_ledger_id)
                    stats.brands_updated += 1
            except CONNECTIVITY_ERRORS:
                raise
            except Exception as exc:
                stats.record_error(f"Brand {brand.on_ledger_id}: {exc}")

    # -------------------------------------------------------------------
    # Power levels
    # -------------------------------------------------------------------
    def _sync_power_levels(self, stats: SyncStats) -> None:
        levels = self.reader.fetch_power_levels(stats.window_hours, now=self._now_ts())
        stats.users_checked += len(levels)
        if not levels:
            return

        # Latest ledger value per fid wins.
        latest: dict[int, int] = {}
        for level in sorted(levels, key=lambda lv: lv.timestamp or 0):
            latest[level.fid] = level.power_level

        users = self.store.users_by_fid(latest)
        for fid, level in latest.items():
            user = users.get(fid)
            if user is None:
                logger.warning("Power level: user fid=%d not projected yet, skipping", fid)
                continue
            if user.power_level == level:
                continue
            try:
                if not stats.dry_run:
                    self.store.set_power_level(fid, level)
                logger.info("User fid=%d power level %d → %d", fid, user.power_level, level)
                stats.users_updated += 1
            except CONNECTIVITY_ERRORS:
                raise
            except Exception as exc:
                stats.record_error(f"Power level fid={fid}: {exc}")

    # -------------------------------------------------------------------
    # Votes
    # -------------------------------------------------------------------
    def _sync_votes(self, stats: SyncStats) -> None:
        votes = self.reader.fetch_votes(
            stats.window_hours, now=self._now_ts(), on_error=stats.record_error,
        )
        stats.votes_checked = len(votes)
        if not votes:
            logger.info("No votes to sync")
            return

        seen = self.store.existing_tx_hashes(v.tx_hash for v in votes)
        users = {fid: u.id for fid, u in self.store.users_by_fid(v.fid for v in votes).items()}
        brand_ids = self.store.brand_id_map()

        size = max(1, self.settings.batch_size)
        for start in range(0, len(votes), size):
            batch = votes[start:start + size]
            self._sync_vote_batch(batch, stats, seen, users, brand_ids)
            logger.info(
                "Processed %d/%d votes (%d inserted)",
                min(start + size, len(votes)), len(votes), stats.votes_inserted,
            )

    def _resolve_brands(self, vote: LedgerVote, brand_ids: dict[int, int]) -> tuple[int, int, int]:
        if vote.brand_ids is None:
            raise InvalidVoteError(f"unparseable brand_ids {vote.raw_brand_ids!r}")
        if len(vote.brand_ids) != BRANDS_PER_VOTE:
            raise InvalidVoteError(
                f"has {len(vote.brand_ids)} brands, expected {BRANDS_PER_VOTE}"
            )
        missing = [b for b in vote.brand_ids if b not in brand_ids]
        if missing:
            raise InvalidVoteError(f"unknown brands {missing}")
        first, second, third = (brand_ids[b] for b in vote.brand_ids)
        return first, second, third

    def _build_vote(self, vote: LedgerVote, user_id: int, brands: tuple[int, int, int]) -> NewVote:
        occurred = vote.occurred_at
        return NewVote(
            tx_hash=vote.tx_hash,
            event_id=vote.event_id,
            user_id=user_id,
            brand_ids=brands,
            date=occurred,
            day_bucket=day_bucket(vote.timestamp),
            cost_paid=cost_in_tokens(vote.cost),
            reward_amount=reward_amount(vote.cost),
            points_earned=VOTE_POINTS,
            season=season_for(occurred, self.seasons.season_2_start),
        )

    def _sync_vote_batch(
        self,
        batch: list[LedgerVote],
        stats: SyncStats,
        seen: set[str],
        users: dict[int, int],
        brand_ids: dict[int, int],
    ) -> None:
        # Validation and user bootstrap run in ledger order.
        prepared: list[NewVote] = []
        for vote in batch:
            if vote.tx_hash in seen:
                stats.votes_skipped += 1
                continue
            try:
                brands = self._resolve_brands(vote, brand_ids)
                user_id = users.get(vote.fid)
                if user_id is None:
                    if stats.dry_run:
                        user_id = -vote.fid
                    else:
                        user_id = self.store.create_placeholder_user(vote.fid, vote.voter_address)
                    users[vote.fid] = user_id
                    stats.users_created += 1
                prepared.append(self._build_vote(vote, user_id, brands))
                seen.add(vote.tx_hash)
            except CONNECTIVITY_ERRORS:
                raise
            except Exception as exc:
                stats.record_error(f"Vote {vote.tx_hash}: {exc}")

        if stats.dry_run:
            stats.votes_inserted += len(prepared)
            return

        inserted = self._insert_all(prepared, stats)
        if not inserted:
            return

        if self.streaks is not None:
            for user_id in sorted({v.user_id for v in inserted}):
                try:
                    self.streaks.recompute_streak(user_id)
                except CONNECTIVITY_ERRORS:
                    raise
                except Exception as exc:
                    stats.record_error(f"Streak user={user_id}: {exc}")

        touched = sorted({b for v in inserted for b in v.brand_ids})
        try:
            self.store.refresh_unique_voters(touched)
        except CONNECTIVITY_ERRORS:
            raise
        except Exception as exc:
            stats.record_error(f"Unique voters for brands {touched}: {exc}")

        if self.ranking_queue is not None:
            for brand_id in touched:
                self.ranking_queue.enqueue(brand_id)

    def _insert_one(self, vote: NewVote) -> bool:
        now = self.clock()
        anchor = self.period_anchor
        return self.store.insert_vote(
            vote,
            credit_day=in_current_period(vote.date, now, Period.DAY, anchor),
            credit_week=in_current_period(vote.date, now, Period.WEEK, anchor),
            credit_month=in_current_period(vote.date, now, Period.MONTH, anchor),
        )

    def _insert_all(self, prepared: list[NewVote], stats: SyncStats) -> list[NewVote]:
        """Insert *prepared* votes, concurrently when ``max_workers > 1``."""
        if not prepared:
            return []

        workers = min(self.settings.max_workers, len(prepared))
        if workers <= 1:
            outcomes = []
            for vote in prepared:
                try:
                    outcomes.append((vote, self._insert_one(vote), None))
                except CONNECTIVITY_ERRORS as exc:
                    if is_write_conflict(exc):
                        outcomes.append((vote, False, exc))
                        continue
                    self._tally(outcomes, stats)
                    raise
                except Exception as exc:
                    outcomes.append((vote, False, exc))
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vote-insert") as pool:
                futures = [(vote, pool.submit(self._insert_one, vote)) for vote in prepared]
                outcomes = []
                fatal: BaseException | None = None
                for vote, future in futures:
                    try:
                        outcomes.append((vote, future.result(), None))
                    except CONNECTIVITY_ERRORS as exc:
                        if is_write_conflict(exc):
                            outcomes.append((vote, False, exc))
                        else:
                            fatal = fatal or exc
                    except Exception as exc:
                        outcomes.append((vote, False, exc))
                if fatal is not None:
                    self._tally(outcomes, stats)
                    raise fatal

        return self._tally(outcomes, stats)

    @staticmethod
    def _tally(outcomes: list[tuple[NewVote, bool, Exception | None]], stats: SyncStats) -> list[NewVote]:
        inserted: list[NewVote] = []
        for vote, ok, error in outcomes:
            if error is not None:
                stats.record_error(f"Vote {vote.tx_hash}: {error}")
            elif ok:
                inserted.append(vote)
                stats.votes_inserted += 1
            else:
                stats.votes_skipped += 1
        return inserted
