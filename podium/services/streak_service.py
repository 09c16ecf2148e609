"""
podium.services.streak_service — Daily Streak Aggregation
==========================================================

Keeps ``users.daily_streak`` and ``users.max_daily_streak`` consistent with
the projected votes.

* :meth:`StreakService.recompute_streak` — one user, called by the sync
  coordinator after each batch for every user that received a vote.
* :meth:`StreakService.recompute_all` — every user with votes; the
  operator's repair tool for drifted counters.
* :meth:`StreakService.reset_stale_streaks` — the daily job: zero the
  current streak of anyone who hasn't voted in the last 24 hours.

``max_daily_streak`` is a high-water mark and never decreases.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from podium.engine.records import StreakResult
from podium.engine.streaks import compute_streaks
from podium.services.projection_store import ProjectionStore

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class StreakService:
    def __init__(
        self,
        store: ProjectionStore,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    def recompute_streak(self, user_id: int) -> StreakResult:
        """Recompute and store the streak counters of *user_id*.

        Returns the stored values, so ``max`` reflects the high-water mark
        rather than the freshly computed longest run.
        """
        dates = self.store.vote_dates(user_id)
        computed = compute_streaks(dates, self.clock().date())
        stored = self.store.store_streak(user_id, computed.current, computed.max)
        if stored is None:
            logger.warning("Streak recompute: user %d not found", user_id)
            return computed
        return stored

    def recompute_all(self, *, dry_run: bool = False) -> dict:
        """Recompute streaks for every user that has at least one vote."""
        today = self.clock().date()
        changed: list[dict] = []
        user_ids = self.store.users_with_votes()

        for user_id in user_ids:
            user = self.store.get_user(user_id)
            if user is None:
                continue
            computed = compute_streaks(self.store.vote_dates(user_id), today)
            new_max = max(user.max_daily_streak, computed.max)
            if (user.daily_streak, user.max_daily_streak) != (computed.current, new_max):
                changed.append({
                    "user_id": user_id,
                    "fid": user.fid,
                    "old": {"current": user.daily_streak, "max": user.max_daily_streak},
                    "new": {"current": computed.current, "max": new_max},
                })
                if not dry_run:
                    self.store.store_streak(user_id, computed.current, computed.max)

        action = "would update" if dry_run else "updated"
        logger.info("Streaks: %s %d/%d users", action, len(changed), len(user_ids))

        return {
            "checked": len(user_ids),
            "updated": len(changed),
            "changes": changed,
            "dry_run": dry_run,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def reset_stale_streaks(self, now: datetime | None = None) -> int:
        """Zero ``daily_streak`` for users whose last vote is older than 24 h."""
        cutoff = (now or self.clock()) - STALE_AFTER
        reset = self.store.reset_stale_streaks(cutoff)
        logger.info("Daily streak reset: %d users zeroed (last vote before %s)", reset, cutoff.isoformat())
        return reset
