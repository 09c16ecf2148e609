"""
tests/test_streaks.py — Daily Streak Computation & Aggregation
===============================================================

Covers the pure streak math in ``podium.engine.streaks`` and the
``StreakService`` that persists it (high-water mark, stale reset).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from podium.database.models import Vote
from podium.engine.streaks import compute_streaks, distinct_dates
from podium.services.streak_service import StreakService

from tests.conftest import NOW, seed_brands, seed_user

TODAY = NOW.date()


def _days_ago(*offsets: int) -> list[date]:
    return [TODAY - timedelta(days=n) for n in offsets]


# ==========================================================================
# Pure computation
# ==========================================================================
class TestComputeStreaks:
    def test_no_votes(self):
        result = compute_streaks([], TODAY)
        assert (result.current, result.max) == (0, 0)

    def test_four_consecutive_days_ending_today(self):
        result = compute_streaks(_days_ago(3, 2, 1, 0), TODAY)
        assert result.current == 4
        assert result.max == 4

    def test_today_and_yesterday(self):
        result = compute_streaks(_days_ago(1, 0), TODAY)
        assert result.current == 2

    def test_latest_vote_yesterday_keeps_streak_alive(self):
        result = compute_streaks(_days_ago(3, 2, 1), TODAY)
        assert result.current == 3

    def test_gap_of_two_days_breaks_current(self):
        result = compute_streaks(_days_ago(4, 3, 2), TODAY)
        assert result.current == 0
        assert result.max == 3

    def test_isolated_old_days(self):
        """Votes on D-5 and D-3 only: nothing current, longest run is 1."""
        result = compute_streaks(_days_ago(5, 3), TODAY)
        assert (result.current, result.max) == (0, 1)

    def test_max_tracks_longest_run_not_latest(self):
        result = compute_streaks(_days_ago(10, 9, 8, 7, 6, 1, 0), TODAY)
        assert result.current == 2
        assert result.max == 5

    def test_same_day_votes_collapse(self):
        moments = [
            datetime(2026, 3, 10, 1, 0, tzinfo=NOW.tzinfo),
            datetime(2026, 3, 10, 23, 59, tzinfo=NOW.tzinfo),
            datetime(2026, 3, 9, 12, 0, tzinfo=NOW.tzinfo),
        ]
        assert distinct_dates(moments) == [date(2026, 3, 9), date(2026, 3, 10)]
        result = compute_streaks(moments, TODAY)
        assert (result.current, result.max) == (2, 2)

    def test_unsorted_input(self):
        result = compute_streaks(_days_ago(0, 2, 1), TODAY)
        assert result.current == 3


# ==========================================================================
# StreakService (database-backed)
# ==========================================================================
def _add_vote(session, tx_hash: str, user_id: int, when: datetime) -> None:
    session.add(Vote(
        tx_hash=tx_hash,
        user_id=user_id,
        brand1_id=1,
        brand2_id=2,
        brand3_id=3,
        date=when,
        day_bucket=int(when.timestamp()) // 86400,
        cost_paid=0,
        reward_amount="0",
        points_earned=3,
        season=2,
    ))
    session.commit()


class TestStreakService:
    def test_recompute_streak_stores_counters(self, db_session, store):
        seed_brands(db_session, 1, 2, 3)
        user = seed_user(db_session, 100)
        for n in range(3):
            _add_vote(db_session, f"0x{n}", user.id, NOW - timedelta(days=n))

        result = StreakService(store, clock=lambda: NOW).recompute_streak(user.id)

        assert (result.current, result.max) == (3, 3)
        row = store.get_user(user.id)
        assert (row.daily_streak, row.max_daily_streak) == (3, 3)

    def test_max_is_a_high_water_mark(self, db_session, store):
        seed_brands(db_session, 1, 2, 3)
        user = seed_user(db_session, 100, daily_streak=0, max_daily_streak=10)
        _add_vote(db_session, "0x1", user.id, NOW)

        result = StreakService(store, clock=lambda: NOW).recompute_streak(user.id)

        assert result.current == 1
        assert result.max == 10

    def test_unknown_user_returns_computed_values(self, store):
        result = StreakService(store, clock=lambda: NOW).recompute_streak(999)
        assert (result.current, result.max) == (0, 0)

    def test_recompute_all_dry_run_does_not_write(self, db_session, store):
        seed_brands(db_session, 1, 2, 3)
        user = seed_user(db_session, 100)
        _add_vote(db_session, "0x1", user.id, NOW - timedelta(days=1))
        _add_vote(db_session, "0x2", user.id, NOW)

        report = StreakService(store, clock=lambda: NOW).recompute_all(dry_run=True)

        assert report["checked"] == 1
        assert report["updated"] == 1
        assert report["changes"][0]["new"] == {"current": 2, "max": 2}
        assert report["dry_run"] is True
        assert "timestamp" in report
        assert store.get_user(user.id).daily_streak == 0

    def test_recompute_all_writes_and_is_idempotent(self, db_session, store):
        seed_brands(db_session, 1, 2, 3)
        user = seed_user(db_session, 100)
        _add_vote(db_session, "0x1", user.id, NOW)
        service = StreakService(store, clock=lambda: NOW)

        assert service.recompute_all()["updated"] == 1
        assert store.get_user(user.id).daily_streak == 1
        assert service.recompute_all()["updated"] == 0

    def test_reset_stale_streaks(self, db_session, store):
        stale = seed_user(db_session, 1, daily_streak=4, max_daily_streak=4,
                          last_vote_at=NOW - timedelta(hours=30))
        fresh = seed_user(db_session, 2, daily_streak=2, max_daily_streak=2,
                          last_vote_at=NOW - timedelta(hours=2))
        never = seed_user(db_session, 3, daily_streak=1, max_daily_streak=1)

        reset = StreakService(store, clock=lambda: NOW).reset_stale_streaks()

        assert reset == 2
        assert store.get_user(stale.id).daily_streak == 0
        assert store.get_user(stale.id).max_daily_streak == 4
        assert store.get_user(fresh.id).daily_streak == 2
        assert store.get_user(never.id).daily_streak == 0
