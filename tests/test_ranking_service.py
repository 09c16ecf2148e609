"""
tests/test_ranking_service.py — Brand Ranking Aggregation
==========================================================

Dense ranking, period rollover and the debounced recompute queue.  The
queue is driven with a fake timer so no test ever sleeps.
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import select

from podium.database.models import Brand
from podium.engine.periods import Period
from podium.engine.records import RankedBrand
from podium.services.ranking_service import RankingQueue, RankingService, dense_ranks


def _seed(db_session, scores: dict[int, float], *, banned: set[int] = frozenset(), **extra) -> None:
    for brand_id, score in scores.items():
        db_session.add(Brand(
            id=brand_id,
            on_ledger_id=brand_id,
            name=f"brand-{brand_id}",
            score=score,
            banned=brand_id in banned,
            **extra,
        ))
    db_session.commit()


def _ranks(db_session, column: str = "ranking") -> dict[int, int]:
    db_session.expire_all()
    return {b.id: getattr(b, column) for b in db_session.scalars(select(Brand))}


# ==========================================================================
# dense_ranks (pure)
# ==========================================================================
class TestDenseRanks:
    def test_higher_score_gets_smaller_rank(self):
        ranks = dense_ranks([
            RankedBrand(1, 10.0, 0, False),
            RankedBrand(2, 30.0, 0, False),
            RankedBrand(3, 20.0, 0, False),
        ])
        assert ranks == {2: 1, 3: 2, 1: 3}

    def test_ties_keep_previous_order_then_id(self):
        ranks = dense_ranks([
            RankedBrand(1, 5.0, 2, False),
            RankedBrand(2, 5.0, 1, False),
            RankedBrand(3, 5.0, 0, False),
            RankedBrand(4, 5.0, 0, False),
        ])
        assert ranks == {2: 1, 1: 2, 3: 3, 4: 4}

    def test_banned_brands_get_zero(self):
        ranks = dense_ranks([
            RankedBrand(1, 100.0, 1, True),
            RankedBrand(2, 1.0, 2, False),
        ])
        assert ranks == {1: 0, 2: 1}

    def test_ranks_form_a_permutation(self):
        brands = [RankedBrand(i, float(i % 4), 0, False) for i in range(1, 21)]
        ranks = dense_ranks(brands)
        assert sorted(ranks.values()) == list(range(1, 21))


# ==========================================================================
# RankingService (database-backed)
# ==========================================================================
class TestRankingService:
    def test_recompute_all_writes_ranks(self, db_session, store):
        _seed(db_session, {1: 10.0, 2: 50.0, 3: 30.0})

        updated = RankingService(store).recompute_all()

        assert updated == 3
        assert _ranks(db_session) == {2: 1, 3: 2, 1: 3}

    def test_only_changed_rows_written(self, db_session, store):
        _seed(db_session, {1: 10.0, 2: 50.0, 3: 30.0})
        service = RankingService(store)
        service.recompute_all()

        assert service.recompute_all() == 0

        db_session.get(Brand, 1).score = 99.0
        db_session.commit()
        assert service.recompute_all() == 3
        assert _ranks(db_session) == {1: 1, 2: 2, 3: 3}

    def test_banned_brand_excluded(self, db_session, store):
        _seed(db_session, {1: 100.0, 2: 50.0, 3: 10.0}, banned={1})

        RankingService(store).recompute_all()

        assert _ranks(db_session) == {1: 0, 2: 1, 3: 2}

    def test_period_columns_are_independent(self, db_session, store):
        _seed(db_session, {1: 100.0, 2: 1.0}, score_day=0.0)
        db_session.get(Brand, 2).score_day = 5.0
        db_session.commit()

        service = RankingService(store)
        service.recompute_all(Period.DAY)

        assert _ranks(db_session, "ranking_day") == {2: 1, 1: 2}
        assert _ranks(db_session, "ranking") == {1: 0, 2: 0}

    def test_recompute_periods_covers_every_period(self, db_session, store):
        _seed(db_session, {1: 1.0})
        result = RankingService(store).recompute_periods()
        assert set(result) == {"all", "day", "week", "month"}

    def test_rollover_resets_scores_and_reports_podium(self, db_session, store):
        _seed(db_session, {1: 10.0, 2: 20.0, 3: 30.0, 4: 40.0})
        for brand in db_session.scalars(select(Brand)):
            brand.score_week = brand.score
            brand.ranking_week = 5 - brand.id
        db_session.commit()

        report = RankingService(store).rollover(Period.WEEK)

        assert [b["id"] for b in report["top"]] == [4, 3, 2]
        assert report["reset"] == 4
        db_session.expire_all()
        for brand in db_session.scalars(select(Brand)):
            assert brand.score_week == 0
            assert brand.ranking_week == 0
            assert brand.score > 0

    def test_all_time_never_rolls_over(self, store):
        with pytest.raises(ValueError):
            RankingService(store).rollover(Period.ALL)
        with pytest.raises(ValueError):
            store.reset_period_scores(Period.ALL)


# ==========================================================================
# RankingQueue (debounce)
# ==========================================================================
class FakeTimer:
    instances: list[FakeTimer] = []

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False
        FakeTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


@pytest.fixture
def timers():
    FakeTimer.instances = []
    return FakeTimer.instances


class TestRankingQueue:
    def test_burst_of_enqueues_runs_once(self, timers):
        calls = []
        queue = RankingQueue(lambda: calls.append(1), debounce_seconds=10, timer_factory=FakeTimer)

        for brand_id in (1, 2, 3, 2, 1):
            queue.enqueue(brand_id)

        assert len(timers) == 5
        assert all(t.cancelled for t in timers[:-1])
        assert timers[-1].started and timers[-1].interval == 10
        assert queue.pending == {1, 2, 3}

        for timer in timers:
            timer.fire()

        assert calls == [1]
        assert queue.runs == 1
        assert queue.pending == frozenset()

    def test_enqueue_after_run_schedules_again(self, timers):
        calls = []
        queue = RankingQueue(lambda: calls.append(1), timer_factory=FakeTimer)

        queue.enqueue(1)
        timers[-1].fire()
        queue.enqueue(2)
        timers[-1].fire()

        assert calls == [1, 1]

    def test_flush_runs_immediately_and_cancels_timer(self, timers):
        calls = []
        queue = RankingQueue(lambda: calls.append(1), timer_factory=FakeTimer)
        queue.enqueue(7)

        assert queue.flush() == {7}
        assert calls == [1]
        assert timers[-1].cancelled

    def test_flush_with_nothing_pending_is_noop(self):
        calls = []
        queue = RankingQueue(lambda: calls.append(1), timer_factory=FakeTimer)
        assert queue.flush() == set()
        assert calls == []

    def test_failing_recompute_is_logged_not_raised(self, timers, caplog):
        def boom():
            raise RuntimeError("db down")

        queue = RankingQueue(boom, timer_factory=FakeTimer)
        queue.enqueue(1)
        with caplog.at_level(logging.ERROR):
            timers[-1].fire()

        assert "Debounced ranking recompute failed" in caplog.text
        assert queue.runs == 0
        assert queue.pending == {1}

    def test_failed_batch_is_kept_for_the_next_flush(self, timers):
        outcomes = [RuntimeError("db down"), None]
        calls = []

        def recompute():
            calls.append(1)
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome

        queue = RankingQueue(recompute, timer_factory=FakeTimer)
        queue.enqueue(1)
        queue.enqueue(2)

        with pytest.raises(RuntimeError):
            queue.flush()
        assert queue.pending == {1, 2}

        queue.enqueue(3)
        assert queue.flush() == {1, 2, 3}
        assert queue.pending == frozenset()
        assert queue.runs == 1
        assert len(calls) == 2

    def test_close_drops_pending(self, timers):
        queue = RankingQueue(lambda: None, timer_factory=FakeTimer)
        queue.enqueue(1)
        queue.close()
        assert queue.pending == frozenset()
        assert timers[-1].cancelled

    def test_default_timer_is_daemon_thread(self):
        timer = RankingQueue._thread_timer(60, lambda: None)
        assert timer.daemon is True
        assert timer.interval == 60

    def test_queue_drives_ranking_service(self, db_session, store, timers):
        _seed(db_session, {1: 1.0, 2: 2.0})
        service = RankingService(store)
        queue = RankingQueue(service.recompute_periods, timer_factory=FakeTimer)

        queue.enqueue(1)
        queue.enqueue(2)
        timers[-1].fire()

        assert _ranks(db_session) == {2: 1, 1: 2}
