"""
podium.services.ranking_service — Brand Ranking Aggregation
============================================================

Two pieces:

* :class:`RankingService` — full dense re-rank of all brands for a period,
  plus the period rollover that zeroes a closing period's scores.
* :class:`RankingQueue` — debounced trigger.  Score-changing writes call
  :meth:`RankingQueue.enqueue`; every call restarts a single timer, and
  once the queue has been quiet for ``debounce_seconds`` one recompute runs
  for everything enqueued since the last run.  A sync batch that touches
  fifty brands therefore costs one re-sort instead of fifty.

Ordering: score descending, then the previous rank (unranked last), then
brand id.  Banned brands are excluded and carry rank 0.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from podium.engine.periods import ROLLING_PERIODS, Period
from podium.engine.records import RankedBrand
from podium.services.projection_store import ProjectionStore

logger = logging.getLogger(__name__)


def dense_ranks(brands: list[RankedBrand]) -> dict[int, int]:
    """Assign ranks 1..N to non-banned *brands*; banned brands get 0."""
    eligible = [b for b in brands if not b.banned]
    eligible.sort(key=lambda b: (-b.score, b.rank if b.rank > 0 else float("inf"), b.id))
    ranks = {b.id: position for position, b in enumerate(eligible, start=1)}
    ranks.update({b.id: 0 for b in brands if b.banned})
    return ranks


class RankingService:
    def __init__(self, store: ProjectionStore) -> None:
        self.store = store

    def recompute_all(self, period: Period = Period.ALL) -> int:
        """Re-rank every brand for *period*; write only changed rows.

        Returns the number of rows whose rank changed.
        """
        brands = self.store.ranked_brands(period)
        ranks = dense_ranks(brands)
        changed = {b.id: ranks[b.id] for b in brands if b.rank != ranks[b.id]}
        updated = self.store.write_ranks(period, changed)
        logger.info(
            "Ranking[%s]: %d brands ranked, %d updated",
            period, sum(1 for b in brands if not b.banned), updated,
        )
        return updated

    def recompute_periods(self) -> dict[str, int]:
        """Recompute the all-time leaderboard and every rolling period."""
        return {str(period): self.recompute_all(period) for period in Period}

    def rollover(self, period: Period) -> dict:
        """Close *period*: record its podium, then zero its scores and ranks."""
        if period not in ROLLING_PERIODS:
            raise ValueError(f"cannot roll over period {period!r}")

        top = self.store.top_brands(period, limit=3)
        reset = self.store.reset_period_scores(period)
        if top:
            logger.info(
                "Period %s closed. Podium: %s",
                period, ", ".join(f"#{i} {b['name']} ({b['score']:.1f})" for i, b in enumerate(top, 1)),
            )
        logger.info("Period %s rollover: %d brands reset", period, reset)
        return {
            "period": str(period),
            "top": top,
            "reset": reset,
            "timestamp": datetime.now(UTC).isoformat(),
        }


class RankingQueue:
    """Debounced ranking trigger owning one timer handle and a pending set.

    Parameters
    ----------
    recompute:
        Called with no arguments when the quiet period elapses.
    debounce_seconds:
        Quiet period; every :meth:`enqueue` restarts it.
    timer_factory:
        ``(interval, callback) -> timer`` with ``start()``/``cancel()``.
        Defaults to :class:`threading.Timer`; tests inject a fake.
    """

    def __init__(
        self,
        recompute: Callable[[], Any],
        debounce_seconds: float = 10.0,
        timer_factory: Callable[[float, Callable[[], None]], Any] | None = None,
    ) -> None:
        self._recompute = recompute
        self.debounce_seconds = debounce_seconds
        self._timer_factory = timer_factory or self._thread_timer
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._pending: set[int] = set()
        self._timer: Any = None
        self.runs = 0

    @staticmethod
    def _thread_timer(interval: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(interval, callback)
        timer.daemon = True
        return timer

    @property
    def pending(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._pending)

    def enqueue(self, brand_id: int) -> None:
        """Mark *brand_id* as changed and restart the quiet-period timer."""
        with self._lock:
            self._pending.add(brand_id)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self.debounce_seconds, self._fire)
            self._timer.start()

    def _fire(self) -> None:
        try:
            self.flush()
        except Exception:
            logger.exception("Debounced ranking recompute failed")

    def flush(self) -> set[int]:
        """Run the pending recompute now.  Returns the brand ids it covered.

        If the recompute raises, the batch goes back into the pending set
        and the exception propagates.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            batch = set(self._pending)
            self._pending.clear()

        if not batch:
            return batch

        with self._run_lock:
            logger.info("Ranking queue: recomputing after %d brand changes", len(batch))
            try:
                self._recompute()
            except Exception:
                # Keep the batch so the next flush or enqueue covers it.
                with self._lock:
                    self._pending |= batch
                raise
            self.runs += 1
        return batch

    def close(self) -> None:
        """Cancel the timer and drop anything still pending."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()
