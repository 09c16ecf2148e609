"""
podium.services.job_runner — Scheduled Job Execution
=====================================================

The impure half of scheduling.  On every tick the runner:

    1. Loads the persisted :class:`ScheduleState` from ``job_state``.
    2. Calls the pure :func:`plan_jobs` with the current time.
    3. Executes each returned action.  Failures are logged with
       ``logger.exception`` and never stop the remaining actions or later
       ticks.
    4. Persists the new state.

The async :meth:`JobRunner.run_forever` loop wraps ``tick`` in
:func:`run_db` so the blocking database work stays off the event loop.
On startup it runs one incremental catch-up sync before the first tick.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from podium.config import ScheduleSettings, SyncSettings
from podium.database.engine import run_db
from podium.engine.schedule import Action, ActionKind, ScheduleState, plan_jobs
from podium.services.projection_store import ProjectionStore
from podium.services.ranking_service import RankingService
from podium.services.streak_service import StreakService
from podium.services.sync_service import SyncCoordinator

logger = logging.getLogger(__name__)

STATE_KEY = "scheduler"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class JobRunner:
    def __init__(
        self,
        store: ProjectionStore,
        coordinator: SyncCoordinator,
        streaks: StreakService,
        ranking: RankingService,
        *,
        schedule: ScheduleSettings,
        sync: SyncSettings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.streaks = streaks
        self.ranking = ranking
        self.schedule = schedule
        self.sync_settings = sync
        self.clock = clock

    # -------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------
    def load_state(self) -> ScheduleState:
        return ScheduleState.from_dict(self.store.load_state(STATE_KEY))

    def save_state(self, state: ScheduleState) -> None:
        self.store.save_state(STATE_KEY, state.to_dict())

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------
    def execute(self, action: Action, now: datetime) -> None:
        """Run a single planned action."""
        if action.kind is ActionKind.ROLLOVER:
            self.ranking.rollover(action.period)
        elif action.kind is ActionKind.RESET_STREAKS:
            self.streaks.reset_stale_streaks(now)
        elif action.kind is ActionKind.SYNC:
            stats = self.coordinator.sync(
                action.window_hours,
                sync_power_levels=not action.votes_only,
                sync_votes=True,
                sync_brands=not action.votes_only,
            )
            if stats.fatal:
                logger.error("Scheduled %s ended with a fatal error", action.describe())
        elif action.kind is ActionKind.RECOMPUTE_RANKINGS:
            self.ranking.recompute_periods()
        else:
            raise ValueError(f"unknown action: {action!r}")

    def tick(self, now: datetime | None = None) -> list[Action]:
        """Plan and run everything due at *now*.  Returns the planned actions."""
        now = now or self.clock()
        state = self.load_state()
        new_state, actions = plan_jobs(now, state, self.schedule)

        for action in actions:
            logger.info("Running scheduled job %s", action.describe())
            try:
                self.execute(action, now)
            except Exception:
                logger.exception("Scheduled job failed", extra={"task": action.describe()})

        self.save_state(new_state)
        return actions

    def catch_up(self) -> None:
        """One incremental sync right after startup."""
        window = self.sync_settings.incremental_window_hours
        logger.info("Startup catch-up sync (last %dh)", window)
        try:
            self.coordinator.sync(window)
        except Exception:
            logger.exception("Startup catch-up sync failed", extra={"task": "catch_up"})

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Tick every ``tick_seconds`` until *stop* is set."""
        stop = stop or asyncio.Event()
        await run_db(self.catch_up)

        while not stop.is_set():
            try:
                await run_db(self.tick)
            except Exception:
                logger.exception("Scheduler tick failed", extra={"task": "tick"})
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.schedule.tick_seconds)
            except TimeoutError:
                pass
