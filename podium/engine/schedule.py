"""
podium.engine.schedule — Pure Job Planning
===========================================

The scheduled jobs are modelled as a single pure function::

    plan_jobs(now, state, settings) -> (new_state, actions)

The job runner calls it on every tick, executes the returned actions and
persists the new state.  Nothing here reads a clock or touches a database,
so every cadence rule is unit-testable with hand-made datetimes.

Rules
-----
* **Period rollover** — when the anchored index of the day/week/month
  period advances past the last one observed.  The first observation of a
  period only records its index.
* **Daily job** — once per UTC date, at or after ``daily_hour_utc``:
  reset stale streaks, then an incremental sync over ``daily_window_hours``.
* **Votes-only sync** — every ``votes_sync_interval_minutes``, skipped on
  ticks that already run the daily sync.
* **Ranking recompute** — every ``ranking_interval_minutes`` and after any
  rollover.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta

from podium.config import ScheduleSettings
from podium.engine.periods import ROLLING_PERIODS, Period, period_index

__all__ = ["ActionKind", "Action", "ScheduleState", "plan_jobs"]


class ActionKind(enum.StrEnum):
    ROLLOVER = "rollover"
    RESET_STREAKS = "reset_streaks"
    SYNC = "sync"
    RECOMPUTE_RANKINGS = "recompute_rankings"


@dataclass(frozen=True, slots=True)
class Action:
    kind: ActionKind
    period: Period | None = None
    window_hours: int = 0
    votes_only: bool = False

    def describe(self) -> str:
        if self.kind is ActionKind.ROLLOVER:
            return f"rollover:{self.period}"
        if self.kind is ActionKind.SYNC:
            scope = "votes" if self.votes_only else "all"
            return f"sync:{scope}:{self.window_hours}h"
        return str(self.kind)


@dataclass(frozen=True, slots=True)
class ScheduleState:
    """Everything the planner remembers between ticks."""

    last_daily_run: date | None = None
    period_indexes: dict[str, int] = field(default_factory=dict)
    last_votes_sync: datetime | None = None
    last_ranking_run: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "last_daily_run": self.last_daily_run.isoformat() if self.last_daily_run else None,
            "period_indexes": dict(self.period_indexes),
            "last_votes_sync": self.last_votes_sync.isoformat() if self.last_votes_sync else None,
            "last_ranking_run": self.last_ranking_run.isoformat() if self.last_ranking_run else None,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> ScheduleState:
        if not data:
            return cls()

        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        daily = data.get("last_daily_run")
        return cls(
            last_daily_run=date.fromisoformat(daily) if daily else None,
            period_indexes={str(k): int(v) for k, v in (data.get("period_indexes") or {}).items()},
            last_votes_sync=_dt(data.get("last_votes_sync")),
            last_ranking_run=_dt(data.get("last_ranking_run")),
        )


def _due(last: datetime | None, now: datetime, interval: timedelta) -> bool:
    return last is not None and now - last >= interval


def plan_jobs(
    now: datetime,
    state: ScheduleState,
    settings: ScheduleSettings,
) -> tuple[ScheduleState, list[Action]]:
    """Decide which jobs are due at *now* given the remembered *state*.

    Returns the updated state and the ordered list of actions to execute.
    """
    actions: list[Action] = []
    indexes = dict(state.period_indexes)

    # Period rollovers
    for period in ROLLING_PERIODS:
        current = period_index(now, period, settings.period_anchor)
        previous = indexes.get(period.value)
        if previous is not None and current > previous:
            actions.append(Action(ActionKind.ROLLOVER, period=period))
        indexes[period.value] = current
    rolled_over = bool(actions)

    # Daily job
    last_daily_run = state.last_daily_run
    daily_sync = False
    if now.hour >= settings.daily_hour_utc and state.last_daily_run != now.date():
        actions.append(Action(ActionKind.RESET_STREAKS))
        actions.append(Action(ActionKind.SYNC, window_hours=settings.daily_window_hours))
        last_daily_run = now.date()
        daily_sync = True

    # Frequent votes-only sync
    last_votes_sync = state.last_votes_sync
    if last_votes_sync is None or daily_sync:
        last_votes_sync = now
    elif _due(last_votes_sync, now, timedelta(minutes=settings.votes_sync_interval_minutes)):
        actions.append(Action(
            ActionKind.SYNC,
            window_hours=settings.votes_sync_window_hours,
            votes_only=True,
        ))
        last_votes_sync = now

    # Ranking recompute
    last_ranking_run = state.last_ranking_run
    ranking_interval = timedelta(minutes=settings.ranking_interval_minutes)
    if rolled_over or _due(last_ranking_run, now, ranking_interval):
        actions.append(Action(ActionKind.RECOMPUTE_RANKINGS))
        last_ranking_run = now
    elif last_ranking_run is None:
        last_ranking_run = now

    new_state = replace(
        state,
        last_daily_run=last_daily_run,
        period_indexes=indexes,
        last_votes_sync=last_votes_sync,
        last_ranking_run=last_ranking_run,
    )
    return new_state, actions
