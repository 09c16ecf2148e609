"""
podium.engine.periods — Epoch-Anchored Ranking Periods
=======================================================

Period boundaries are derived from a fixed anchor plus a whole number of
elapsed periods, never from the wall clock of the job that happens to be
running.  A rollover that fires at 00:07 instead of 00:00 therefore still
lands in the same cycle.

* ``DAY``   — 24 h periods starting at the anchor's time of day.
* ``WEEK``  — 7 d periods starting at the anchor (Saturday 00:00 UTC by default).
* ``MONTH`` — calendar months (1st, 00:00 UTC); index 0 is the anchor's month.
* ``ALL``   — the all-time leaderboard; a single period that never rolls over.

Pure functions, no I/O.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime, timedelta

__all__ = ["Period", "period_index", "period_start", "period_bounds", "in_current_period"]

_DAY = timedelta(days=1)
_WEEK = timedelta(days=7)


class Period(enum.StrEnum):
    """Leaderboard periods.  Values double as CLI choices."""
    ALL = "all"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


ROLLING_PERIODS: tuple[Period, ...] = (Period.DAY, Period.WEEK, Period.MONTH)


def _as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return when.replace(tzinfo=UTC)
    return when.astimezone(UTC)


def period_index(when: datetime, period: Period, anchor: datetime) -> int:
    """Number of whole *period* lengths elapsed between *anchor* and *when*.

    Negative for instants before the anchor.
    """
    when = _as_utc(when)
    anchor = _as_utc(anchor)

    if period is Period.ALL:
        return 0
    if period is Period.DAY:
        return (when - anchor) // _DAY
    if period is Period.WEEK:
        return (when - anchor) // _WEEK
    if period is Period.MONTH:
        return (when.year - anchor.year) * 12 + (when.month - anchor.month)
    raise ValueError(f"unknown period: {period!r}")


def period_start(index: int, period: Period, anchor: datetime) -> datetime:
    """Inverse of :func:`period_index`: the instant period *index* begins."""
    anchor = _as_utc(anchor)

    if period is Period.ALL:
        return datetime.min.replace(tzinfo=UTC)
    if period is Period.DAY:
        return anchor + index * _DAY
    if period is Period.WEEK:
        return anchor + index * _WEEK
    if period is Period.MONTH:
        months = anchor.year * 12 + (anchor.month - 1) + index
        return datetime(months // 12, months % 12 + 1, 1, tzinfo=UTC)
    raise ValueError(f"unknown period: {period!r}")


def period_bounds(when: datetime, period: Period, anchor: datetime) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` interval of the period containing *when*."""
    if period is Period.ALL:
        return datetime.min.replace(tzinfo=UTC), datetime.max.replace(tzinfo=UTC)
    index = period_index(when, period, anchor)
    return period_start(index, period, anchor), period_start(index + 1, period, anchor)


def in_current_period(when: datetime, now: datetime, period: Period, anchor: datetime) -> bool:
    """True if *when* falls inside the period that contains *now*."""
    return period_index(when, period, anchor) == period_index(now, period, anchor)
