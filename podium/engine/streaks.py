"""
podium.engine.streaks — Consecutive-Day Streak Math
====================================================

Pure computation over the set of UTC calendar dates on which a user voted.
Several votes on the same day collapse to a single date.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta

from podium.engine.records import StreakResult

__all__ = ["compute_streaks", "distinct_dates"]

_ONE_DAY = timedelta(days=1)


def distinct_dates(moments: Iterable[datetime | date]) -> list[date]:
    """Distinct calendar dates, ascending.  Datetimes must already be UTC."""
    days = {m.date() if isinstance(m, datetime) else m for m in moments}
    return sorted(days)


def compute_streaks(moments: Iterable[datetime | date], today: date) -> StreakResult:
    """Return the current and longest streak of consecutive voting days.

    The current streak is 0 when the latest vote is older than yesterday;
    otherwise it counts back from the latest vote until the first gap.
    """
    days = distinct_dates(moments)
    if not days:
        return StreakResult(current=0, max=0)

    longest = run = 1
    for prev, cur in zip(days, days[1:]):
        if cur - prev == _ONE_DAY:
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    current = 0
    if today - days[-1] <= _ONE_DAY:
        current = 1
        expected = days[-1] - _ONE_DAY
        for day in reversed(days[:-1]):
            if day != expected:
                break
            current += 1
            expected -= _ONE_DAY

    return StreakResult(current=current, max=longest)
