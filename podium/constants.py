"""
podium.constants — Shared Constants & Formulas
===============================================

Single source of truth for the vote economics: the flat points award,
the 60/30/10 podium split, wei conversion, day buckets and seasons.
Import from here instead of duplicating in the sync and repair paths.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import InterfaceError, OperationalError

# ---------------------------------------------------------------------------
# Vote economics
# ---------------------------------------------------------------------------
VOTE_POINTS = 3                      # flat award for casting a podium vote
PODIUM_WEIGHTS: tuple[float, float, float] = (0.6, 0.3, 0.1)
WEI_PER_TOKEN = 10 ** 18
REWARD_MULTIPLIER = 10               # reward = cost * 10, in wei
SECONDS_PER_DAY = 86_400
BRANDS_PER_VOTE = 3

# Connectivity failures that abort the remainder of a sync type.
CONNECTIVITY_ERRORS: tuple[type[Exception], ...] = (OperationalError, InterfaceError)

# PostgreSQL SQLSTATEs for deadlock and serialization failure; these also
# arrive as OperationalError but only concern the one transaction.
WRITE_CONFLICT_SQLSTATES = frozenset({"40P01", "40001"})


# ---------------------------------------------------------------------------
# Formulas — THE single canonical implementation
# ---------------------------------------------------------------------------
def day_bucket(timestamp: int) -> int:
    """Integer day index for a unix *timestamp* (seconds)."""
    return int(timestamp) // SECONDS_PER_DAY


def cost_in_tokens(cost_wei: int) -> int:
    """Whole tokens paid for a podium; fractional tokens are truncated."""
    return int(cost_wei) // WEI_PER_TOKEN


def reward_amount(cost_wei: int) -> str:
    """Reward owed for a podium, in wei, as a decimal string.

    Stored as text because the value overflows 64-bit integer columns.
    """
    return str(int(cost_wei) * REWARD_MULTIPLIER)


def podium_scores(cost_paid: int | float) -> tuple[float, float, float]:
    """Split *cost_paid* across the three podium slots (60/30/10)."""
    return tuple(weight * cost_paid for weight in PODIUM_WEIGHTS)  # type: ignore[return-value]


def is_write_conflict(exc: BaseException) -> bool:
    """True when a DB error is a lost lock race rather than lost connectivity."""
    return getattr(getattr(exc, "orig", None), "pgcode", None) in WRITE_CONFLICT_SQLSTATES


def season_for(when: datetime, season_2_start: datetime) -> int:
    """Season 1 before the season-2 launch, season 2 on and after it."""
    return 2 if when >= season_2_start else 1
