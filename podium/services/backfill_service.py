"""
podium.services.backfill_service — Season Backfill
===================================================

One-shot utility that stamps ``votes.season`` from each vote's date.
Votes before the season-2 launch are season 1, the rest season 2.
Rows that already carry the right season are left alone, so the backfill
is safe to re-run.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, or_, select, update

from podium.database.engine import get_session
from podium.database.models import Vote

logger = logging.getLogger(__name__)


def backfill_seasons(
    engine: Engine,
    season_2_start: datetime,
    *,
    dry_run: bool = False,
) -> dict:
    """Set ``season`` on every vote whose stored value is missing or wrong.

    Args:
        engine: SQLAlchemy engine.
        season_2_start: First instant of season 2.
        dry_run: If True, count but don't write.

    Returns:
        ``{"season_1": N, "season_2": M, "updated": K, ...}``
    """
    season_1_wrong = or_(Vote.season.is_(None), Vote.season != 1)
    season_2_wrong = or_(Vote.season.is_(None), Vote.season != 2)

    with get_session(engine) as session:
        season_1 = session.scalar(
            select(func.count()).select_from(Vote).where(Vote.date < season_2_start)
        ) or 0
        season_2 = session.scalar(
            select(func.count()).select_from(Vote).where(Vote.date >= season_2_start)
        ) or 0

        if dry_run:
            updated = session.scalar(
                select(func.count()).select_from(Vote).where(or_(
                    (Vote.date < season_2_start) & season_1_wrong,
                    (Vote.date >= season_2_start) & season_2_wrong,
                ))
            ) or 0
        else:
            updated = session.execute(
                update(Vote)
                .where(Vote.date < season_2_start, season_1_wrong)
                .values(season=1)
            ).rowcount
            updated += session.execute(
                update(Vote)
                .where(Vote.date >= season_2_start, season_2_wrong)
                .values(season=2)
            ).rowcount

    action = "would update" if dry_run else "updated"
    logger.info(
        "Season backfill: %s %d votes (season 1: %d, season 2: %d)",
        action, updated, season_1, season_2,
    )

    return {
        "season_1": season_1,
        "season_2": season_2,
        "updated": updated,
        "dry_run": dry_run,
        "timestamp": datetime.now(UTC).isoformat(),
    }
