"""
podium.services.diagnostics_service — Ledger vs Projection Report
==================================================================

Read-only checks behind ``podium sync --analyze`` and
``podium audit-points``.  Nothing here writes.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from podium.ledger.reader import LedgerReader
from podium.services.projection_store import ProjectionStore

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10


def analyze_sync_gap(
    reader: LedgerReader,
    store: ProjectionStore,
    window_hours: int,
    now: datetime | None = None,
) -> dict:
    """Compare the ledger window with what the projection holds.

    Returns counts plus samples of missing transactions and users whose
    points disagree with their votes.
    """
    now = now or datetime.now(UTC)
    ledger_votes = reader.fetch_votes(window_hours, now=now.timestamp())
    hashes = [v.tx_hash for v in ledger_votes]
    projected = store.existing_tx_hashes(hashes)
    missing = [h for h in hashes if h not in projected]

    since = None if window_hours == 0 else now - timedelta(hours=window_hours)
    corrupted = store.find_corrupted_votes()
    mismatches = store.points_mismatches()

    report = {
        "window_hours": window_hours,
        "ledger_votes": len(ledger_votes),
        "projected_votes": store.count_votes(since),
        "missing_votes": len(missing),
        "missing_sample": missing[:SAMPLE_SIZE],
        "corrupted_votes": len(corrupted),
        "points_mismatches": len(mismatches),
        "points_mismatch_sample": mismatches[:SAMPLE_SIZE],
        "timestamp": now.isoformat(),
    }

    if missing:
        logger.warning(
            "Analyze: %d/%d ledger votes missing from projection",
            len(missing), len(ledger_votes),
        )
    else:
        logger.info("Analyze: all %d ledger votes projected", len(ledger_votes))
    return report


def audit_points(store: ProjectionStore, limit: int = 50) -> list[dict]:
    """Users whose stored points differ from their votes' ``points_earned``.

    Sorted by the absolute size of the drift, largest first.
    """
    rows = store.points_mismatches()
    rows.sort(key=lambda r: abs(r["diff"]), reverse=True)
    logger.info("Points audit: %d users drifted", len(rows))
    return rows[:limit]
