"""
podium.services.repair_service — Corrupted Vote Repair
=======================================================

Finds projected votes with missing brand links and re-derives them from
the raw transaction receipt rather than from the indexer, whose decode of
that row evidently failed.

How it works:
    1. Select votes with any NULL brand slot (newest first).
    2. Skip placeholder rows (``tx_hash == claim_tx_hash``): those were
       created by a claim that arrived before its vote and have no podium
       transaction to look up.
    3. Fetch the receipt over JSON-RPC and decode the ``PodiumCreated`` log.
    4. Re-validate that all three brands exist in the projection; only then
       overwrite the brand links, ``cost_paid``, ``reward_amount`` and
       ``day_bucket``.  The newly linked brands get their unique voter
       counts recomputed.  A failed lookup or a missing brand leaves the
       row corrupted and is reported, never guessed.

Lookups run strictly one after another with a fixed delay in between to
stay under the RPC provider's rate limit.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from web3.exceptions import Web3Exception

from podium.constants import cost_in_tokens, reward_amount
from podium.engine.records import VoteRow
from podium.ledger.chain import ChainClient
from podium.services.projection_store import ProjectionStore

logger = logging.getLogger(__name__)


class RepairService:
    def __init__(
        self,
        store: ProjectionStore,
        chain: ChainClient,
        *,
        delay_seconds: float = 0.1,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.chain = chain
        self.delay_seconds = delay_seconds
        self.dry_run = dry_run
        self._sleep = sleep

    def find_corrupted_records(self) -> list[VoteRow]:
        """Votes with one or more unresolved brand links, newest first."""
        corrupted = self.store.find_corrupted_votes()
        logger.info("Found %d corrupted vote records", len(corrupted))
        return corrupted

    def repair(self, record: VoteRow) -> bool:
        """Re-derive *record* from its transaction receipt.

        Returns True only when the row was (or, in dry-run mode, would be)
        rewritten.  RPC and decode failures return False.
        """
        try:
            decoded = self.chain.find_podium_created(record.tx_hash)
        except (httpx.HTTPError, Web3Exception, ValueError) as exc:
            logger.warning("Receipt lookup failed for %s: %s", record.tx_hash, exc)
            return False

        if decoded is None:
            logger.warning("Could not extract podium data for %s", record.tx_hash)
            return False

        brand_map = self.store.brand_id_map()
        missing = [b for b in decoded.brand_ids if b not in brand_map]
        if missing:
            logger.warning(
                "Cannot repair vote %s: missing brands %s",
                record.tx_hash, ", ".join(map(str, missing)),
            )
            return False

        brands = tuple(brand_map[b] for b in decoded.brand_ids)
        if self.dry_run:
            logger.info("Would repair vote %s → brands %s", record.tx_hash, brands)
            return True

        updated = self.store.repair_vote(
            record.tx_hash,
            brands,  # type: ignore[arg-type]
            cost_paid=cost_in_tokens(decoded.cost),
            reward_amount=reward_amount(decoded.cost),
            day_bucket=decoded.day,
        )
        if updated:
            self.store.refresh_unique_voters(brands)
            logger.info("Repaired vote record %s", record.tx_hash)
        return updated

    def repair_all(self) -> dict:
        """Repair every corrupted vote, sequentially.

        Returns ``{"total", "repaired", "failed", "skipped", ...}``.
        """
        corrupted = self.find_corrupted_records()
        repaired = failed = skipped = 0
        failures: list[str] = []

        for index, record in enumerate(corrupted):
            if record.is_placeholder:
                logger.debug("Skipping placeholder vote %s", record.tx_hash)
                skipped += 1
                continue

            if self.repair(record):
                repaired += 1
            else:
                failed += 1
                failures.append(record.tx_hash)

            if self.delay_seconds and index < len(corrupted) - 1:
                self._sleep(self.delay_seconds)

        report = {
            "total": len(corrupted),
            "repaired": repaired,
            "failed": failed,
            "skipped": skipped,
            "failures": failures,
            "dry_run": self.dry_run,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        logger.info(
            "Data repair completed: total=%d repaired=%d failed=%d skipped=%d",
            len(corrupted), repaired, failed, skipped,
        )
        return report

    def validate_integrity(self) -> dict:
        return validate_integrity(self.store)


def validate_integrity(store: ProjectionStore) -> dict:
    """Count corrupted and zero-cost votes without touching anything."""
    total = store.count_votes()
    corrupted = len(store.find_corrupted_votes())
    zero_cost = store.count_zero_cost_votes()

    issues: list[str] = []
    if zero_cost:
        issues.append(f"{zero_cost} votes have zero cost paid")
    if corrupted:
        issues.append(f"{corrupted} votes have NULL brand associations")

    report = {
        "total_votes": total,
        "valid_votes": total - corrupted,
        "corrupted_votes": corrupted,
        "issues": issues,
    }
    logger.info(
        "Integrity validation: %d total, %d corrupted, %d issues",
        total, corrupted, len(issues),
    )
    return report
