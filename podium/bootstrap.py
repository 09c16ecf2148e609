"""
podium.bootstrap — Service Wiring
==================================

Builds the engines, adapters and services shared by the worker and the
operator CLI from ``.env`` and ``config.yaml``.

Wiring:
1. Projection engine from ``DATABASE_URL``; tables ensured.
2. Indexer engine from ``INDEXER_DB_URL`` (schema ``INDEXER_DB_SCHEMA``).
3. Store, streak and ranking services; the ranking queue debounces into
   :meth:`RankingService.recompute_periods`.
4. The sync coordinator, fed by the streak service and ranking queue.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from podium.config import PodiumConfig
from podium.database.engine import create_db_engine, create_ledger_engine, init_db
from podium.ledger.chain import ChainClient
from podium.ledger.reader import LedgerReader
from podium.services.projection_store import ProjectionStore
from podium.services.ranking_service import RankingQueue, RankingService
from podium.services.repair_service import RepairService
from podium.services.streak_service import StreakService
from podium.services.sync_service import SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    cfg: PodiumConfig
    store: ProjectionStore
    reader: LedgerReader
    streaks: StreakService
    ranking: RankingService
    ranking_queue: RankingQueue
    coordinator: SyncCoordinator

    def close(self) -> None:
        """Run any pending ranking recompute, then release the timer and engines.

        A failing final recompute is logged; shutdown carries on.
        """
        try:
            self.ranking_queue.flush()
        except Exception:
            logger.exception("Final ranking recompute failed during shutdown")
        finally:
            self.ranking_queue.close()
            self.store.engine.dispose()
            self.reader.engine.dispose()


def build_services(cfg: PodiumConfig, *, ledger: bool = True) -> Services:
    """Create every long-lived service from environment and *cfg*.

    Raises
    ------
    RuntimeError
        If a required connection URL is missing from the environment.
    """
    engine = create_db_engine()
    init_db(engine)
    store = ProjectionStore(engine, lookup_chunk_size=cfg.sync.lookup_chunk_size)

    reader = LedgerReader(
        create_ledger_engine() if ledger else engine,
        schema=os.getenv("INDEXER_DB_SCHEMA", "public"),
    )

    streaks = StreakService(store)
    ranking = RankingService(store)
    queue = RankingQueue(ranking.recompute_periods, debounce_seconds=cfg.ranking.debounce_seconds)
    coordinator = SyncCoordinator(
        reader,
        store,
        settings=cfg.sync,
        seasons=cfg.seasons,
        period_anchor=cfg.schedule.period_anchor,
        streaks=streaks,
        ranking_queue=queue,
    )
    return Services(
        cfg=cfg,
        store=store,
        reader=reader,
        streaks=streaks,
        ranking=ranking,
        ranking_queue=queue,
        coordinator=coordinator,
    )


def build_repair_service(services: Services, *, dry_run: bool = False) -> RepairService:
    """Repair service backed by the chain RPC in ``BASE_RPC_URL``.

    Raises
    ------
    RuntimeError
        If ``BASE_RPC_URL`` or ``PODIUM_CONTRACT_ADDRESS`` is not set.
    """
    rpc_url = os.getenv("BASE_RPC_URL")
    contract = os.getenv("PODIUM_CONTRACT_ADDRESS")
    if not rpc_url or not contract:
        raise RuntimeError(
            "BASE_RPC_URL and PODIUM_CONTRACT_ADDRESS must be set for repairs.  "
            "Copy .env.example → .env and fill them in."
        )

    repair_cfg = services.cfg.repair
    chain = ChainClient(
        rpc_url,
        contract,
        timeout=repair_cfg.rpc_timeout_seconds,
    )
    return RepairService(
        services.store,
        chain,
        delay_seconds=repair_cfg.delay_seconds,
        dry_run=dry_run,
    )
