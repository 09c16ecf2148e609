"""
podium.worker.__main__ — Entry point for ``python -m podium.worker``
====================================================================

Wiring:
1. Load .env (connection URLs, RPC endpoint).
2. Load config.yaml (batching, cadence, season boundary).
3. Build the store, reader, aggregators and sync coordinator.
4. Run one catch-up sync, then tick the job planner forever.

Run with::

    python -m podium.worker
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

from podium.bootstrap import build_services
from podium.config import load_config
from podium.services.job_runner import JobRunner

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("podium")


async def _serve(runner: JobRunner) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass
    await runner.run_forever(stop)


def main() -> None:
    """Bootstrap and run the sync worker."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Configuration.
    try:
        cfg = load_config()
    except (FileNotFoundError, KeyError, ValueError) as exc:
        logger.critical("Config error: %s", exc)
        sys.exit(1)
    logger.info("Config loaded — service: %s", cfg.service_name)

    # 3. Services.
    try:
        services = build_services(cfg)
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)

    runner = JobRunner(
        services.store,
        services.coordinator,
        services.streaks,
        services.ranking,
        schedule=cfg.schedule,
        sync=cfg.sync,
    )

    # 4. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Podium sync worker…")
    try:
        asyncio.run(_serve(runner))
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Shutting down gracefully…")
        services.close()


if __name__ == "__main__":
    main()
