"""
podium.database.engine — Database Connections & Async Helper
=============================================================

**Why this file exists:**
The worker talks to two databases: the **projection** it owns (read/write)
and the external **indexer** it only reads from.  Both are plain
synchronous SQLAlchemy engines.  The scheduled job loop is ``asyncio``
based, so every blocking call is shipped to a thread pool through
:func:`run_db`:

    1. The job runner's tick fires (async world).
    2. It calls ``await run_db(coordinator.sync, 48, True, True)``.
    3. ``run_db`` hands the synchronous function to ``asyncio.to_thread()``.
    4. The DB work happens on a background thread; the loop stays free.

Usage::

    from podium.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    stats = await run_db(coordinator.sync, 48, True, True)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from podium.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def _build_engine(url: str, pool_size: int) -> Engine:
    return create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_size=pool_size,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,    # Recycle connections after 1 hour
    )


def create_db_engine() -> Engine:
    """Build the projection :class:`Engine` from the ``DATABASE_URL`` env var.

    The pool is sized for one sync run with a handful of insert workers:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = _build_engine(url, pool_size=5)
    logger.info("Database engine created → %s", engine.url.host)
    return engine


def create_ledger_engine() -> Engine:
    """Build the read-only indexer :class:`Engine` from ``INDEXER_DB_URL``.

    Raises
    ------
    RuntimeError
        If ``INDEXER_DB_URL`` is not set.
    """
    url = os.getenv("INDEXER_DB_URL")
    if not url:
        raise RuntimeError(
            "INDEXER_DB_URL is not set.  "
            "Copy .env.example → .env and point it at the indexer database."
        )

    engine = _build_engine(url, pool_size=2)
    logger.info("Indexer engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`podium.database.models`.

    Safe to call on every startup.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments where
        Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Brand(name="acme"))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every blocking call made from the job loop goes through this wrapper::

        result = await run_db(ranking.recompute_all, Period.DAY)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor``.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
