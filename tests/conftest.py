"""
tests/conftest.py — Shared Test Fixtures
=========================================

Two in-memory SQLite databases per test: the projection (built from the
ORM metadata) and a stand-in for the external indexer (built from the
indexer's raw DDL).  SQLite exposes the default schema as ``main``, which
is what the ledger reader is pointed at.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from podium.config import SyncSettings
from podium.database.models import Base, Brand, User
from podium.ledger.reader import LedgerReader
from podium.services.projection_store import ProjectionStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

INDEXER_DDL = [
    """
    CREATE TABLE votes (
        id TEXT PRIMARY KEY,
        voter TEXT,
        fid INTEGER NOT NULL,
        day INTEGER,
        brand_ids TEXT,
        cost TEXT,
        block_number INTEGER,
        transaction_hash TEXT NOT NULL,
        timestamp INTEGER NOT NULL
    )
    """,
    "CREATE TABLE users (fid INTEGER PRIMARY KEY, brnd_power_level INTEGER NOT NULL DEFAULT 0)",
    "CREATE TABLE brnd_power_level_ups (fid INTEGER NOT NULL, level INTEGER NOT NULL, timestamp INTEGER NOT NULL)",
    """
    CREATE TABLE brands (
        id INTEGER PRIMARY KEY,
        fid INTEGER,
        wallet_address TEXT,
        handle TEXT NOT NULL,
        metadata_hash TEXT,
        created_at INTEGER,
        block_number INTEGER,
        transaction_hash TEXT
    )
    """,
]


def _memory_engine() -> Engine:
    return create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all projection tables."""
    engine = _memory_engine()
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session on the projection that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def ledger_engine() -> Engine:
    """In-memory SQLite engine shaped like the indexer database."""
    engine = _memory_engine()
    with engine.begin() as conn:
        for ddl in INDEXER_DDL:
            conn.execute(text(ddl))
    return engine


@pytest.fixture
def store(db_engine: Engine) -> ProjectionStore:
    return ProjectionStore(db_engine, lookup_chunk_size=2)


@pytest.fixture
def reader(ledger_engine: Engine) -> LedgerReader:
    return LedgerReader(ledger_engine, schema="main")


@pytest.fixture
def sync_settings() -> SyncSettings:
    """Small batches, no thread pool (SQLite shares one connection)."""
    return SyncSettings(batch_size=2, max_workers=1, lookup_chunk_size=2)


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------
def ts(when: datetime) -> int:
    return int(when.timestamp())


def add_ledger_vote(
    engine: Engine,
    tx_hash: str,
    fid: int,
    brand_ids: list[int] | str,
    *,
    cost: int = 100,
    timestamp: int | None = None,
    event_id: str | None = None,
    voter: str = "0xabc0000000000000000000000000000000000001",
) -> None:
    stamp = ts(NOW) - 3600 if timestamp is None else timestamp
    raw = brand_ids if isinstance(brand_ids, str) else json.dumps(brand_ids)
    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO votes (id, voter, fid, day, brand_ids, cost, block_number, "
                "transaction_hash, timestamp) "
                "VALUES (:id, :voter, :fid, :day, :brand_ids, :cost, :block, :tx, :ts)"
            ),
            {
                "id": event_id or f"evt-{tx_hash}",
                "voter": voter,
                "fid": fid,
                "day": stamp // 86400,
                "brand_ids": raw,
                "cost": str(cost),
                "block": 1000,
                "tx": tx_hash,
                "ts": stamp,
            },
        )


def add_ledger_brand(
    engine: Engine,
    on_ledger_id: int,
    handle: str,
    *,
    metadata_hash: str = "Qm1",
    created_at: int | None = None,
) -> None:
    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO brands (id, fid, wallet_address, handle, metadata_hash, created_at, "
                "block_number, transaction_hash) "
                "VALUES (:id, :fid, :wallet, :handle, :hash, :created, 1, :tx)"
            ),
            {
                "id": on_ledger_id,
                "fid": 9000 + on_ledger_id,
                "wallet": f"0x{on_ledger_id:040x}",
                "handle": handle,
                "hash": metadata_hash,
                "created": ts(NOW) - 3600 if created_at is None else created_at,
                "tx": f"0xbrand{on_ledger_id}",
            },
        )


def add_ledger_power_level(engine: Engine, fid: int, level: int, *, timestamp: int | None = None) -> None:
    stamp = ts(NOW) - 3600 if timestamp is None else timestamp
    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO users (fid, brnd_power_level) VALUES (:fid, :level) "
                "ON CONFLICT (fid) DO UPDATE SET brnd_power_level = :level"
            ),
            {"fid": fid, "level": level},
        )
        conn.execute(
            text("INSERT INTO brnd_power_level_ups (fid, level, timestamp) VALUES (:fid, :level, :ts)"),
            {"fid": fid, "level": level, "ts": stamp},
        )


def seed_brands(session: Session, *on_ledger_ids: int) -> None:
    """Projection brands whose id equals their on-ledger id."""
    for brand_id in on_ledger_ids:
        session.add(Brand(id=brand_id, on_ledger_id=brand_id, name=f"brand-{brand_id}", metadata_hash="Qm1"))
    session.commit()


def seed_user(session: Session, fid: int, **fields) -> User:
    user = User(fid=fid, username=f"name_{fid}", **fields)
    session.add(user)
    session.commit()
    return user
