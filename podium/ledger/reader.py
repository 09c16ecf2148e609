"""
podium.ledger.reader — Indexer Read Client
===========================================

Read-only, windowed or full queries against the external indexer database.
Rows are decoded into :mod:`podium.engine.records` types right here, so the
coordinator never sees raw result rows.

``window_hours == 0`` means "all history"; otherwise only rows whose
``timestamp`` (unix seconds) is at or after ``now - window_hours`` are
returned.  Votes always come back in ascending timestamp order.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation

from sqlalchemy import Engine, text

from podium.engine.records import LedgerBrand, LedgerPowerLevel, LedgerVote

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def window_start(window_hours: int, now: float | None = None) -> int | None:
    """Unix second at which a *window_hours* window opens; None for full history."""
    if window_hours <= 0:
        return None
    current = time.time() if now is None else now
    return int(current - window_hours * 3600)


def parse_brand_ids(raw: object) -> tuple[int, ...] | None:
    """Decode the indexer's ``brand_ids`` column.

    The column is JSON text (``"[12, 4, 7]"``) on most deployments and a
    native array on others.  Returns None when the value can't be parsed.
    """
    value = raw
    if isinstance(raw, (bytes, bytearray)):
        value = raw.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if not isinstance(value, (list, tuple)):
        return None
    try:
        return tuple(int(v) for v in value)
    except (TypeError, ValueError):
        return None


def _to_int(value: object) -> int:
    """Integer from an indexer numeric column (int, Decimal or digit string)."""
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not an integer: {value!r}") from exc


def _opt_int(value: object) -> int | None:
    return None if value is None else _to_int(value)


class LedgerReader:
    """Issues read-only queries against the indexer schema.

    Parameters
    ----------
    engine:
        Engine bound to the indexer database (see
        :func:`podium.database.engine.create_ledger_engine`).
    schema:
        Schema holding the indexer tables.  Interpolated into SQL, so it
        must be a plain identifier.
    """

    def __init__(self, engine: Engine, schema: str = "public") -> None:
        if not _IDENTIFIER.match(schema):
            raise ValueError(f"invalid indexer schema name: {schema!r}")
        self.engine = engine
        self.schema = schema

    def _table(self, name: str) -> str:
        return f'"{self.schema}".{name}'

    # -------------------------------------------------------------------
    # Votes
    # -------------------------------------------------------------------
    def fetch_votes(
        self,
        window_hours: int,
        now: float | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> list[LedgerVote]:
        """Podium votes in the window, ascending by timestamp.

        Rows that can't be decoded are dropped and reported through
        *on_error* (or logged when no callback is given).
        """
        start = window_start(window_hours, now)
        sql = (
            "SELECT id, voter, fid, day, brand_ids, cost, block_number, "
            "transaction_hash, timestamp "
            f"FROM {self._table('votes')} "
        )
        params: dict = {}
        if start is not None:
            sql += "WHERE timestamp >= :start "
            params["start"] = start
        sql += "ORDER BY timestamp ASC, id ASC"

        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        votes: list[LedgerVote] = []
        for row in rows:
            try:
                votes.append(self._decode_vote(row))
            except (KeyError, TypeError, ValueError) as exc:
                message = f"Vote {row.get('transaction_hash')}: undecodable ledger row ({exc})"
                if on_error is not None:
                    on_error(message)
                else:
                    logger.warning(message)
        logger.info(
            "Ledger: %d votes %s",
            len(votes), "(full history)" if start is None else f"since {start}",
        )
        return votes

    @staticmethod
    def _decode_vote(row) -> LedgerVote:
        raw_ids = row["brand_ids"]
        return LedgerVote(
            event_id=str(row["id"]),
            voter_address=row["voter"],
            fid=_to_int(row["fid"]),
            day_bucket=_opt_int(row["day"]),
            brand_ids=parse_brand_ids(raw_ids),
            raw_brand_ids=raw_ids if isinstance(raw_ids, str) else json.dumps(raw_ids, default=str),
            cost=_to_int(row["cost"] or 0),
            block_number=_opt_int(row["block_number"]),
            tx_hash=row["transaction_hash"],
            timestamp=_to_int(row["timestamp"]),
        )

    def count_votes(self, window_hours: int, now: float | None = None) -> int:
        start = window_start(window_hours, now)
        sql = f"SELECT COUNT(*) FROM {self._table('votes')}"
        params: dict = {}
        if start is not None:
            sql += " WHERE timestamp >= :start"
            params["start"] = start
        with self.engine.connect() as conn:
            return int(conn.execute(text(sql), params).scalar_one())

    # -------------------------------------------------------------------
    # Power levels
    # -------------------------------------------------------------------
    def fetch_power_levels(
        self, window_hours: int, now: float | None = None,
    ) -> list[LedgerPowerLevel]:
        """Current power level of every user that levelled up in the window.

        A full sync returns every user with a non-zero level instead.  One
        record per fid; the indexer's ``users`` row already holds the latest
        value, so several level-ups inside the window collapse to it.
        """
        start = window_start(window_hours, now)
        params: dict = {}
        if start is None:
            sql = (
                "SELECT fid, brnd_power_level, NULL AS timestamp "
                f"FROM {self._table('users')} "
                "WHERE brnd_power_level > 0"
            )
        else:
            sql = (
                "SELECT u.fid, u.brnd_power_level, MAX(lup.timestamp) AS timestamp "
                f"FROM {self._table('users')} u "
                f"JOIN {self._table('brnd_power_level_ups')} lup ON u.fid = lup.fid "
                "WHERE lup.timestamp >= :start "
                "GROUP BY u.fid, u.brnd_power_level"
            )
            params["start"] = start

        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        return [
            LedgerPowerLevel(
                fid=_to_int(row["fid"]),
                power_level=_to_int(row["brnd_power_level"]),
                timestamp=_opt_int(row["timestamp"]),
            )
            for row in rows
        ]

    # -------------------------------------------------------------------
    # Brands
    # -------------------------------------------------------------------
    def fetch_brands(self, window_hours: int, now: float | None = None) -> list[LedgerBrand]:
        """Brands registered on-ledger, ascending by on-ledger id."""
        start = window_start(window_hours, now)
        sql = (
            "SELECT id, fid, wallet_address, handle, metadata_hash, created_at, "
            "block_number, transaction_hash "
            f"FROM {self._table('brands')} "
        )
        params: dict = {}
        if start is not None:
            sql += "WHERE created_at >= :start "
            params["start"] = start
        sql += "ORDER BY id ASC"

        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        return [
            LedgerBrand(
                on_ledger_id=_to_int(row["id"]),
                fid=_opt_int(row["fid"]),
                wallet_address=row["wallet_address"],
                handle=row["handle"],
                metadata_hash=row["metadata_hash"],
                created_at=_opt_int(row["created_at"]),
                block_number=_opt_int(row["block_number"]),
                tx_hash=row["transaction_hash"],
            )
            for row in rows
        ]
