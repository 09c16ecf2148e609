"""
Podium Sync — Ledger Projection & Derived-Aggregate Engine
===========================================================
Keeps the relational projection of Podium votes consistent with the
on-chain ledger surfaced by an external indexer: windowed and full sync,
repair of corrupted rows from raw receipts, and the aggregates built on
top of the votes (points, daily streaks, brand rankings).

Package layout::

    podium/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Vote economics (points, 60/30/10, wei, seasons)
    ├── bootstrap.py       # Engine + service wiring for worker and CLI
    ├── cli.py             # Operator commands (sync, repair, streaks, …)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engines, sessions, async helper
    │   └── models.py      # Projection ORM models
    ├── engine/
    │   ├── records.py     # Typed ledger/projection records + SyncStats
    │   ├── periods.py     # Epoch-anchored day/week/month periods
    │   ├── streaks.py     # Pure streak computation
    │   └── schedule.py    # Pure job planner
    ├── ledger/
    │   ├── reader.py      # Indexer read client
    │   └── chain.py       # JSON-RPC receipt lookup + log decoding
    ├── services/
    │   ├── projection_store.py   # Projection store adapter
    │   ├── sync_service.py       # Sync coordinator
    │   ├── repair_service.py     # Corrupted vote repair
    │   ├── streak_service.py     # Streak aggregation + daily reset
    │   ├── ranking_service.py    # Dense ranking + debounced queue
    │   ├── diagnostics_service.py # Analyze / points audit
    │   ├── backfill_service.py   # Season backfill
    │   └── job_runner.py         # Executes planned jobs
    └── worker/
        └── __main__.py    # python -m podium.worker
"""

__version__ = "0.1.0"
