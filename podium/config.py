"""
podium.config — YAML Configuration Loader
==========================================

**Why this file exists:**
This module reads ``config.yaml`` for the tuning knobs of the sync worker
(batch sizes, schedule cadence, debounce, repair pacing, season boundary).
Connection URLs and secrets never live here; they come from ``.env`` via
:func:`dotenv.load_dotenv` in the entry points.

Usage::

    from podium.config import load_config

    cfg = load_config()                  # reads ./config.yaml by default
    print(cfg.sync.batch_size)           # 50
    print(cfg.schedule.period_anchor)    # 2024-01-06 00:00:00+00:00
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import yaml

DEFAULT_PERIOD_ANCHOR = datetime(2024, 1, 6, tzinfo=UTC)  # a Saturday
DEFAULT_SEASON_2_START = datetime(2025, 12, 13, 6, 50, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Typed settings objects — one per config.yaml section
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SyncSettings:
    """Batching and fan-out limits for one coordinator run."""

    batch_size: int = 50
    max_workers: int = 4
    lookup_chunk_size: int = 500  # max tx hashes per IN (...) lookup
    incremental_window_hours: int = 48


@dataclass(frozen=True, slots=True)
class ScheduleSettings:
    """Cadence of the scheduled jobs run by the worker."""

    tick_seconds: int = 60
    daily_hour_utc: int = 0
    daily_window_hours: int = 48
    votes_sync_interval_minutes: int = 30
    votes_sync_window_hours: int = 2
    ranking_interval_minutes: int = 60
    period_anchor: datetime = DEFAULT_PERIOD_ANCHOR


@dataclass(frozen=True, slots=True)
class RankingSettings:
    debounce_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class RepairSettings:
    delay_seconds: float = 0.1
    rpc_timeout_seconds: float = 15.0


@dataclass(frozen=True, slots=True)
class SeasonSettings:
    season_2_start: datetime = DEFAULT_SEASON_2_START


@dataclass(frozen=True, slots=True)
class PodiumConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every section is optional in the YAML file; missing sections fall back
    to the defaults declared on the section dataclasses.
    """

    service_name: str
    sync: SyncSettings = field(default_factory=SyncSettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    ranking: RankingSettings = field(default_factory=RankingSettings)
    repair: RepairSettings = field(default_factory=RepairSettings)
    seasons: SeasonSettings = field(default_factory=SeasonSettings)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def parse_utc(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"config section {name!r} must be a mapping")
    return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PodiumConfig:
    """Read *path* and return a :class:`PodiumConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a section is present but is not a mapping.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    sync = _section(raw, "sync")
    schedule = _section(raw, "schedule")
    ranking = _section(raw, "ranking")
    repair = _section(raw, "repair")
    seasons = _section(raw, "seasons")

    return PodiumConfig(
        service_name=raw["service_name"],
        sync=SyncSettings(
            batch_size=int(sync.get("batch_size", 50)),
            max_workers=int(sync.get("max_workers", 4)),
            lookup_chunk_size=int(sync.get("lookup_chunk_size", 500)),
            incremental_window_hours=int(sync.get("incremental_window_hours", 48)),
        ),
        schedule=ScheduleSettings(
            tick_seconds=int(schedule.get("tick_seconds", 60)),
            daily_hour_utc=int(schedule.get("daily_hour_utc", 0)),
            daily_window_hours=int(schedule.get("daily_window_hours", 48)),
            votes_sync_interval_minutes=int(schedule.get("votes_sync_interval_minutes", 30)),
            votes_sync_window_hours=int(schedule.get("votes_sync_window_hours", 2)),
            ranking_interval_minutes=int(schedule.get("ranking_interval_minutes", 60)),
            period_anchor=parse_utc(schedule.get("period_anchor", DEFAULT_PERIOD_ANCHOR)),
        ),
        ranking=RankingSettings(
            debounce_seconds=float(ranking.get("debounce_seconds", 10.0)),
        ),
        repair=RepairSettings(
            delay_seconds=float(repair.get("delay_seconds", 0.1)),
            rpc_timeout_seconds=float(repair.get("rpc_timeout_seconds", 15.0)),
        ),
        seasons=SeasonSettings(
            season_2_start=parse_utc(seasons.get("season_2_start", DEFAULT_SEASON_2_START)),
        ),
    )
