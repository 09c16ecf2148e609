"""
podium.cli — Operator Command Line
===================================

Entry point for ``podium`` / ``python -m podium.cli``.

Commands::

    podium sync [--48h | --7d | --full | --hours N] [--votes-only]
                [--no-power-levels] [--no-brands] [--dry-run] [--analyze]
    podium repair [--dry-run] [--validate]
    podium streaks [--dry-run]
    podium rankings [--period all|day|week|month|every]
    podium backfill-season [--dry-run]
    podium audit-points [--top N]

Exit code is 1 on a fatal connectivity error or missing configuration.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from podium.bootstrap import Services, build_repair_service, build_services
from podium.config import load_config
from podium.engine.periods import Period
from podium.services.backfill_service import backfill_seasons
from podium.services.diagnostics_service import analyze_sync_gap, audit_points
from podium.services.repair_service import validate_integrity

logger = logging.getLogger("podium")


def _print(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def _window_hours(args: argparse.Namespace) -> int:
    if args.full:
        return 0
    if args.week:
        return 24 * 7
    if args.hours is not None:
        return args.hours
    return 48


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def cmd_sync(services: Services, args: argparse.Namespace) -> int:
    window = _window_hours(args)
    if args.analyze:
        _print(analyze_sync_gap(services.reader, services.store, window))
        return 0

    stats = services.coordinator.sync(
        window,
        sync_power_levels=not (args.votes_only or args.no_power_levels),
        sync_votes=True,
        sync_brands=not (args.votes_only or args.no_brands),
        dry_run=args.dry_run,
    )
    _print(stats.to_dict())
    return 1 if stats.fatal else 0


def cmd_repair(services: Services, args: argparse.Namespace) -> int:
    if args.validate:
        _print(validate_integrity(services.store))
        return 0

    try:
        repair = build_repair_service(services, dry_run=args.dry_run)
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1
    try:
        _print(repair.repair_all())
    finally:
        repair.chain.close()
    return 0


def cmd_streaks(services: Services, args: argparse.Namespace) -> int:
    _print(services.streaks.recompute_all(dry_run=args.dry_run))
    return 0


def cmd_rankings(services: Services, args: argparse.Namespace) -> int:
    if args.period == "every":
        _print(services.ranking.recompute_periods())
    else:
        _print({args.period: services.ranking.recompute_all(Period(args.period))})
    return 0


def cmd_backfill_season(services: Services, args: argparse.Namespace) -> int:
    _print(backfill_seasons(
        services.store.engine,
        services.cfg.seasons.season_2_start,
        dry_run=args.dry_run,
    ))
    return 0


def cmd_audit_points(services: Services, args: argparse.Namespace) -> int:
    _print(audit_points(services.store, limit=args.top))
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="podium", description="Podium ledger sync tools")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sync", help="Sync ledger events into the projection")
    window = p.add_mutually_exclusive_group()
    window.add_argument("--48h", dest="h48", action="store_true", help="Last 48 hours (default)")
    window.add_argument("--7d", dest="week", action="store_true", help="Last 7 days")
    window.add_argument("--full", action="store_true", help="Entire history")
    window.add_argument("--hours", type=int, default=None, help="Custom window in hours")
    p.add_argument("--votes-only", action="store_true", help="Skip brands and power levels")
    p.add_argument("--no-power-levels", action="store_true")
    p.add_argument("--no-brands", action="store_true")
    p.add_argument("--dry-run", action="store_true", help="Report without writing")
    p.add_argument("--analyze", action="store_true", help="Diagnostic comparison only")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("repair", help="Repair votes with missing brand links")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--validate", action="store_true", help="Integrity report only")
    p.set_defaults(func=cmd_repair)

    p = sub.add_parser("streaks", help="Recompute every user's streaks")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_streaks)

    p = sub.add_parser("rankings", help="Recompute brand rankings")
    p.add_argument(
        "--period",
        choices=[period.value for period in Period] + ["every"],
        default="every",
    )
    p.set_defaults(func=cmd_rankings)

    p = sub.add_parser("backfill-season", help="Stamp votes with their season")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_backfill_season)

    p = sub.add_parser("audit-points", help="List users whose points drifted")
    p.add_argument("--top", type=int, default=50)
    p.set_defaults(func=cmd_audit_points)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    load_dotenv()

    try:
        cfg = load_config(args.config)
        services = build_services(cfg, ledger=args.command in ("sync",))
    except (FileNotFoundError, KeyError, RuntimeError, ValueError) as exc:
        logger.critical("Configuration error: %s", exc)
        return 1

    try:
        return args.func(services, args)
    except SQLAlchemyError as exc:
        logger.critical("Database error: %s", exc)
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
