"""
tests/test_cli.py — Operator CLI & Service Wiring
==================================================

Runs ``podium.cli.main`` end-to-end against SQLite files: one for the
projection (``DATABASE_URL``) and one standing in for the indexer
(``INDEXER_DB_URL``, schema ``main``).
"""

from __future__ import annotations

import json
import logging

import pytest
from sqlalchemy import create_engine, text

from podium.bootstrap import build_repair_service, build_services
from podium.cli import _window_hours, build_parser, main
from podium.config import load_config
from podium.database.engine import get_session
from podium.database.models import Base, Brand
from podium.worker.__main__ import main as worker_main

from tests.conftest import INDEXER_DDL, add_ledger_vote


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Config file plus projection/indexer SQLite databases wired via env."""
    projection_url = f"sqlite:///{tmp_path / 'projection.db'}"
    indexer_url = f"sqlite:///{tmp_path / 'indexer.db'}"

    indexer = create_engine(indexer_url)
    with indexer.begin() as conn:
        for ddl in INDEXER_DDL:
            conn.execute(text(ddl))

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "service_name: podium-test\n"
        "sync:\n  batch_size: 10\n  max_workers: 1\n",
        encoding="utf-8",
    )

    monkeypatch.setenv("DATABASE_URL", projection_url)
    monkeypatch.setenv("INDEXER_DB_URL", indexer_url)
    monkeypatch.setenv("INDEXER_DB_SCHEMA", "main")
    monkeypatch.delenv("BASE_RPC_URL", raising=False)
    monkeypatch.delenv("PODIUM_CONTRACT_ADDRESS", raising=False)

    yield {"config": str(config_path), "indexer": indexer, "projection_url": projection_url}
    indexer.dispose()


def _output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestParser:
    @pytest.mark.parametrize(
        ("argv", "hours"),
        [
            (["sync"], 48),
            (["sync", "--48h"], 48),
            (["sync", "--7d"], 168),
            (["sync", "--full"], 0),
            (["sync", "--hours", "6"], 6),
        ],
    )
    def test_sync_windows(self, argv, hours):
        assert _window_hours(build_parser().parse_args(argv)) == hours

    def test_window_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync", "--7d", "--full"])

    def test_rankings_period_choices(self):
        assert build_parser().parse_args(["rankings"]).period == "every"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["rankings", "--period", "year"])


class TestMain:
    def test_missing_config_exits_1(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "streaks"]) == 1

    def test_missing_database_url_exits_1(self, env, monkeypatch):
        monkeypatch.delenv("DATABASE_URL")
        assert main(["--config", env["config"], "streaks"]) == 1

    def test_sync_projects_ledger_votes(self, env, capsys):
        engine = create_engine(env["projection_url"])
        Base.metadata.create_all(engine)
        with get_session(engine) as session:
            for brand_id in (1, 2, 3):
                session.add(Brand(id=brand_id, on_ledger_id=brand_id, name=f"b{brand_id}"))
        engine.dispose()
        add_ledger_vote(env["indexer"], "0xA", 100, [1, 2, 3], timestamp=None)

        code = main(["--config", env["config"], "sync", "--full"])

        assert code == 0
        stats = _output(capsys)
        assert stats["votes_inserted"] == 1
        assert stats["fatal"] is False

        assert main(["--config", env["config"], "sync", "--full", "--votes-only"]) == 0
        assert _output(capsys)["votes_skipped"] == 1

    def test_sync_analyze(self, env, capsys):
        add_ledger_vote(env["indexer"], "0xA", 100, [1, 2, 3])

        assert main(["--config", env["config"], "sync", "--analyze", "--full"]) == 0
        assert _output(capsys)["missing_votes"] == 1

    def test_repair_validate(self, env, capsys):
        assert main(["--config", env["config"], "repair", "--validate"]) == 0
        assert _output(capsys)["total_votes"] == 0

    def test_repair_without_rpc_exits_1(self, env):
        assert main(["--config", env["config"], "repair"]) == 1

    @pytest.mark.parametrize(
        "argv",
        [
            ["streaks", "--dry-run"],
            ["rankings"],
            ["rankings", "--period", "week"],
            ["backfill-season", "--dry-run"],
        ],
    )
    def test_maintenance_commands(self, env, capsys, argv):
        assert main(["--config", env["config"], *argv]) == 0
        assert capsys.readouterr().out.strip()

    def test_audit_points(self, env, capsys):
        assert main(["--config", env["config"], "audit-points", "--top", "5"]) == 0
        assert _output(capsys) == []


class TestBootstrap:
    def test_build_services_wires_queue_into_coordinator(self, env):
        services = build_services(load_config(env["config"]))
        try:
            assert services.coordinator.ranking_queue is services.ranking_queue
            assert services.coordinator.streaks is services.streaks
            assert services.reader.schema == "main"
            assert services.coordinator.settings.batch_size == 10
        finally:
            services.close()

    def test_repair_service_requires_rpc_settings(self, env, monkeypatch):
        services = build_services(load_config(env["config"]), ledger=False)
        try:
            with pytest.raises(RuntimeError):
                build_repair_service(services)

            monkeypatch.setenv("BASE_RPC_URL", "https://rpc.test")
            monkeypatch.setenv("PODIUM_CONTRACT_ADDRESS", "0x" + "cc" * 20)
            repair = build_repair_service(services, dry_run=True)
            assert repair.dry_run is True
            assert repair.chain.contract_address == "0x" + "cc" * 20
            repair.chain.close()
        finally:
            services.close()

    def test_close_survives_failing_final_recompute(self, env, caplog):
        services = build_services(load_config(env["config"]))
        with services.store.engine.begin() as conn:
            conn.execute(text("DROP TABLE brands"))
        services.ranking_queue.enqueue(1)

        with caplog.at_level(logging.ERROR):
            services.close()

        assert "Final ranking recompute failed during shutdown" in caplog.text
        assert services.ranking_queue.pending == frozenset()


class TestWorkerEntryPoint:
    def test_malformed_config_section_exits_1(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text("service_name: podium\nsync: [1, 2]\n", encoding="utf-8")

        with pytest.raises(SystemExit) as exc:
            worker_main()

        assert exc.value.code == 1
