"""Tests for the ``healthscore`` CLI against a throwaway SQLite file."""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from typer.testing import CliRunner

from healthscore import __version__
from healthscore.cli.app import app
from healthscore.core.models import (
    CollectorDefinition,
    CompositeHealthScore,
    ExecutionRecord,
    ExecutionStatus,
    InstanceRef,
    ThresholdRule,
    VersionedQuery,
)
from healthscore.core.orm import SqlAlchemyHealthStore, create_health_engine, init_db

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'healthscore.db'}"


@pytest.fixture
def db(db_url) -> SqlAlchemyHealthStore:
    engine = create_health_engine(db_url)
    init_db(engine)
    store = SqlAlchemyHealthStore(engine)
    store.save_collector(CollectorDefinition("CPU", weight=100, interval_seconds=60))
    store.save_rule(ThresholdRule("CPU", "high", 90, ">=", 40, "Score", 0))
    store.save_rule(ThresholdRule("CPU", "ok", 0, ">=", 100, "Score", 1))
    store.save_query(VersionedQuery("CPU", "SELECT cpu"))
    store.save_instance(InstanceRef("SQL01", platform_version=15))
    yield store
    engine.dispose()


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"healthscore {__version__}" in result.output


class TestDb:
    def test_init_creates_tables(self, db_url):
        result = runner.invoke(app, ["db", "init", "--database", db_url])
        assert result.exit_code == 0
        assert "Tables ready" in result.output
        store = SqlAlchemyHealthStore(create_health_engine(db_url))
        assert store.list_collectors() == []


class TestCollectors:
    def test_list_json(self, db, db_url):
        result = runner.invoke(app, ["collectors", "list", "--database", db_url, "--json"])
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert [r["name"] for r in rows] == ["CPU"]
        assert rows[0]["interval_s"] == 60
        assert rows[0]["last_run"] is None

    def test_list_table(self, db, db_url):
        result = runner.invoke(app, ["collectors", "list", "-d", db_url])
        assert result.exit_code == 0
        assert "CPU" in result.output


class TestRuns:
    def test_list_and_show(self, db, db_url):
        record = ExecutionRecord("CPU", status=ExecutionStatus.COMPLETED, total_instances=1, success_count=1)
        db.append_execution(record)

        listed = runner.invoke(app, ["runs", "list", "CPU", "-d", db_url, "--json"])
        assert listed.exit_code == 0
        rows = json.loads(listed.stdout)
        assert rows[0]["id"] == record.id
        assert rows[0]["status"] == "Completed"

        shown = runner.invoke(app, ["runs", "show", record.id, "-d", db_url, "--json"])
        assert shown.exit_code == 0
        assert json.loads(shown.stdout)["collector_name"] == "CPU"

    def test_unknown_collector(self, db, db_url):
        result = runner.invoke(app, ["runs", "list", "Nope", "-d", db_url])
        assert result.exit_code == 1

    def test_unknown_execution(self, db, db_url):
        result = runner.invoke(app, ["runs", "show", "missing", "-d", db_url])
        assert result.exit_code == 1


class TestScores:
    def test_show_latest(self, db, db_url):
        db.append_composite(
            CompositeHealthScore("SQL01", 92, "Optimal", {"CPU": 92}, {"CPU": 92})
        )
        result = runner.invoke(app, ["scores", "show", "SQL01", "-d", db_url, "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["score"] == 92
        assert data["status"] == "Optimal"

        table = runner.invoke(app, ["scores", "show", "SQL01", "-d", db_url])
        assert "score=92" in table.output

    def test_no_score(self, db, db_url):
        result = runner.invoke(app, ["scores", "show", "SQL01", "-d", db_url])
        assert result.exit_code == 1

    def test_history_empty(self, db, db_url):
        result = runner.invoke(app, ["scores", "history", "SQL01", "-d", db_url, "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []


class TestThresholds:
    def test_reset_restores_defaults(self, db, db_url):
        rule = db.list_rules("CPU")[0]
        rule.threshold_value = 50
        rule.is_active = False
        db.save_rule(rule)

        result = runner.invoke(app, ["thresholds", "reset", "CPU", "-d", db_url])
        assert result.exit_code == 0
        assert "Reset 2 rule(s)" in result.output
        restored = next(r for r in db.list_rules("CPU") if r.id == rule.id)
        assert restored.threshold_value == 90
        assert restored.is_active is True

    def test_list_json(self, db, db_url):
        result = runner.invoke(app, ["thresholds", "list", "CPU", "-d", db_url, "--json"])
        assert result.exit_code == 0
        assert [r["name"] for r in json.loads(result.stdout)] == ["high", "ok"]

    def test_unknown_collector(self, db, db_url):
        assert runner.invoke(app, ["thresholds", "reset", "Nope", "-d", db_url]).exit_code == 1


class TestServe:
    def test_requires_adapter(self, db_url, monkeypatch, restore_logging):
        monkeypatch.delenv("HEALTHSCORE_ADAPTER", raising=False)
        result = runner.invoke(app, ["serve", "-d", db_url, "--stop-after", "0"])
        assert result.exit_code == 1

    def test_bad_adapter_path(self, db_url, restore_logging):
        result = runner.invoke(app, ["serve", "-a", "no_such_module:Adapter", "-d", db_url, "--stop-after", "0"])
        assert result.exit_code == 1

    @pytest.mark.integration
    def test_runs_due_collectors(self, db, db_url, restore_logging):
        result = runner.invoke(
            app,
            [
                "serve",
                "-a",
                "tests._support.fakes:make_adapter",
                "-d",
                db_url,
                "--tick",
                "0.02",
                "--stop-after",
                "0.5",
            ],
        )
        assert result.exit_code == 0, result.output
        records = db.list_executions("CPU")
        assert len(records) == 1
        assert records[0].status is ExecutionStatus.COMPLETED
        assert db.latest_composite("SQL01").score == 100
        assert db.get_collector("CPU").last_execution_at is not None
        assert "collector_run_started" in result.output
