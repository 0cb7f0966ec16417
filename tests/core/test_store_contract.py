"""Contract tests run against both HealthStore implementations.

The in-memory store and the SQLAlchemy store (on in-memory SQLite) must
behave identically for everything the engine relies on.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from healthscore.core.memory import InMemoryHealthStore
from healthscore.core.models import (
    CategoryScoreSnapshot,
    CollectorDefinition,
    CompositeHealthScore,
    ExclusionOverride,
    ExecutionRecord,
    ExecutionStatus,
    InstanceRef,
    ThresholdRule,
    TriggerKind,
    VersionedQuery,
)
from healthscore.core.orm import SqlAlchemyHealthStore, create_health_engine, init_db
from healthscore.core.store import HealthStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(params=["memory", "sqlalchemy"])
def any_store(request) -> HealthStore:
    if request.param == "memory":
        return InMemoryHealthStore()
    engine = create_health_engine("sqlite://")
    init_db(engine)
    return SqlAlchemyHealthStore(engine)


class TestCollectors:
    def test_round_trip_and_case_insensitive_lookup(self, any_store):
        any_store.save_collector(CollectorDefinition("Backups", weight=Decimal("18"), interval_seconds=600))
        loaded = any_store.get_collector("backups")
        assert loaded is not None
        assert loaded.name == "Backups"
        assert loaded.weight == Decimal("18")
        assert loaded.interval_seconds == 600

    def test_enabled_only(self, any_store):
        any_store.save_collector(CollectorDefinition("CPU"))
        any_store.save_collector(CollectorDefinition("Memory", is_enabled=False))
        assert [c.name for c in any_store.list_collectors(enabled_only=True)] == ["CPU"]
        assert len(any_store.list_collectors()) == 2

    def test_save_updates_bookkeeping(self, any_store):
        any_store.save_collector(CollectorDefinition("CPU"))
        collector = any_store.get_collector("CPU")
        collector.last_execution_at = T0
        collector.last_instances_processed = 7
        collector.last_error = "MetricQueryError: bad"
        any_store.save_collector(collector)
        loaded = any_store.get_collector("CPU")
        assert loaded.last_execution_at == T0
        assert loaded.last_instances_processed == 7
        assert loaded.last_error == "MetricQueryError: bad"

    def test_missing_collector(self, any_store):
        assert any_store.get_collector("nope") is None


class TestRulesAndQueries:
    def test_rules_ordered_and_filtered(self, any_store):
        any_store.save_rule(ThresholdRule("CPU", "b", 75, ">=", 70, "Score", 1))
        any_store.save_rule(ThresholdRule("CPU", "a", 90, ">=", 40, "Score", 0))
        any_store.save_rule(ThresholdRule("CPU", "off", 10, ">=", 0, "Score", 2, is_active=False))
        any_store.save_rule(ThresholdRule("Memory", "m", 1, ">=", 0, "Score", 0))
        assert [r.name for r in any_store.list_rules("cpu")] == ["a", "b", "off"]
        assert [r.name for r in any_store.list_rules("CPU", active_only=True)] == ["a", "b"]

    def test_rule_update_in_place(self, any_store):
        rule = ThresholdRule("CPU", "a", 90, ">=", 40, "Score", 0, group="Waits")
        any_store.save_rule(rule)
        rule.threshold_value = Decimal("95.5")
        any_store.save_rule(rule)
        [loaded] = any_store.list_rules("CPU")
        assert loaded.threshold_value == Decimal("95.5")
        assert loaded.default_value == Decimal("90")
        assert loaded.group == "Waits"

    def test_queries(self, any_store):
        any_store.save_query(VersionedQuery("CPU", "SELECT 1", min_version=11, max_version=13))
        any_store.save_query(VersionedQuery("CPU", "SELECT 2", min_version=14))
        queries = any_store.list_queries("CPU")
        assert {q.query_text for q in queries} == {"SELECT 1", "SELECT 2"}
        assert any(q.max_version is None for q in queries)


class TestExclusionsAndInstances:
    def test_exclusions(self, any_store):
        override = ExclusionOverride("CPU", "*", "SQL01", expires_at=T0, reason="patching")
        any_store.save_exclusion(override)
        any_store.save_exclusion(ExclusionOverride("Memory", "*", "SQL02"))
        [loaded] = any_store.list_exclusions("CPU")
        assert loaded.reason == "patching"
        assert loaded.expires_at == T0
        assert len(any_store.list_exclusions()) == 2
        assert any_store.delete_exclusion(override.id) is True
        assert any_store.delete_exclusion(override.id) is False

    def test_instances(self, any_store):
        any_store.save_instance(InstanceRef("SQL02", platform_version=16, is_cloud=True))
        any_store.save_instance(InstanceRef("SQL01", platform_version=15))
        names = [i.name for i in any_store.list_instances()]
        assert names == ["SQL01", "SQL02"]
        assert any_store.list_instances()[1].is_cloud is True


class TestExecutions:
    def test_append_update_get(self, any_store):
        record = ExecutionRecord.start("CPU", TriggerKind.ON_DEMAND, "ops")
        any_store.append_execution(record)
        record.status = ExecutionStatus.COMPLETED
        record.completed_at = record.started_at + timedelta(seconds=2)
        record.success_count = record.total_instances = 3
        any_store.update_execution(record)
        loaded = any_store.get_execution(record.id)
        assert loaded.status is ExecutionStatus.COMPLETED
        assert loaded.trigger is TriggerKind.ON_DEMAND
        assert loaded.duration_ms == 2000
        assert loaded.success_count == 3

    def test_list_newest_first(self, any_store):
        older = ExecutionRecord.start("CPU")
        older.started_at = T0
        newer = ExecutionRecord.start("CPU")
        newer.started_at = T0 + timedelta(minutes=5)
        other = ExecutionRecord.start("Memory")
        for record in (older, newer, other):
            any_store.append_execution(record)
        assert [r.id for r in any_store.list_executions("CPU")] == [newer.id, older.id]
        assert len(any_store.list_executions(limit=1)) == 1


class TestSnapshotsAndComposites:
    def test_latest_snapshot_per_category(self, any_store):
        any_store.append_snapshot(CategoryScoreSnapshot("SQL01", "CPU", 70, collected_at=T0))
        any_store.append_snapshot(
            CategoryScoreSnapshot("SQL01", "CPU", 40, collected_at=T0 + timedelta(minutes=1))
        )
        any_store.append_snapshot(CategoryScoreSnapshot("SQL01", "Memory", 100, collected_at=T0))
        any_store.append_snapshot(CategoryScoreSnapshot("SQL02", "CPU", 10, collected_at=T0))
        latest = any_store.latest_snapshots("sql01")
        assert {k: v.score for k, v in latest.items()} == {"CPU": 40, "Memory": 100}

    def test_latest_snapshots_since(self, any_store):
        any_store.append_snapshot(CategoryScoreSnapshot("SQL01", "CPU", 70, collected_at=T0))
        latest = any_store.latest_snapshots("SQL01", since=T0 + timedelta(seconds=1))
        assert latest == {}

    def test_composite_history(self, any_store):
        first = CompositeHealthScore("SQL01", 90, "Optimal", {"CPU": 100}, {"CPU": 10}, computed_at=T0)
        second = CompositeHealthScore(
            "SQL01", 80, "Warning", {"CPU": 70}, {"CPU": 7}, computed_at=T0 + timedelta(minutes=1)
        )
        any_store.append_composite(first)
        any_store.append_composite(second)
        assert any_store.latest_composite("SQL01").id == second.id
        assert [c.score for c in any_store.list_composites("SQL01")] == [80, 90]
        assert any_store.latest_composite("SQL09") is None


class TestWorkerThreads:
    @pytest.mark.asyncio
    async def test_concurrent_writes_from_threads(self, any_store):
        snapshots = [CategoryScoreSnapshot(f"SQL{i:02}", "CPU", i, collected_at=T0) for i in range(20)]
        await asyncio.gather(*(asyncio.to_thread(any_store.append_snapshot, s) for s in snapshots))
        assert all(
            any_store.latest_snapshots(f"SQL{i:02}")["CPU"].score == i for i in range(20)
        )
