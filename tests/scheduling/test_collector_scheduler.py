"""Tests for healthscore.scheduling.service: CollectorScheduler orchestration.

Covers tick due-ness, the no-overlap guard, manual triggers, run
finalization, bookkeeping, cancellation, events, health and lifecycle.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from healthscore.collection.executor import CollectorExecutor
from healthscore.core.errors import AggregationError, CollectorNotFoundError, UnreachableError
from healthscore.core.events import COLLECTOR_RUN_COMPLETED, INSTANCE_SCORE_UPDATED, Event
from healthscore.core.models import (
    CollectorDefinition,
    CollectorState,
    ExecutionStatus,
    TriggerKind,
    utcnow,
)
from healthscore.core.settings import HealthScoreSettings
from healthscore.scheduling.service import (
    CollectorScheduler,
    SchedulerHealth,
    SchedulerStats,
    build_scheduler,
)
from tests._support.fakes import FakeAdapter


def mock_backend() -> MagicMock:
    backend = MagicMock(spec=["name", "start", "stop", "health"])
    backend.name = "mock"
    backend.health.return_value = {"healthy": True, "backend": "mock"}
    return backend


async def subscribe_all(bus, received: list[Event]) -> None:
    async def handler(event: Event) -> None:
        received.append(event)

    await bus.subscribe("*", handler)


@pytest.fixture
def make_scheduler(store, settings, bus):
    def _make(adapter=None, **kwargs) -> CollectorScheduler:
        kwargs.setdefault("backend", mock_backend())
        return build_scheduler(
            store,
            adapter or FakeAdapter(),
            settings=settings,
            event_bus=bus,
            **kwargs,
        )

    return _make


async def wait_for_fetch(adapter: FakeAdapter) -> None:
    while not adapter.calls:
        await asyncio.sleep(0)


# ── Manual trigger ───────────────────────────────────────────


class TestTriggerRun:
    @pytest.mark.asyncio
    async def test_run_completes_and_scores(self, store, bus, seed_collector, instances, make_scheduler):
        seed_collector("CPU", weight=100)
        received: list[Event] = []
        await subscribe_all(bus, received)
        scheduler = make_scheduler(FakeAdapter({"SQL01": 92, "SQL02": 10}))

        started, execution_id = await scheduler.trigger_run("cpu", "ops@corp")
        assert started is True
        assert scheduler.state("CPU") is CollectorState.RUNNING
        await scheduler.wait_idle()

        record = store.get_execution(execution_id)
        assert record.status is ExecutionStatus.COMPLETED
        assert record.trigger is TriggerKind.MANUAL
        assert record.triggered_by == "ops@corp"
        assert (record.total_instances, record.success_count) == (2, 2)

        assert store.latest_composite("SQL01").score == 40
        assert store.latest_composite("SQL02").score == 100
        assert scheduler.state("CPU") is CollectorState.IDLE

        kinds = [e.event_type for e in received]
        assert kinds.count(INSTANCE_SCORE_UPDATED) == 2
        assert kinds.count(COLLECTOR_RUN_COMPLETED) == 1
        completed = next(e for e in received if e.event_type == COLLECTOR_RUN_COMPLETED)
        assert completed.payload["execution_id"] == execution_id
        assert completed.payload["status"] == "Completed"

    @pytest.mark.asyncio
    async def test_bookkeeping_updated(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        scheduler = make_scheduler()
        _, execution_id = await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()

        record = store.get_execution(execution_id)
        collector = store.get_collector("CPU")
        assert collector.last_execution_at == record.started_at
        assert collector.last_execution_duration_ms == record.duration_ms
        assert collector.last_instances_processed == 2
        assert collector.last_error is None

    @pytest.mark.asyncio
    async def test_unknown_collector(self, make_scheduler):
        with pytest.raises(CollectorNotFoundError):
            await make_scheduler().trigger_run("Nope")

    @pytest.mark.asyncio
    async def test_second_trigger_rejected_while_running(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        gate = asyncio.Event()
        scheduler = make_scheduler(FakeAdapter(gate=gate))

        assert (await scheduler.trigger_run("CPU"))[0] is True
        assert await scheduler.trigger_run("CPU", trigger=TriggerKind.ON_DEMAND) == (False, None)
        gate.set()
        await scheduler.wait_idle()
        assert len(store.list_executions("CPU")) == 1

    @pytest.mark.asyncio
    async def test_config_read_once_per_run(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        gate = asyncio.Event()
        adapter = FakeAdapter(gate=gate)
        scheduler = make_scheduler(adapter)

        await scheduler.trigger_run("CPU")
        await wait_for_fetch(adapter)
        for rule in store.list_rules("CPU"):
            rule.resulting_score = 5
            store.save_rule(rule)
        gate.set()
        await scheduler.wait_idle()

        assert store.latest_snapshots("SQL01")["CPU"].score == 100


# ── Tick ─────────────────────────────────────────────────────


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_dropped_while_running(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        gate = asyncio.Event()
        adapter = FakeAdapter(gate=gate)
        scheduler = make_scheduler(adapter)

        await scheduler.trigger_run("CPU", trigger=TriggerKind.ON_DEMAND)
        await wait_for_fetch(adapter)
        scheduler._clock = lambda: utcnow() + timedelta(minutes=10)
        await scheduler.tick()

        stats = scheduler.get_stats()
        assert stats.tick_count == 1
        assert stats.ticks_dropped == 1
        assert stats.runs_started == 1
        gate.set()
        await scheduler.wait_idle()
        assert len(store.list_executions("CPU")) == 1

    @pytest.mark.asyncio
    async def test_tick_starts_only_due_enabled_collectors(self, store, seed_collector, instances, make_scheduler):
        seed_collector("Never")
        recent = seed_collector("Recent")
        recent.last_execution_at = utcnow()
        store.save_collector(recent)
        seed_collector("Off", is_enabled=False)
        scheduler = make_scheduler()

        await scheduler.tick()
        await scheduler.wait_idle()

        assert len(store.list_executions("Never")) == 1
        assert store.list_executions("Never")[0].trigger is TriggerKind.SCHEDULED
        assert store.list_executions("Recent") == []
        assert store.list_executions("Off") == []

    @pytest.mark.asyncio
    async def test_interval_respected_between_ticks(self, store, seed_collector, instances, settings, bus):
        seed_collector("CPU", interval_seconds=300)
        offset = timedelta()
        scheduler = build_scheduler(store, FakeAdapter(), settings=settings, event_bus=bus, backend=mock_backend())
        scheduler._clock = lambda: utcnow() + offset

        await scheduler.tick()
        await scheduler.wait_idle()
        await scheduler.tick()
        await scheduler.wait_idle()
        assert len(store.list_executions("CPU")) == 1

        offset = timedelta(seconds=301)
        await scheduler.tick()
        await scheduler.wait_idle()
        assert len(store.list_executions("CPU")) == 2

    @pytest.mark.asyncio
    async def test_interval_floor_applies(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU", interval_seconds=1)
        scheduler = make_scheduler()
        await scheduler.tick()
        await scheduler.wait_idle()
        await asyncio.sleep(0.01)
        await scheduler.tick()
        await scheduler.wait_idle()
        assert len(store.list_executions("CPU")) == 1

    @pytest.mark.asyncio
    async def test_tick_survives_store_failure(self, settings, bus):
        store = MagicMock()
        store.list_collectors.side_effect = OSError("database is locked")
        scheduler = CollectorScheduler(
            store,
            MagicMock(),
            MagicMock(),
            backend=mock_backend(),
            instance_provider=MagicMock(),
            event_bus=bus,
            settings=settings,
        )
        await scheduler.tick()
        assert scheduler.get_stats().last_error == "OSError: database is locked"


# ── Failures ─────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_empty_roster_fails_run(self, store, bus, seed_collector, make_scheduler):
        seed_collector("CPU")
        received: list[Event] = []
        await subscribe_all(bus, received)
        scheduler = make_scheduler()

        _, execution_id = await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()

        record = store.get_execution(execution_id)
        assert record.status is ExecutionStatus.FAILED
        assert "No eligible instances" in record.error_summary
        assert "No eligible instances" in store.get_collector("CPU").last_error
        assert scheduler.get_stats().runs_failed == 1
        assert [e.payload["status"] for e in received] == ["Failed"]

    @pytest.mark.asyncio
    async def test_all_instances_failing(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        scheduler = make_scheduler(FakeAdapter(default=UnreachableError("refused")))
        _, execution_id = await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()

        record = store.get_execution(execution_id)
        collector = store.get_collector("CPU")
        assert record.status is ExecutionStatus.FAILED
        assert record.error_count == 2
        assert "[Unreachable] refused" in collector.last_error
        assert collector.last_error_at is not None
        assert collector.is_enabled is True
        assert store.latest_composite("SQL01") is None

    @pytest.mark.asyncio
    async def test_rejected_finalize_still_closes_record(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        original = store.update_execution
        calls = []

        def flaky(record):
            calls.append(record.status)
            if len(calls) == 1:
                raise OSError("database is locked")
            original(record)

        store.update_execution = flaky
        scheduler = make_scheduler()
        _, execution_id = await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()

        record = store.get_execution(execution_id)
        assert calls == [ExecutionStatus.COMPLETED, ExecutionStatus.FAILED]
        assert record.status is ExecutionStatus.FAILED
        assert record.error_summary == "OSError: database is locked"
        assert store.get_collector("CPU").last_error == "OSError: database is locked"

    @pytest.mark.asyncio
    async def test_disabled_collector_run_fails(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU", is_enabled=False)
        scheduler = make_scheduler()
        _, execution_id = await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()
        assert store.get_execution(execution_id).error_summary == "RunPreconditionError: Collector is disabled"

    @pytest.mark.asyncio
    async def test_aggregation_error_surfaces_in_last_error(self, store, seed_collector, instances, settings, bus):
        seed_collector("CPU")
        aggregator = MagicMock()
        aggregator.recompute = AsyncMock(side_effect=AggregationError("Failed to persist composite score"))
        scheduler = CollectorScheduler(
            store,
            CollectorExecutor(FakeAdapter(), store),
            aggregator,
            backend=mock_backend(),
            event_bus=bus,
            settings=settings,
        )
        _, execution_id = await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()

        assert store.get_execution(execution_id).status is ExecutionStatus.COMPLETED
        assert store.get_collector("CPU").last_error == "AggregationError: Failed to persist composite score"
        assert aggregator.recompute.await_count == 2


# ── Cancellation ─────────────────────────────────────────────


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_in_flight_run(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU", parallel_degree=1)
        gate = asyncio.Event()
        adapter = FakeAdapter(gate=gate)
        scheduler = make_scheduler(adapter)

        _, execution_id = await scheduler.trigger_run("CPU")
        await wait_for_fetch(adapter)
        assert scheduler.cancel("CPU") is True
        gate.set()
        await scheduler.wait_idle()

        record = store.get_execution(execution_id)
        assert record.status is ExecutionStatus.CANCELLED
        assert record.success_count == 1
        assert scheduler.get_stats().runs_cancelled == 1

    def test_cancel_idle_collector(self, make_scheduler):
        assert make_scheduler().cancel("CPU") is False

    @pytest.mark.asyncio
    async def test_stop_cancels_running(self, store, seed_collector, instances, make_scheduler):
        seed_collector("CPU", parallel_degree=1)
        gate = asyncio.Event()
        adapter = FakeAdapter(gate=gate)
        scheduler = make_scheduler(adapter)
        scheduler.start()

        _, execution_id = await scheduler.trigger_run("CPU")
        await wait_for_fetch(adapter)
        stopping = asyncio.create_task(scheduler.stop(cancel_running=True))
        await asyncio.sleep(0)
        gate.set()
        await stopping

        assert scheduler.is_running is False
        assert store.get_execution(execution_id).status is ExecutionStatus.CANCELLED


# ── Lifecycle, health, stats ─────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_scheduler, settings):
        scheduler = make_scheduler()
        scheduler.start()
        scheduler.start()
        assert scheduler.is_running
        scheduler.backend.start.assert_called_once_with(scheduler.tick, settings.scheduler_tick_seconds)
        await scheduler.stop()
        scheduler.backend.stop.assert_called_once()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_health(self, seed_collector, make_scheduler):
        seed_collector("CPU")
        seed_collector("Memory", is_enabled=False)
        scheduler = make_scheduler()
        assert scheduler.health().healthy is False
        scheduler.start()

        health = scheduler.health()
        assert isinstance(health, SchedulerHealth)
        assert health.healthy is True
        assert health.collectors_enabled == 1
        data = health.to_dict()
        assert data["backend"] == {"healthy": True, "backend": "mock"}
        assert data["stats"]["tick_count"] == 0
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_recent_runs_and_reset_stats(self, seed_collector, instances, make_scheduler):
        seed_collector("CPU")
        scheduler = make_scheduler()
        await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()
        await scheduler.trigger_run("CPU")
        await scheduler.wait_idle()

        assert len(scheduler.recent_runs("CPU", limit=1)) == 1
        assert len(scheduler.recent_runs("CPU")) == 2
        assert scheduler.get_stats().runs_started == 2
        scheduler.reset_stats()
        assert scheduler.get_stats() == SchedulerStats()


class TestCollectorDefaults:
    def test_settings_reach_executor(self, store, bus):
        settings = HealthScoreSettings(_env_file=None, default_timeout_seconds=5, default_parallel_degree=2)
        scheduler = build_scheduler(store, FakeAdapter(), settings=settings, event_bus=bus, backend=mock_backend())
        collector = CollectorDefinition("X", timeout_seconds=0, parallel_degree=0)
        assert scheduler.executor.timeout_for(collector) == 5
        assert scheduler.executor.parallel_degree_for(collector) == 2


class TestWeights:
    @pytest.mark.asyncio
    async def test_composite_uses_all_enabled_weights(self, store, seed_collector, instances, make_scheduler):
        seed_collector("Backups", weight=18)
        seed_collector("AlwaysOn", weight=14)
        store.save_collector(CollectorDefinition("Rest", weight=Decimal(68)))
        scheduler = make_scheduler(FakeAdapter(default=80))

        await scheduler.trigger_run("Backups")
        await scheduler.wait_idle()

        composite = store.latest_composite("SQL01")
        assert composite.category_scores == {"Backups": 70, "AlwaysOn": 100, "Rest": 100}
        assert composite.score == 95
