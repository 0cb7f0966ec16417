"""
Collector Scheduler: drives every collector on its own interval.

Manifesto:
    Runs of one collector are strictly serialized, runs of different
    collectors are independent, and no run ever disappears: each one ends
    in a finalized ExecutionRecord and updated bookkeeping no matter what
    went wrong inside it.

Architecture:
    ::

        backend tick ──► tick()
                          │ for each enabled collector that is due:
                          │   running?  → drop tick (ticks_dropped += 1)
                          │   idle      → _start_run(Scheduled)
                          ▼
        trigger_run() ─► _start_run()   (Manual / OnDemand, same guard)
                          │  append ExecutionRecord(Running)
                          │  spawn task _run()  ──────────────┐
                          ▼                                   │
                     (started, record.id)                     ▼
                                          _run(): refresh config + roster
                                                  executor.run(...)
                                                  audit.finalize(...)
                                                  aggregator.recompute(each success)
                                                  bookkeeping (last_*)
                                                  emit collector.run_completed

    Per-collector state machine::

        Idle → Running → {Completed, Failed, Cancelled} → Idle

Features:
    - **No overlap:** the in-process active-run table is checked and set
      without an await in between, so two triggers cannot both start
    - **Snapshot-per-run:** configuration, exclusions and roster are read
      once when the run task starts
    - **Cooperative cancel:** stops dispatching new instances; in-flight
      fetches finish or time out
    - **Failure surfacing:** Failed runs and aggregation errors land in
      ``last_error`` / ``last_error_at``; collectors are never auto-disabled

Tags:
    scheduler, beat-as-poller, asyncio, audit, no-overlap

Doc-Types:
    - API Reference
    - Operations Guide
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from healthscore.collection.exclusions import ExclusionRegistry
from healthscore.collection.executor import CollectorExecutor, ExecutionResult
from healthscore.collection.instances import FilteredInstanceProvider, InstanceProvider
from healthscore.core.errors import (
    AggregationError,
    CollectorNotFoundError,
    RunPreconditionError,
    describe_error,
)
from healthscore.core.events import Event, EventBus, collector_run_completed, get_event_bus
from healthscore.core.logging import LogContext, get_logger
from healthscore.core.models import (
    CollectorDefinition,
    CollectorState,
    ExecutionRecord,
    ExecutionStatus,
    TriggerKind,
    utcnow,
)
from healthscore.core.settings import HealthScoreSettings
from healthscore.core.store import HealthStore
from healthscore.scheduling.asyncio_backend import AsyncioSchedulerBackend
from healthscore.scheduling.audit import ExecutionAuditLog
from healthscore.scheduling.protocol import BackendHealth, SchedulerBackend
from healthscore.scoring.aggregator import ScoreAggregator

logger = get_logger(__name__)


@dataclass
class SchedulerStats:
    """Statistics for the collector scheduler."""

    tick_count: int = 0
    runs_started: int = 0
    ticks_dropped: int = 0
    runs_failed: int = 0
    runs_cancelled: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "runs_started": self.runs_started,
            "ticks_dropped": self.ticks_dropped,
            "runs_failed": self.runs_failed,
            "runs_cancelled": self.runs_cancelled,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the collector scheduler."""

    healthy: bool
    backend: BackendHealth | dict
    collectors_enabled: int = 0
    running: list[str] = field(default_factory=list)
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "collectors_enabled": self.collectors_enabled,
            "running": list(self.running),
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": self.stats.to_dict(),
        }


@dataclass
class _ActiveRun:
    record: ExecutionRecord
    cancel_event: asyncio.Event
    task: asyncio.Task[None] | None = None


class CollectorScheduler:
    """Owns the registered collectors and their runs.

    Example:
        >>> scheduler = CollectorScheduler(store, executor, aggregator)
        >>> scheduler.start()                       # inside a running loop
        >>> started, execution_id = await scheduler.trigger_run("CPU", "ops@corp")
        >>> await scheduler.wait_idle()
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        store: HealthStore,
        executor: CollectorExecutor,
        aggregator: ScoreAggregator,
        *,
        backend: SchedulerBackend | None = None,
        instance_provider: InstanceProvider | None = None,
        event_bus: EventBus | None = None,
        settings: HealthScoreSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.executor = executor
        self.aggregator = aggregator
        self.settings = settings or HealthScoreSettings()
        self.backend = backend or AsyncioSchedulerBackend()
        self.instances = instance_provider or FilteredInstanceProvider.from_settings(
            store, self.settings
        )
        self.event_bus = event_bus or get_event_bus()
        self.audit = ExecutionAuditLog(store)
        self._clock = clock

        self._active: dict[str, _ActiveRun] = {}
        self._last_started: dict[str, datetime] = {}
        self._stats = SchedulerStats()
        self._started = False

    # === Lifecycle ===

    def start(self) -> None:
        """Start the backend tick loop."""
        if self._started:
            logger.warning("scheduler_already_running")
            return
        logger.info(
            "scheduler_starting",
            backend=self.backend.name,
            interval_seconds=self.settings.scheduler_tick_seconds,
        )
        self.backend.start(self.tick, self.settings.scheduler_tick_seconds)
        self._started = True

    async def stop(self, *, cancel_running: bool = False) -> None:
        """Stop ticking and wait for in-flight runs to finalize.

        With ``cancel_running`` the in-flight runs are cancelled cooperatively
        first.
        """
        if self._started:
            self.backend.stop()
            wait_stopped = getattr(self.backend, "wait_stopped", None)
            if wait_stopped is not None:
                await wait_stopped()
            self._started = False
        if cancel_running:
            for name in list(self._active):
                self.cancel(name)
        await self.wait_idle()
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    # === Tick Processing ===

    async def tick(self) -> None:
        """Single scheduler tick: start every due, idle, enabled collector."""
        self._stats.tick_count += 1
        now = self._clock()
        self._stats.last_tick = now

        try:
            collectors = self.store.list_collectors(enabled_only=True)
        except Exception as e:
            self._stats.last_error = describe_error(e)
            logger.exception("scheduler_tick_failed", error=str(e))
            return

        for collector in collectors:
            if not self._is_due(collector, now):
                continue
            if self.state(collector.name) is CollectorState.RUNNING:
                self._stats.ticks_dropped += 1
                logger.debug("scheduled_tick_dropped", collector=collector.name)
                continue
            try:
                self._start_run(collector.name, TriggerKind.SCHEDULED, None)
            except Exception as e:
                self._stats.last_error = describe_error(e)
                logger.exception("scheduled_run_not_started", collector=collector.name, error=str(e))

    def _is_due(self, collector: CollectorDefinition, now: datetime) -> bool:
        interval = max(collector.effective_interval_seconds, self.settings.min_interval_seconds)
        candidates = [
            t for t in (collector.last_execution_at, self._last_started.get(collector.name.lower()))
            if t is not None
        ]
        if not candidates:
            return True
        last = max(t if t.tzinfo else t.replace(tzinfo=UTC) for t in candidates)
        return (now - last).total_seconds() >= interval

    # === Manual Operations ===

    async def trigger_run(
        self,
        collector_name: str,
        triggered_by: str | None = None,
        trigger: TriggerKind = TriggerKind.MANUAL,
    ) -> tuple[bool, str | None]:
        """Start a run now unless one is already in flight.

        Returns:
            ``(True, execution_id)`` if started, ``(False, None)`` if the
            collector is already running or the run could not be recorded.

        Raises:
            CollectorNotFoundError: no collector has that name
        """
        collector = self.store.get_collector(collector_name)
        if collector is None:
            raise CollectorNotFoundError(collector_name)

        if self.state(collector.name) is CollectorState.RUNNING:
            logger.info(
                "manual_run_rejected",
                collector=collector.name,
                reason="already_running",
                triggered_by=triggered_by,
            )
            return False, None

        try:
            record = self._start_run(collector.name, trigger, triggered_by)
        except Exception as e:
            self._stats.last_error = describe_error(e)
            logger.exception("manual_run_not_started", collector=collector.name, error=str(e))
            return False, None
        if record is None:
            return False, None
        return True, record.id

    def cancel(self, collector_name: str) -> bool:
        """Request cooperative cancellation of the in-flight run, if any."""
        active = self._active.get(collector_name.lower())
        if active is None:
            return False
        active.cancel_event.set()
        logger.info("run_cancel_requested", collector=collector_name, execution_id=active.record.id)
        return True

    def state(self, collector_name: str) -> CollectorState:
        if collector_name.lower() in self._active:
            return CollectorState.RUNNING
        return CollectorState.IDLE

    def running_collectors(self) -> list[str]:
        return [active.record.collector_name for active in self._active.values()]

    async def wait_idle(self) -> None:
        """Wait until no run is in flight."""
        while self._active:
            tasks = [a.task for a in self._active.values() if a.task is not None]
            if not tasks:
                await asyncio.sleep(0)
                continue
            await asyncio.gather(*tasks, return_exceptions=True)

    def recent_runs(self, collector_name: str | None = None, limit: int = 20) -> list[ExecutionRecord]:
        return self.audit.recent(collector_name, limit)

    # === Run lifecycle ===

    def _start_run(
        self,
        collector_name: str,
        trigger: TriggerKind,
        triggered_by: str | None,
    ) -> ExecutionRecord | None:
        # Check-and-set with no await in between: this is the no-overlap guard.
        key = collector_name.lower()
        if key in self._active:
            return None

        record = self.audit.start(collector_name, trigger, triggered_by)
        active = _ActiveRun(record=record, cancel_event=asyncio.Event())
        self._active[key] = active
        self._last_started[key] = record.started_at
        self._stats.runs_started += 1
        active.task = asyncio.get_running_loop().create_task(
            self._run(active), name=f"collector-run:{collector_name}"
        )
        return record

    async def _run(self, active: _ActiveRun) -> None:
        record = active.record
        key = record.collector_name.lower()
        result: ExecutionResult | None = None
        run_error: str | None = None

        async with LogContext(collector=record.collector_name, execution_id=record.id):
            try:
                try:
                    result = await self._execute(record, active.cancel_event)
                    self.audit.finalize(record, result)
                except asyncio.CancelledError:
                    self._close_quietly(record, ExecutionStatus.CANCELLED, "Run task cancelled")
                    self._stats.runs_cancelled += 1
                    self._update_bookkeeping(record, None)
                    raise
                except Exception as e:
                    run_error = describe_error(e)
                    logger.error("collector_run_failed", error=run_error)
                    self._close_quietly(record, ExecutionStatus.FAILED, run_error)

                if record.status is ExecutionStatus.FAILED:
                    self._stats.runs_failed += 1
                    run_error = run_error or record.error_summary
                elif record.status is ExecutionStatus.CANCELLED:
                    self._stats.runs_cancelled += 1

                aggregation_error = None
                if result is not None and result.succeeded_instances:
                    aggregation_error = await self._recompute(result.succeeded_instances, record.id)

                self._update_bookkeeping(record, run_error or aggregation_error)
                await self._publish(collector_run_completed(record))
            finally:
                self._active.pop(key, None)

    async def _execute(self, record: ExecutionRecord, cancel_event: asyncio.Event) -> ExecutionResult:
        """Refresh the run's configuration snapshot and hand it to the executor."""
        collector = self.store.get_collector(record.collector_name)
        if collector is None:
            raise RunPreconditionError("Collector no longer exists")
        if not collector.is_enabled:
            raise RunPreconditionError("Collector is disabled")

        instances = self.instances.list_instances()
        if not instances:
            raise RunPreconditionError("No eligible instances")

        logger.info(
            "collector_run_started",
            trigger=record.trigger.value,
            triggered_by=record.triggered_by,
            instances=len(instances),
        )
        return await self.executor.run(
            collector,
            instances,
            rules=self.store.list_rules(collector.name, active_only=True),
            queries=self.store.list_queries(collector.name),
            exclusions=ExclusionRegistry.from_store(self.store, collector.name, now=self._clock()),
            execution_id=record.id,
            cancel_event=cancel_event,
        )

    async def _recompute(self, instance_names: list[str], execution_id: str) -> str | None:
        """Recompute composites for every touched instance; returns the last error, if any."""
        results = await asyncio.gather(
            *(self.aggregator.recompute(name, correlation_id=execution_id) for name in instance_names),
            return_exceptions=True,
        )
        error: str | None = None
        for name, outcome in zip(instance_names, results):
            if isinstance(outcome, AggregationError):
                error = describe_error(outcome)
                logger.error("composite_recompute_failed", instance=name, error=outcome.message)
            elif isinstance(outcome, Exception):
                error = describe_error(outcome)
                logger.error("composite_recompute_failed", instance=name, error=error)
            elif isinstance(outcome, BaseException):
                raise outcome
        return error

    def _close_quietly(self, record: ExecutionRecord, status: ExecutionStatus, summary: str) -> None:
        if record.status.is_terminal:
            return
        try:
            if status is ExecutionStatus.CANCELLED:
                self.audit.cancel(record, summary)
            else:
                self.audit.fail(record, summary)
        except Exception as e:
            self._stats.last_error = describe_error(e)
            logger.exception("execution_finalize_failed", error=str(e))

    def _update_bookkeeping(self, record: ExecutionRecord, error: str | None) -> None:
        """Write last-run fields onto the current collector definition."""
        try:
            collector = self.store.get_collector(record.collector_name)
            if collector is None:
                return
            collector.last_execution_at = record.started_at
            collector.last_execution_duration_ms = record.duration_ms
            collector.last_instances_processed = record.total_instances
            if error:
                collector.last_error = error
                collector.last_error_at = record.completed_at or self._clock()
            self.store.save_collector(collector)
        except Exception as e:
            self._stats.last_error = describe_error(e)
            logger.exception("bookkeeping_update_failed", error=str(e))

    async def _publish(self, event: Event) -> None:
        try:
            await self.event_bus.publish(event)
        except Exception as e:
            logger.warning("event_publish_failed", event_type=event.event_type, error=str(e))

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        try:
            enabled = len(self.store.list_collectors(enabled_only=True))
        except Exception:
            enabled = 0
        return SchedulerHealth(
            healthy=self._started and bool(backend_health.get("healthy", False)),
            backend=backend_health,
            collectors_enabled=enabled,
            running=self.running_collectors(),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


def build_scheduler(
    store: HealthStore,
    adapter: Any,
    *,
    settings: HealthScoreSettings | None = None,
    event_bus: EventBus | None = None,
    backend: SchedulerBackend | None = None,
    instance_provider: InstanceProvider | None = None,
) -> CollectorScheduler:
    """Wire executor, aggregator and scheduler around one store and adapter."""
    settings = settings or HealthScoreSettings()
    event_bus = event_bus or get_event_bus()
    return CollectorScheduler(
        store,
        CollectorExecutor(
            adapter,
            store,
            default_timeout_seconds=settings.default_timeout_seconds,
            default_parallel_degree=settings.default_parallel_degree,
        ),
        ScoreAggregator(store, settings, event_bus=event_bus),
        backend=backend,
        instance_provider=instance_provider,
        event_bus=event_bus,
        settings=settings,
    )


__all__ = [
    "CollectorScheduler",
    "SchedulerHealth",
    "SchedulerStats",
    "build_scheduler",
]
