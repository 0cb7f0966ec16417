"""
Collector Executor: run one collector across the instance roster.

Manifesto:
    Partial failure is the steady state of a large fleet. One unreachable
    instance, one missing query variant or one slow server must never
    cost the scores of the others.

Architecture:
    ::

        run(collector, instances)
          │
          ├── parallel_degree workers drain one shared iterator
          │     (no per-instance task is created up front)
          │
          └── per instance (_process):
                1. full-scope exclusion        → Skipped
                2. platform version (detect if unknown)
                3. resolve VersionedQuery      → ConfigurationError = Error
                4. adapter.fetch under deadline → TimeoutExpired / AdapterError = Error
                5. evaluate_category(rules, raw, forgiven groups)
                6. append CategoryScoreSnapshot → Success

        Cancellation: workers stop taking new instances once the cancel
        event is set; fetches already dispatched finish or time out.

Tags:
    executor, worker-pool, asyncio, fault-isolation, collectors

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from healthscore.collection.adapter import MetricSourceAdapter, RawMetrics, VersionDetector
from healthscore.collection.exclusions import ExclusionRegistry
from healthscore.collection.queries import UNKNOWN_VERSION, resolve_query
from healthscore.collection.timeout import TimeoutExpired, with_deadline_async
from healthscore.core.errors import (
    AdapterError,
    ConfigurationError,
    FetchTimeoutError,
    HealthScoreError,
    MetricQueryError,
    describe_error,
)
from healthscore.core.logging import get_logger
from healthscore.core.models import (
    CategoryScoreSnapshot,
    CollectorDefinition,
    ExecutionStatus,
    InstanceOutcome,
    InstanceRef,
    ThresholdRule,
    VersionedQuery,
    utcnow,
)
from healthscore.core.store import HealthStore
from healthscore.scoring.thresholds import evaluate_category

logger = get_logger(__name__)

MAX_SUMMARY_ERRORS = 5


@dataclass
class InstanceResult:
    """Outcome for one instance inside one run."""

    instance_name: str
    outcome: InstanceOutcome
    score: int | None = None
    error: str | None = None
    error_kind: str | None = None
    query_name: str | None = None
    platform_version: int | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_name": self.instance_name,
            "outcome": self.outcome.value,
            "score": self.score,
            "error": self.error,
            "error_kind": self.error_kind,
            "query_name": self.query_name,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ExecutionResult:
    """Aggregate outcome of one collector run."""

    collector_name: str
    results: list[InstanceResult] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def _count(self, outcome: InstanceOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def success_count(self) -> int:
        return self._count(InstanceOutcome.SUCCESS)

    @property
    def error_count(self) -> int:
        return self._count(InstanceOutcome.ERROR)

    @property
    def skipped_count(self) -> int:
        return self._count(InstanceOutcome.SKIPPED)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded_instances(self) -> list[str]:
        return [r.instance_name for r in self.results if r.outcome is InstanceOutcome.SUCCESS]

    @property
    def status(self) -> ExecutionStatus:
        """Cancelled if cancelled; Failed only when every attempted instance failed."""
        if self.cancelled:
            return ExecutionStatus.CANCELLED
        if self.error_count and not self.success_count:
            return ExecutionStatus.FAILED
        return ExecutionStatus.COMPLETED

    def error_summary(self, limit: int = MAX_SUMMARY_ERRORS) -> str | None:
        errors = [r for r in self.results if r.outcome is InstanceOutcome.ERROR]
        if not errors:
            return None
        lines = [f"{r.instance_name}: [{r.error_kind}] {r.error}" for r in errors[:limit]]
        if len(errors) > limit:
            lines.append(f"... and {len(errors) - limit} more")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collector_name": self.collector_name,
            "status": self.status.value,
            "total": self.total,
            "success": self.success_count,
            "error": self.error_count,
            "skipped": self.skipped_count,
            "cancelled": self.cancelled,
            "results": [r.to_dict() for r in self.results],
        }


def _error_kind(error: BaseException) -> str:
    if isinstance(error, AdapterError):
        return error.kind.value
    if isinstance(error, ConfigurationError):
        return "Configuration"
    if isinstance(error, HealthScoreError):
        return error.category.value.title()
    return "Internal"


class CollectorExecutor:
    """Runs one collector over a set of instances with a bounded worker pool.

    Parameters
    ----------
    adapter : MetricSourceAdapter
        Fetches raw metrics; may also implement ``detect_version``.
    store : HealthStore
        Receives one CategoryScoreSnapshot per successful instance.
    default_timeout_seconds, default_parallel_degree
        Used for collectors whose own value is not positive.
    """

    def __init__(
        self,
        adapter: MetricSourceAdapter,
        store: HealthStore,
        *,
        default_timeout_seconds: float = 30,
        default_parallel_degree: int = 5,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._default_timeout = default_timeout_seconds
        self._default_parallel = max(1, default_parallel_degree)

    def timeout_for(self, collector: CollectorDefinition) -> float:
        if collector.timeout_seconds > 0:
            return collector.timeout_seconds
        return self._default_timeout

    def parallel_degree_for(self, collector: CollectorDefinition) -> int:
        if collector.parallel_degree > 0:
            return collector.parallel_degree
        return self._default_parallel

    async def run(
        self,
        collector: CollectorDefinition,
        instances: Iterable[InstanceRef],
        *,
        rules: list[ThresholdRule] | None = None,
        queries: list[VersionedQuery] | None = None,
        exclusions: ExclusionRegistry | None = None,
        execution_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Run *collector* across *instances*.

        Configuration not passed in is read from the store once, before any
        instance is dispatched. Never raises for per-instance failures.
        """
        if rules is None:
            rules = self._store.list_rules(collector.name, active_only=True)
        if queries is None:
            queries = self._store.list_queries(collector.name)
        if exclusions is None:
            exclusions = ExclusionRegistry.from_store(self._store, collector.name)

        result = ExecutionResult(collector_name=collector.name)
        pending: Iterator[InstanceRef] = iter(instances)
        workers = self.parallel_degree_for(collector)

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        async def worker() -> None:
            while not cancelled():
                instance = next(pending, None)
                if instance is None:
                    return
                result.results.append(
                    await self._process(
                        collector, instance, rules, queries, exclusions, execution_id
                    )
                )

        logger.info(
            "collector_executor_started",
            collector=collector.name,
            parallel_degree=workers,
            timeout_seconds=self.timeout_for(collector),
        )

        await asyncio.gather(*(worker() for _ in range(workers)))

        result.cancelled = cancelled()
        result.completed_at = utcnow()

        logger.info(
            "collector_executor_finished",
            collector=collector.name,
            status=result.status.value,
            success=result.success_count,
            error=result.error_count,
            skipped=result.skipped_count,
        )
        return result

    async def _process(
        self,
        collector: CollectorDefinition,
        instance: InstanceRef,
        rules: list[ThresholdRule],
        queries: list[VersionedQuery],
        exclusions: ExclusionRegistry,
        execution_id: str | None,
    ) -> InstanceResult:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        override = exclusions.skip_override(collector.name, instance.name)
        if override is not None:
            logger.info(
                "instance_skipped",
                collector=collector.name,
                instance=instance.name,
                exception_type=override.exception_type,
                reason=override.reason,
            )
            return InstanceResult(instance.name, InstanceOutcome.SKIPPED, duration_ms=0)

        version = instance.platform_version
        query_name: str | None = None
        try:
            if version == UNKNOWN_VERSION:
                version = await self._detect_version(collector, instance)

            query = resolve_query(
                queries, version, collector_name=collector.name, instance_name=instance.name
            )
            query_name = query.query_name

            raw = await self._fetch(collector, instance, query)

            try:
                evaluation = evaluate_category(
                    rules,
                    raw.value,
                    raw.values,
                    forgiven_groups=exclusions.forgiven_groups(collector.name, instance.name),
                )
            except ValueError as e:
                raise MetricQueryError(str(e), cause=e).with_context(
                    collector=collector.name, instance=instance.name
                ) from e

            metrics = raw.to_snapshot_metrics()
            metrics["evaluation"] = evaluation.to_metrics()
            metrics["query_name"] = query.query_name
            await asyncio.to_thread(
                self._store.append_snapshot,
                CategoryScoreSnapshot(
                    instance_name=instance.name,
                    category=collector.name,
                    score=evaluation.score,
                    collected_at=raw.fetched_at,
                    metrics=metrics,
                    execution_id=execution_id,
                ),
            )
        except Exception as e:
            error = e.message if isinstance(e, HealthScoreError) else str(e) or repr(e)
            logger.warning(
                "instance_fetch_failed",
                collector=collector.name,
                instance=instance.name,
                error_kind=_error_kind(e),
                error=describe_error(e),
            )
            return InstanceResult(
                instance.name,
                InstanceOutcome.ERROR,
                error=error,
                error_kind=_error_kind(e),
                query_name=query_name,
                platform_version=version,
                duration_ms=elapsed_ms(),
            )

        logger.debug(
            "instance_scored",
            collector=collector.name,
            instance=instance.name,
            score=evaluation.score,
            query=query.query_name,
        )
        return InstanceResult(
            instance.name,
            InstanceOutcome.SUCCESS,
            score=evaluation.score,
            query_name=query.query_name,
            platform_version=version,
            duration_ms=elapsed_ms(),
        )

    async def _detect_version(self, collector: CollectorDefinition, instance: InstanceRef) -> int:
        if not isinstance(self._adapter, VersionDetector):
            return UNKNOWN_VERSION
        operation = f"detect_version@{instance.name}"
        try:
            async with with_deadline_async(self.timeout_for(collector), operation) as ctx:
                return int(await self._adapter.detect_version(instance, ctx.deadline_at))
        except Exception as e:
            logger.warning(
                "version_detection_failed",
                collector=collector.name,
                instance=instance.name,
                error=describe_error(e),
            )
            return UNKNOWN_VERSION

    async def _fetch(
        self,
        collector: CollectorDefinition,
        instance: InstanceRef,
        query: VersionedQuery,
    ) -> RawMetrics:
        operation = f"{collector.name}@{instance.name}"
        timeout = self.timeout_for(collector)
        try:
            async with with_deadline_async(timeout, operation) as ctx:
                raw = await self._adapter.fetch(instance, query, ctx.deadline_at)
        except TimeoutExpired as e:
            raise FetchTimeoutError(
                f"Fetch exceeded {timeout}s deadline", cause=e
            ).with_context(collector=collector.name, instance=instance.name) from e
        except AdapterError as e:
            raise e.with_context(collector=collector.name, instance=instance.name)
        except Exception as e:
            raise MetricQueryError(str(e) or repr(e), cause=e).with_context(
                collector=collector.name, instance=instance.name
            ) from e

        if not isinstance(raw, RawMetrics):
            raise MetricQueryError(
                f"Adapter returned {type(raw).__name__}, expected RawMetrics"
            ).with_context(collector=collector.name, instance=instance.name)
        return raw


__all__ = ["CollectorExecutor", "ExecutionResult", "InstanceResult"]
