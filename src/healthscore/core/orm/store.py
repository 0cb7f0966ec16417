"""SQLAlchemy implementation of :class:`~healthscore.core.store.HealthStore`.

Each method opens its own short session (``with self._session() as s, s.begin()``)
so callers never hold a transaction across an await point.

Example::

    engine = create_health_engine("sqlite:///data/healthscore.db")
    init_db(engine)
    store = SqlAlchemyHealthStore(engine)
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from healthscore.core.models import (
    ActionType,
    CategoryScoreSnapshot,
    CollectorDefinition,
    ComparisonOperator,
    CompositeHealthScore,
    ExclusionOverride,
    ExecutionRecord,
    ExecutionStatus,
    InstanceRef,
    ThresholdRule,
    TriggerKind,
    VersionedQuery,
    utcnow,
)
from healthscore.core.orm.session import health_session_factory
from healthscore.core.orm.tables import (
    CategorySnapshotTable,
    CollectorTable,
    CompositeScoreTable,
    ExclusionTable,
    ExecutionTable,
    InstanceTable,
    ThresholdRuleTable,
    VersionedQueryTable,
)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class SqlAlchemyHealthStore:
    """Health store backed by any SQLAlchemy 2.0 engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = health_session_factory(engine)
        # A StaticPool shares one connection, so worker threads take turns.
        self._lock = threading.RLock() if isinstance(engine.pool, StaticPool) else nullcontext()

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._lock, self._session_factory() as session:
            yield session

    # ── Collectors ───────────────────────────────────────────────

    def list_collectors(self, *, enabled_only: bool = False) -> list[CollectorDefinition]:
        stmt = select(CollectorTable).order_by(
            CollectorTable.category, CollectorTable.execution_order, CollectorTable.name
        )
        if enabled_only:
            stmt = stmt.where(CollectorTable.is_enabled == 1)
        with self._session() as session:
            return [self._row_to_collector(row) for row in session.scalars(stmt)]

    def get_collector(self, name: str) -> CollectorDefinition | None:
        with self._session() as session:
            row = session.get(CollectorTable, name.lower())
            return self._row_to_collector(row) if row else None

    def save_collector(self, collector: CollectorDefinition) -> None:
        collector.updated_at = utcnow()
        with self._session() as session, session.begin():
            session.merge(
                CollectorTable(
                    key=collector.name.lower(),
                    name=collector.name,
                    display_name=collector.display_name,
                    description=collector.description,
                    is_enabled=collector.is_enabled,
                    interval_seconds=collector.interval_seconds,
                    timeout_seconds=collector.timeout_seconds,
                    weight=collector.weight,
                    parallel_degree=collector.parallel_degree,
                    category=collector.category,
                    execution_order=collector.execution_order,
                    last_execution_at=collector.last_execution_at,
                    last_execution_duration_ms=collector.last_execution_duration_ms,
                    last_instances_processed=collector.last_instances_processed,
                    last_error=collector.last_error,
                    last_error_at=collector.last_error_at,
                    created_at=collector.created_at,
                    updated_at=collector.updated_at,
                )
            )

    # ── Threshold rules ──────────────────────────────────────────

    def list_rules(self, collector_name: str, *, active_only: bool = False) -> list[ThresholdRule]:
        stmt = (
            select(ThresholdRuleTable)
            .where(ThresholdRuleTable.collector_key == collector_name.lower())
            .order_by(ThresholdRuleTable.evaluation_order)
        )
        if active_only:
            stmt = stmt.where(ThresholdRuleTable.is_active == 1)
        with self._session() as session:
            return [self._row_to_rule(row) for row in session.scalars(stmt)]

    def save_rule(self, rule: ThresholdRule) -> None:
        with self._session() as session, session.begin():
            session.merge(
                ThresholdRuleTable(
                    id=rule.id,
                    collector_key=rule.collector_name.lower(),
                    collector_name=rule.collector_name,
                    name=rule.name,
                    display_name=rule.display_name,
                    description=rule.description,
                    threshold_value=rule.threshold_value,
                    default_value=rule.default_value,
                    operator=rule.operator.value,
                    resulting_score=rule.resulting_score,
                    action=rule.action.value,
                    evaluation_order=rule.evaluation_order,
                    is_active=rule.is_active,
                    group_name=rule.group,
                )
            )

    # ── Versioned queries ────────────────────────────────────────

    def list_queries(self, collector_name: str) -> list[VersionedQuery]:
        stmt = select(VersionedQueryTable).where(
            VersionedQueryTable.collector_key == collector_name.lower()
        )
        with self._session() as session:
            return [self._row_to_query(row) for row in session.scalars(stmt)]

    def save_query(self, query: VersionedQuery) -> None:
        with self._session() as session, session.begin():
            session.merge(
                VersionedQueryTable(
                    id=query.id,
                    collector_key=query.collector_name.lower(),
                    collector_name=query.collector_name,
                    query_name=query.query_name,
                    query_text=query.query_text,
                    description=query.description,
                    min_version=query.min_version,
                    max_version=query.max_version,
                    priority=query.priority,
                    is_active=query.is_active,
                )
            )

    # ── Exclusions ───────────────────────────────────────────────

    def list_exclusions(self, collector_name: str | None = None) -> list[ExclusionOverride]:
        stmt = select(ExclusionTable)
        if collector_name is not None:
            stmt = stmt.where(ExclusionTable.collector_key == collector_name.lower())
        with self._session() as session:
            return [self._row_to_exclusion(row) for row in session.scalars(stmt)]

    def save_exclusion(self, exclusion: ExclusionOverride) -> None:
        with self._session() as session, session.begin():
            session.merge(
                ExclusionTable(
                    id=exclusion.id,
                    collector_key=exclusion.collector_name.lower(),
                    collector_name=exclusion.collector_name,
                    exception_type=exclusion.exception_type,
                    instance_name=exclusion.instance_name,
                    is_active=exclusion.is_active,
                    expires_at=exclusion.expires_at,
                    reason=exclusion.reason,
                    created_by=exclusion.created_by,
                    created_at=exclusion.created_at,
                )
            )

    def delete_exclusion(self, exclusion_id: str) -> bool:
        with self._session() as session, session.begin():
            result = session.execute(delete(ExclusionTable).where(ExclusionTable.id == exclusion_id))
            return bool(result.rowcount)

    # ── Instances ────────────────────────────────────────────────

    def list_instances(self) -> list[InstanceRef]:
        with self._session() as session:
            rows = session.scalars(select(InstanceTable).order_by(InstanceTable.key))
            return [
                InstanceRef(
                    name=row.name,
                    platform_version=row.platform_version,
                    environment=row.environment,
                    hosting_site=row.hosting_site,
                    is_dmz=bool(row.is_dmz),
                    is_cloud=bool(row.is_cloud),
                    tags=tuple(row.tags or ()),
                )
                for row in rows
            ]

    def save_instance(self, instance: InstanceRef) -> None:
        with self._session() as session, session.begin():
            session.merge(
                InstanceTable(
                    key=instance.key,
                    name=instance.name,
                    platform_version=instance.platform_version,
                    environment=instance.environment,
                    hosting_site=instance.hosting_site,
                    is_dmz=instance.is_dmz,
                    is_cloud=instance.is_cloud,
                    tags=list(instance.tags),
                )
            )

    # ── Execution audit ──────────────────────────────────────────

    def append_execution(self, record: ExecutionRecord) -> None:
        with self._session() as session, session.begin():
            row = ExecutionTable(id=record.id)
            self._apply_execution(row, record)
            session.add(row)

    def update_execution(self, record: ExecutionRecord) -> None:
        with self._session() as session, session.begin():
            row = session.get(ExecutionTable, record.id)
            if row is None:
                raise KeyError(record.id)
            self._apply_execution(row, record)

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        with self._session() as session:
            row = session.get(ExecutionTable, execution_id)
            return self._row_to_execution(row) if row else None

    def list_executions(
        self,
        collector_name: str | None = None,
        *,
        limit: int = 50,
    ) -> list[ExecutionRecord]:
        stmt = select(ExecutionTable).order_by(ExecutionTable.started_at.desc()).limit(limit)
        if collector_name is not None:
            stmt = stmt.where(ExecutionTable.collector_key == collector_name.lower())
        with self._session() as session:
            return [self._row_to_execution(row) for row in session.scalars(stmt)]

    # ── Category snapshots ───────────────────────────────────────

    def append_snapshot(self, snapshot: CategoryScoreSnapshot) -> None:
        with self._session() as session, session.begin():
            session.add(
                CategorySnapshotTable(
                    id=snapshot.id,
                    instance_key=snapshot.instance_name.lower(),
                    instance_name=snapshot.instance_name,
                    category=snapshot.category,
                    score=snapshot.score,
                    collected_at=snapshot.collected_at,
                    metrics=_jsonable(snapshot.metrics),
                    execution_id=snapshot.execution_id,
                )
            )

    def latest_snapshots(
        self,
        instance_name: str,
        *,
        since: datetime | None = None,
    ) -> dict[str, CategoryScoreSnapshot]:
        stmt = (
            select(CategorySnapshotTable)
            .where(CategorySnapshotTable.instance_key == instance_name.lower())
            .order_by(CategorySnapshotTable.collected_at)
        )
        if since is not None:
            stmt = stmt.where(CategorySnapshotTable.collected_at >= since)
        latest: dict[str, CategoryScoreSnapshot] = {}
        with self._session() as session:
            for row in session.scalars(stmt):
                latest[row.category] = CategoryScoreSnapshot(
                    id=row.id,
                    instance_name=row.instance_name,
                    category=row.category,
                    score=row.score,
                    collected_at=_aware(row.collected_at),
                    metrics=dict(row.metrics or {}),
                    execution_id=row.execution_id,
                )
        return latest

    # ── Composite scores ─────────────────────────────────────────

    def append_composite(self, composite: CompositeHealthScore) -> None:
        with self._session() as session, session.begin():
            session.add(
                CompositeScoreTable(
                    id=composite.id,
                    instance_key=composite.instance_name.lower(),
                    instance_name=composite.instance_name,
                    score=composite.score,
                    status=composite.status,
                    category_scores=dict(composite.category_scores),
                    contributions=dict(composite.contributions),
                    global_cap=composite.global_cap,
                    computed_at=composite.computed_at,
                )
            )

    def latest_composite(self, instance_name: str) -> CompositeHealthScore | None:
        history = self.list_composites(instance_name, limit=1)
        return history[0] if history else None

    def list_composites(self, instance_name: str, *, limit: int = 50) -> list[CompositeHealthScore]:
        stmt = (
            select(CompositeScoreTable)
            .where(CompositeScoreTable.instance_key == instance_name.lower())
            .order_by(CompositeScoreTable.computed_at.desc(), CompositeScoreTable.seq.desc())
            .limit(limit)
        )
        with self._session() as session:
            return [
                CompositeHealthScore(
                    id=row.id,
                    instance_name=row.instance_name,
                    score=row.score,
                    status=row.status,
                    category_scores=dict(row.category_scores),
                    contributions=dict(row.contributions),
                    global_cap=row.global_cap,
                    computed_at=_aware(row.computed_at),
                )
                for row in session.scalars(stmt)
            ]

    # ── Row mappers ──────────────────────────────────────────────

    @staticmethod
    def _apply_execution(row: ExecutionTable, record: ExecutionRecord) -> None:
        row.collector_key = record.collector_name.lower()
        row.collector_name = record.collector_name
        row.trigger = record.trigger.value
        row.triggered_by = record.triggered_by
        row.status = record.status.value
        row.started_at = record.started_at
        row.completed_at = record.completed_at
        row.total_instances = record.total_instances
        row.success_count = record.success_count
        row.error_count = record.error_count
        row.skipped_count = record.skipped_count
        row.error_summary = record.error_summary

    @staticmethod
    def _row_to_execution(row: ExecutionTable) -> ExecutionRecord:
        return ExecutionRecord(
            id=row.id,
            collector_name=row.collector_name,
            trigger=TriggerKind(row.trigger),
            triggered_by=row.triggered_by,
            status=ExecutionStatus(row.status),
            started_at=_aware(row.started_at),
            completed_at=_aware(row.completed_at),
            total_instances=row.total_instances,
            success_count=row.success_count,
            error_count=row.error_count,
            skipped_count=row.skipped_count,
            error_summary=row.error_summary,
        )

    @staticmethod
    def _row_to_collector(row: CollectorTable) -> CollectorDefinition:
        return CollectorDefinition(
            name=row.name,
            display_name=row.display_name,
            description=row.description,
            is_enabled=bool(row.is_enabled),
            interval_seconds=row.interval_seconds,
            timeout_seconds=row.timeout_seconds,
            weight=Decimal(row.weight),
            parallel_degree=row.parallel_degree,
            category=row.category,
            execution_order=row.execution_order,
            last_execution_at=_aware(row.last_execution_at),
            last_execution_duration_ms=row.last_execution_duration_ms,
            last_instances_processed=row.last_instances_processed,
            last_error=row.last_error,
            last_error_at=_aware(row.last_error_at),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    @staticmethod
    def _row_to_rule(row: ThresholdRuleTable) -> ThresholdRule:
        return ThresholdRule(
            id=row.id,
            collector_name=row.collector_name,
            name=row.name,
            display_name=row.display_name,
            description=row.description,
            threshold_value=Decimal(row.threshold_value),
            default_value=Decimal(row.default_value) if row.default_value is not None else None,
            operator=ComparisonOperator(row.operator),
            resulting_score=row.resulting_score,
            action=ActionType(row.action),
            evaluation_order=row.evaluation_order,
            is_active=bool(row.is_active),
            group=row.group_name,
        )

    @staticmethod
    def _row_to_query(row: VersionedQueryTable) -> VersionedQuery:
        return VersionedQuery(
            id=row.id,
            collector_name=row.collector_name,
            query_name=row.query_name,
            query_text=row.query_text,
            description=row.description,
            min_version=row.min_version,
            max_version=row.max_version,
            priority=row.priority,
            is_active=bool(row.is_active),
        )

    @staticmethod
    def _row_to_exclusion(row: ExclusionTable) -> ExclusionOverride:
        return ExclusionOverride(
            id=row.id,
            collector_name=row.collector_name,
            exception_type=row.exception_type,
            instance_name=row.instance_name,
            is_active=bool(row.is_active),
            expires_at=_aware(row.expires_at),
            reason=row.reason,
            created_by=row.created_by,
            created_at=_aware(row.created_at),
        )


__all__ = ["SqlAlchemyHealthStore"]
