"""In-memory :class:`~healthscore.core.store.HealthStore`.

Used by the test suite and by single-process demos. Reads hand out copies
of mutable entities so a running collector works on its own snapshot of
the configuration, exactly as it would against a database.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime

from healthscore.core.models import (
    CategoryScoreSnapshot,
    CollectorDefinition,
    CompositeHealthScore,
    ExclusionOverride,
    ExecutionRecord,
    InstanceRef,
    ThresholdRule,
    VersionedQuery,
    utcnow,
)


class InMemoryHealthStore:
    """Dict-backed store, thread-safe for single-process use.

    Example:
        store = InMemoryHealthStore()
        store.save_collector(CollectorDefinition(name="CPU", weight=12))
        store.list_collectors(enabled_only=True)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collectors: dict[str, CollectorDefinition] = {}
        self._rules: dict[str, ThresholdRule] = {}
        self._queries: dict[str, VersionedQuery] = {}
        self._exclusions: dict[str, ExclusionOverride] = {}
        self._instances: dict[str, InstanceRef] = {}
        self._executions: dict[str, ExecutionRecord] = {}
        self._snapshots: list[CategoryScoreSnapshot] = []
        self._composites: list[CompositeHealthScore] = []

    # ── Collectors ───────────────────────────────────────────────

    def list_collectors(self, *, enabled_only: bool = False) -> list[CollectorDefinition]:
        with self._lock:
            collectors = [
                copy.deepcopy(c)
                for c in self._collectors.values()
                if c.is_enabled or not enabled_only
            ]
        return sorted(collectors, key=lambda c: (c.category, c.execution_order, c.name))

    def get_collector(self, name: str) -> CollectorDefinition | None:
        with self._lock:
            collector = self._collectors.get(name.lower())
            return copy.deepcopy(collector) if collector else None

    def save_collector(self, collector: CollectorDefinition) -> None:
        collector.updated_at = utcnow()
        with self._lock:
            self._collectors[collector.name.lower()] = copy.deepcopy(collector)

    # ── Threshold rules ──────────────────────────────────────────

    def list_rules(self, collector_name: str, *, active_only: bool = False) -> list[ThresholdRule]:
        key = collector_name.lower()
        with self._lock:
            rules = [
                copy.deepcopy(r)
                for r in self._rules.values()
                if r.collector_name.lower() == key and (r.is_active or not active_only)
            ]
        return sorted(rules, key=lambda r: r.evaluation_order)

    def save_rule(self, rule: ThresholdRule) -> None:
        with self._lock:
            self._rules[rule.id] = copy.deepcopy(rule)

    # ── Versioned queries ────────────────────────────────────────

    def list_queries(self, collector_name: str) -> list[VersionedQuery]:
        key = collector_name.lower()
        with self._lock:
            return [
                copy.deepcopy(q)
                for q in self._queries.values()
                if q.collector_name.lower() == key
            ]

    def save_query(self, query: VersionedQuery) -> None:
        with self._lock:
            self._queries[query.id] = copy.deepcopy(query)

    # ── Exclusions ───────────────────────────────────────────────

    def list_exclusions(self, collector_name: str | None = None) -> list[ExclusionOverride]:
        with self._lock:
            return [
                copy.deepcopy(e)
                for e in self._exclusions.values()
                if collector_name is None or e.collector_name.lower() == collector_name.lower()
            ]

    def save_exclusion(self, exclusion: ExclusionOverride) -> None:
        with self._lock:
            self._exclusions[exclusion.id] = copy.deepcopy(exclusion)

    def delete_exclusion(self, exclusion_id: str) -> bool:
        with self._lock:
            return self._exclusions.pop(exclusion_id, None) is not None

    # ── Instances ────────────────────────────────────────────────

    def list_instances(self) -> list[InstanceRef]:
        with self._lock:
            return sorted(self._instances.values(), key=lambda i: i.key)

    def save_instance(self, instance: InstanceRef) -> None:
        with self._lock:
            self._instances[instance.key] = instance

    # ── Execution audit ──────────────────────────────────────────

    def append_execution(self, record: ExecutionRecord) -> None:
        with self._lock:
            if record.id in self._executions:
                raise ValueError(f"Execution already recorded: {record.id}")
            self._executions[record.id] = copy.deepcopy(record)

    def update_execution(self, record: ExecutionRecord) -> None:
        with self._lock:
            if record.id not in self._executions:
                raise KeyError(record.id)
            self._executions[record.id] = copy.deepcopy(record)

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        with self._lock:
            record = self._executions.get(execution_id)
            return copy.deepcopy(record) if record else None

    def list_executions(
        self,
        collector_name: str | None = None,
        *,
        limit: int = 50,
    ) -> list[ExecutionRecord]:
        with self._lock:
            records = [
                copy.deepcopy(r)
                for r in self._executions.values()
                if collector_name is None or r.collector_name.lower() == collector_name.lower()
            ]
        records.sort(key=lambda r: r.started_at, reverse=True)
        return records[:limit]

    # ── Category snapshots ───────────────────────────────────────

    def append_snapshot(self, snapshot: CategoryScoreSnapshot) -> None:
        with self._lock:
            self._snapshots.append(snapshot)

    def latest_snapshots(
        self,
        instance_name: str,
        *,
        since: datetime | None = None,
    ) -> dict[str, CategoryScoreSnapshot]:
        key = instance_name.lower()
        latest: dict[str, CategoryScoreSnapshot] = {}
        with self._lock:
            for snapshot in self._snapshots:
                if snapshot.instance_name.lower() != key:
                    continue
                if since is not None and snapshot.collected_at < since:
                    continue
                current = latest.get(snapshot.category)
                if current is None or snapshot.collected_at >= current.collected_at:
                    latest[snapshot.category] = snapshot
        return latest

    # ── Composite scores ─────────────────────────────────────────

    def append_composite(self, composite: CompositeHealthScore) -> None:
        with self._lock:
            self._composites.append(composite)

    def latest_composite(self, instance_name: str) -> CompositeHealthScore | None:
        history = self.list_composites(instance_name, limit=1)
        return history[0] if history else None

    def list_composites(self, instance_name: str, *, limit: int = 50) -> list[CompositeHealthScore]:
        key = instance_name.lower()
        with self._lock:
            rows = [c for c in self._composites if c.instance_name.lower() == key]
        # Equal timestamps: the later append sorts first after reversing.
        rows = sorted(rows, key=lambda c: c.computed_at)
        rows.reverse()
        return rows[:limit]


__all__ = ["InMemoryHealthStore"]
