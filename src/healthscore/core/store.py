"""
Persistence contract consumed by the scoring core.

The core treats storage as a collaborator with read/write contracts only.
Configuration entities (collectors, rules, queries, exclusions, instances)
are CRUD; audit rows and score time series are append-only, except that an
ExecutionRecord is updated exactly once when its run finalizes.

Architecture:
    ::

        HealthStore (Protocol)
        ├── collectors     list / get / save
        ├── rules          list / save
        ├── queries        list / save
        ├── exclusions     list / save / delete
        ├── instances      list / save
        ├── executions     append / update / get / list (newest first)
        ├── snapshots      append / latest per category
        └── composites     append / latest / list (newest first)

    Implementations:
        memory.py     InMemoryHealthStore  (tests, single process)
        orm/store.py  SqlAlchemyHealthStore (any SQLAlchemy URL)

Methods are synchronous; the scheduler and executor call them directly
from the event loop, so implementations are expected to be quick local
writes.

Tags:
    protocol, persistence, store, contracts
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from healthscore.core.models import (
    CategoryScoreSnapshot,
    CollectorDefinition,
    CompositeHealthScore,
    ExclusionOverride,
    ExecutionRecord,
    InstanceRef,
    ThresholdRule,
    VersionedQuery,
)


@runtime_checkable
class HealthStore(Protocol):
    """Read/write contract for configuration, audit and score history."""

    # ── Collectors ───────────────────────────────────────────────

    def list_collectors(self, *, enabled_only: bool = False) -> list[CollectorDefinition]:
        """All collector definitions ordered by (category, execution_order, name)."""
        ...

    def get_collector(self, name: str) -> CollectorDefinition | None:
        ...

    def save_collector(self, collector: CollectorDefinition) -> None:
        """Insert or replace by name."""
        ...

    # ── Threshold rules ──────────────────────────────────────────

    def list_rules(self, collector_name: str, *, active_only: bool = False) -> list[ThresholdRule]:
        """Rules for one collector ordered by evaluation_order."""
        ...

    def save_rule(self, rule: ThresholdRule) -> None:
        ...

    # ── Versioned queries ────────────────────────────────────────

    def list_queries(self, collector_name: str) -> list[VersionedQuery]:
        ...

    def save_query(self, query: VersionedQuery) -> None:
        ...

    # ── Exclusions ───────────────────────────────────────────────

    def list_exclusions(self, collector_name: str | None = None) -> list[ExclusionOverride]:
        ...

    def save_exclusion(self, exclusion: ExclusionOverride) -> None:
        ...

    def delete_exclusion(self, exclusion_id: str) -> bool:
        ...

    # ── Instances ────────────────────────────────────────────────

    def list_instances(self) -> list[InstanceRef]:
        ...

    def save_instance(self, instance: InstanceRef) -> None:
        ...

    # ── Execution audit ──────────────────────────────────────────

    def append_execution(self, record: ExecutionRecord) -> None:
        ...

    def update_execution(self, record: ExecutionRecord) -> None:
        ...

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        ...

    def list_executions(
        self,
        collector_name: str | None = None,
        *,
        limit: int = 50,
    ) -> list[ExecutionRecord]:
        """Newest first by started_at."""
        ...

    # ── Category snapshots ───────────────────────────────────────

    def append_snapshot(self, snapshot: CategoryScoreSnapshot) -> None:
        ...

    def latest_snapshots(
        self,
        instance_name: str,
        *,
        since: datetime | None = None,
    ) -> dict[str, CategoryScoreSnapshot]:
        """Newest snapshot per category for an instance, optionally no older than *since*."""
        ...

    # ── Composite scores ─────────────────────────────────────────

    def append_composite(self, composite: CompositeHealthScore) -> None:
        ...

    def latest_composite(self, instance_name: str) -> CompositeHealthScore | None:
        ...

    def list_composites(self, instance_name: str, *, limit: int = 50) -> list[CompositeHealthScore]:
        """Newest first by computed_at."""
        ...


__all__ = ["HealthStore"]
