"""Health store table definitions.

Configuration tables are keyed for case-insensitive lookups (``*_key``
columns hold the lower-cased name); audit and score tables are append-only.

Tags:
    orm, sqlalchemy, tables

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime
from decimal import Decimal

from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from healthscore.core.orm.base import HealthBase


class CollectorTable(HealthBase):
    __tablename__ = "hs_collectors"

    key: Mapped[str] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(nullable=False)
    display_name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str | None]
    is_enabled: Mapped[bool] = mapped_column(default=True, nullable=False)
    interval_seconds: Mapped[int] = mapped_column(default=300, nullable=False)
    timeout_seconds: Mapped[int] = mapped_column(default=30, nullable=False)
    weight: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    parallel_degree: Mapped[int] = mapped_column(default=5, nullable=False)
    category: Mapped[str] = mapped_column(default="Performance", nullable=False)
    execution_order: Mapped[int] = mapped_column(default=0, nullable=False)
    last_execution_at: Mapped[datetime.datetime | None]
    last_execution_duration_ms: Mapped[int | None]
    last_instances_processed: Mapped[int | None]
    last_error: Mapped[str | None]
    last_error_at: Mapped[datetime.datetime | None]
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(nullable=False)


class ThresholdRuleTable(HealthBase):
    __tablename__ = "hs_threshold_rules"
    __table_args__ = (Index("ix_hs_threshold_rules_collector", "collector_key"),)

    id: Mapped[str] = mapped_column(primary_key=True)
    collector_key: Mapped[str] = mapped_column(nullable=False)
    collector_name: Mapped[str] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(nullable=False)
    display_name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str | None]
    threshold_value: Mapped[Decimal] = mapped_column(nullable=False)
    default_value: Mapped[Decimal | None]
    operator: Mapped[str] = mapped_column(nullable=False)
    resulting_score: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(nullable=False)
    evaluation_order: Mapped[int] = mapped_column(default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    group_name: Mapped[str | None]


class VersionedQueryTable(HealthBase):
    __tablename__ = "hs_versioned_queries"
    __table_args__ = (Index("ix_hs_versioned_queries_collector", "collector_key"),)

    id: Mapped[str] = mapped_column(primary_key=True)
    collector_key: Mapped[str] = mapped_column(nullable=False)
    collector_name: Mapped[str] = mapped_column(nullable=False)
    query_name: Mapped[str] = mapped_column(default="MainQuery", nullable=False)
    query_text: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str | None]
    min_version: Mapped[int] = mapped_column(default=0, nullable=False)
    max_version: Mapped[int | None]
    priority: Mapped[int] = mapped_column(default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class ExclusionTable(HealthBase):
    __tablename__ = "hs_exclusions"
    __table_args__ = (Index("ix_hs_exclusions_collector", "collector_key"),)

    id: Mapped[str] = mapped_column(primary_key=True)
    collector_key: Mapped[str] = mapped_column(nullable=False)
    collector_name: Mapped[str] = mapped_column(nullable=False)
    exception_type: Mapped[str] = mapped_column(nullable=False)
    instance_name: Mapped[str] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    expires_at: Mapped[datetime.datetime | None]
    reason: Mapped[str | None]
    created_by: Mapped[str | None]
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)


class InstanceTable(HealthBase):
    __tablename__ = "hs_instances"

    key: Mapped[str] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(nullable=False)
    platform_version: Mapped[int] = mapped_column(default=0, nullable=False)
    environment: Mapped[str | None]
    hosting_site: Mapped[str | None]
    is_dmz: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_cloud: Mapped[bool] = mapped_column(default=False, nullable=False)
    tags: Mapped[list] = mapped_column(default=list, nullable=False)


class ExecutionTable(HealthBase):
    __tablename__ = "hs_executions"
    __table_args__ = (
        Index("ix_hs_executions_collector_started", "collector_key", "started_at"),
    )

    id: Mapped[str] = mapped_column(primary_key=True)
    collector_key: Mapped[str] = mapped_column(nullable=False)
    collector_name: Mapped[str] = mapped_column(nullable=False)
    trigger: Mapped[str] = mapped_column(nullable=False)
    triggered_by: Mapped[str | None]
    status: Mapped[str] = mapped_column(nullable=False)
    started_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime.datetime | None]
    total_instances: Mapped[int] = mapped_column(default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(default=0, nullable=False)
    error_summary: Mapped[str | None]


class CategorySnapshotTable(HealthBase):
    __tablename__ = "hs_category_snapshots"
    __table_args__ = (
        Index("ix_hs_category_snapshots_instance", "instance_key", "category", "collected_at"),
    )

    id: Mapped[str] = mapped_column(primary_key=True)
    instance_key: Mapped[str] = mapped_column(nullable=False)
    instance_name: Mapped[str] = mapped_column(nullable=False)
    category: Mapped[str] = mapped_column(nullable=False)
    score: Mapped[int] = mapped_column(nullable=False)
    collected_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    metrics: Mapped[dict] = mapped_column(default=dict, nullable=False)
    execution_id: Mapped[str | None]


class CompositeScoreTable(HealthBase):
    __tablename__ = "hs_composite_scores"
    __table_args__ = (
        Index("ix_hs_composite_scores_instance", "instance_key", "computed_at"),
    )

    # Autoincrement row number orders rows computed within the same clock tick.
    seq: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(unique=True, nullable=False)
    instance_key: Mapped[str] = mapped_column(nullable=False)
    instance_name: Mapped[str] = mapped_column(nullable=False)
    score: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(nullable=False)
    category_scores: Mapped[dict] = mapped_column(nullable=False)
    contributions: Mapped[dict] = mapped_column(nullable=False)
    global_cap: Mapped[int] = mapped_column(default=100, nullable=False)
    computed_at: Mapped[datetime.datetime] = mapped_column(nullable=False)


__all__ = [
    "CategorySnapshotTable",
    "CollectorTable",
    "CompositeScoreTable",
    "ExclusionTable",
    "ExecutionTable",
    "InstanceTable",
    "ThresholdRuleTable",
    "VersionedQueryTable",
]
