"""Domain models for the collection, scoring and aggregation engine.

Defines the data contracts shared by every layer:

- CollectorDefinition: one configurable health category (data, not subclass)
- ThresholdRule / VersionedQuery: per-collector configuration rows
- ExclusionOverride: time-boxed per-instance bypass
- ExecutionRecord: append-only audit row for one collector run
- CategoryScoreSnapshot / CompositeHealthScore: time-series outputs
- InstanceRef: one monitored database instance

These models are used by the store implementations, the executor, the
scheduler and the aggregator.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from healthscore.core.errors import InvalidTransitionError

MIN_INTERVAL_SECONDS = 30
FULL_SCOPE_EXCEPTION_TYPES = frozenset({"*", "ALL"})


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================


class ComparisonOperator(str, Enum):
    """Comparison applied as ``value <op> rule.threshold_value``."""

    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "="
    NE = "!="

    def compare(self, value: Decimal, threshold: Decimal) -> bool:
        if self is ComparisonOperator.GT:
            return value > threshold
        if self is ComparisonOperator.LT:
            return value < threshold
        if self is ComparisonOperator.GE:
            return value >= threshold
        if self is ComparisonOperator.LE:
            return value <= threshold
        if self is ComparisonOperator.EQ:
            return value == threshold
        return value != threshold


class ActionType(str, Enum):
    """What a matching threshold rule does to the running score."""

    SCORE = "Score"
    CAP = "Cap"
    PENALTY = "Penalty"


class ExecutionStatus(str, Enum):
    """Status of one collector run.

    Valid transition graph::

        RUNNING → COMPLETED | FAILED | CANCELLED
        COMPLETED, FAILED, CANCELLED → (terminal)
    """

    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


EXECUTION_VALID_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.CANCELLED: frozenset(),
}


def validate_execution_transition(
    current: ExecutionStatus,
    target: ExecutionStatus,
) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_execution_transition(ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED)
        >>> validate_execution_transition(ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING)
        InvalidTransitionError: Invalid ExecutionStatus transition: Completed → Running
    """
    allowed = EXECUTION_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "ExecutionStatus")


class TriggerKind(str, Enum):
    """What started a collector run."""

    SCHEDULED = "Scheduled"
    MANUAL = "Manual"
    ON_DEMAND = "OnDemand"


class InstanceOutcome(str, Enum):
    """Per-instance result inside one run."""

    SUCCESS = "Success"
    ERROR = "Error"
    SKIPPED = "Skipped"


class CollectorState(str, Enum):
    """Scheduler-side state of one collector."""

    IDLE = "Idle"
    RUNNING = "Running"


# =============================================================================
# INSTANCES
# =============================================================================


def instance_aliases(instance_name: str) -> frozenset[str]:
    """Names an instance can be referred to by, lower-cased.

    ``SQL01.corp.local\\PROD`` → full name, ``sql01.corp.local`` and ``sql01``.
    """
    full = instance_name.strip().lower()
    hostname = full.split("\\", 1)[0]
    short_name = hostname.split(".", 1)[0]
    return frozenset({full, hostname, short_name})


@dataclass(frozen=True)
class InstanceRef:
    """One monitored database instance.

    ``platform_version`` is the engine major version (e.g. 15 for SQL Server
    2019); 0 means not yet detected.
    """

    name: str
    platform_version: int = 0
    environment: str | None = None
    hosting_site: str | None = None
    is_dmz: bool = False
    is_cloud: bool = False
    tags: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        """Case-insensitive identity used for locking and lookups."""
        return self.name.lower()


# =============================================================================
# CONFIGURATION ENTITIES
# =============================================================================


@dataclass
class CollectorDefinition:
    """A named, configurable unit of metric collection + scoring.

    Bookkeeping fields (``last_*``) are mutated only by the scheduler,
    right after a run finalizes.
    """

    name: str
    display_name: str = ""
    description: str | None = None
    is_enabled: bool = True
    interval_seconds: int = 300
    timeout_seconds: int = 30
    weight: Decimal = Decimal("0")
    parallel_degree: int = 5
    category: str = "Performance"
    execution_order: int = 0

    last_execution_at: datetime | None = None
    last_execution_duration_ms: int | None = None
    last_instances_processed: int | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.name
        if not isinstance(self.weight, Decimal):
            self.weight = Decimal(str(self.weight))

    @property
    def effective_interval_seconds(self) -> int:
        """Run interval with the 30 second floor applied."""
        return max(self.interval_seconds, MIN_INTERVAL_SECONDS)

    @property
    def effective_parallel_degree(self) -> int:
        return max(1, self.parallel_degree)


@dataclass
class ThresholdRule:
    """One ordered scoring rule belonging to a collector.

    ``group`` names the metric value the rule is evaluated against; ``None``
    means the collector's primary value.
    """

    collector_name: str
    name: str
    threshold_value: Decimal
    operator: ComparisonOperator = ComparisonOperator.GE
    resulting_score: int = 100
    action: ActionType = ActionType.SCORE
    evaluation_order: int = 0
    is_active: bool = True
    group: str | None = None
    display_name: str = ""
    description: str | None = None
    default_value: Decimal | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if not isinstance(self.threshold_value, Decimal):
            self.threshold_value = Decimal(str(self.threshold_value))
        if self.default_value is None:
            self.default_value = self.threshold_value
        elif not isinstance(self.default_value, Decimal):
            self.default_value = Decimal(str(self.default_value))
        self.operator = ComparisonOperator(self.operator)
        self.action = ActionType(self.action)
        if not self.display_name:
            self.display_name = self.name

    def matches(self, value: Decimal) -> bool:
        return self.operator.compare(value, self.threshold_value)


@dataclass
class VersionedQuery:
    """A query variant scoped to a platform-version range.

    Lower ``priority`` numbers win when several queries are compatible.
    """

    collector_name: str
    query_text: str
    min_version: int = 0
    max_version: int | None = None
    priority: int = 0
    query_name: str = "MainQuery"
    description: str | None = None
    is_active: bool = True
    id: str = field(default_factory=new_id)

    def is_compatible_with(self, version: int) -> bool:
        if version < self.min_version:
            return False
        if self.max_version is not None and version > self.max_version:
            return False
        return True


@dataclass
class ExclusionOverride:
    """Time-boxed exemption for one (collector, exception type, instance).

    An exception type of ``*``/``ALL`` or equal to the collector's name
    scopes the whole collector; any other type names a single check
    (threshold group) to forgive.
    """

    collector_name: str
    exception_type: str
    instance_name: str
    is_active: bool = True
    expires_at: datetime | None = None
    reason: str | None = None
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def is_effective(self, now: datetime | None = None) -> bool:
        """Active and not past its expiry."""
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        now = now or utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return now < expires

    def applies_to(self, collector_name: str, instance_name: str) -> bool:
        if self.collector_name.lower() != collector_name.lower():
            return False
        return bool(instance_aliases(self.instance_name) & instance_aliases(instance_name))

    def is_full_scope(self) -> bool:
        exception_type = self.exception_type.strip()
        return (
            exception_type.upper() in FULL_SCOPE_EXCEPTION_TYPES
            or exception_type.lower() == self.collector_name.lower()
        )


# =============================================================================
# AUDIT + TIME SERIES
# =============================================================================


@dataclass
class ExecutionRecord:
    """Audit row for one collector run.

    Created ``Running`` at run start and finalized exactly once.
    """

    collector_name: str
    trigger: TriggerKind = TriggerKind.SCHEDULED
    triggered_by: str | None = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    total_instances: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    error_summary: str | None = None
    id: str = field(default_factory=new_id)

    @classmethod
    def start(
        cls,
        collector_name: str,
        trigger: TriggerKind = TriggerKind.SCHEDULED,
        triggered_by: str | None = None,
    ) -> ExecutionRecord:
        return cls(collector_name=collector_name, trigger=trigger, triggered_by=triggered_by)

    @property
    def duration_ms(self) -> int | None:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "collector_name": self.collector_name,
            "status": self.status.value,
            "trigger": self.trigger.value,
            "triggered_by": self.triggered_by,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "total_instances": self.total_instances,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "error_summary": self.error_summary,
        }


@dataclass(frozen=True)
class CategoryScoreSnapshot:
    """Score for one (instance, collector category) at one collection time."""

    instance_name: str
    category: str
    score: int
    collected_at: datetime = field(default_factory=utcnow)
    metrics: dict[str, Any] = field(default_factory=dict)
    execution_id: str | None = None
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class CompositeHealthScore:
    """Weighted, capped combination of all category scores for one instance."""

    instance_name: str
    score: int
    status: str
    category_scores: dict[str, int]
    contributions: dict[str, int]
    global_cap: int = 100
    computed_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def same_result(self, other: CompositeHealthScore) -> bool:
        """Equal apart from identity and timestamp."""
        return (
            self.instance_name == other.instance_name
            and self.score == other.score
            and self.status == other.status
            and self.category_scores == other.category_scores
            and self.contributions == other.contributions
            and self.global_cap == other.global_cap
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_name": self.instance_name,
            "score": self.score,
            "status": self.status,
            "category_scores": dict(self.category_scores),
            "contributions": dict(self.contributions),
            "global_cap": self.global_cap,
            "computed_at": self.computed_at.isoformat(),
        }
