"""
Structured error types for the health scoring engine.

Every failure that crosses a layer boundary carries a category, a retry
hint and a structured context (collector, instance, execution id) so the
executor and scheduler can record it against the right audit row without
parsing messages.

Manifesto:
    - **Typed hierarchy:** Per-instance fetch failures, configuration gaps and
      run preconditions are distinct types
    - **Explicit retry semantics:** Each error knows if it is retryable
    - **Error chaining:** Adapter exceptions are preserved as ``cause``

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────┐
        │                    HealthScoreError                        │
        │     (category, retryable, context, cause)                 │
        ├───────────────────────────────────────────────────────────┤
        │  AdapterError (SOURCE)        ConfigurationError (CONFIG) │
        │    ├─ UnreachableError          └─ CollectorNotFoundError │
        │    ├─ FetchTimeoutError                                   │
        │    └─ MetricQueryError        RunPreconditionError        │
        │                                 (ORCHESTRATION)           │
        │  AggregationError (STORAGE)                               │
        └───────────────────────────────────────────────────────────┘

        InvalidTransitionError(ValueError)  ─ audit state machine guard

Tags:
    error-handling, exception-hierarchy, error-context, adapter-errors

Doc-Types:
    - API Reference
    - Error Handling Guide

Usage:
    from healthscore.collection.timeout import TimeoutExpired, run_with_timeout_async
    from healthscore.core.errors import FetchTimeoutError

    try:
        raw = await run_with_timeout_async(adapter.fetch(instance, query, deadline), 30)
    except TimeoutExpired as e:
        raise FetchTimeoutError("fetch timed out", cause=e).with_context(
            collector="CPU", instance=instance.name,
        )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    SOURCE = "SOURCE"
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"
    STORAGE = "STORAGE"
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured context attached to an error."""

    collector: str | None = None
    instance: str | None = None
    execution_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.collector:
            result["collector"] = self.collector
        if self.instance:
            result["instance"] = self.instance
        if self.execution_id:
            result["execution_id"] = self.execution_id
        if self.metadata:
            result.update(self.metadata)
        return result


class HealthScoreError(Exception):
    """Base exception for the health scoring engine.

    Subclasses set ``default_category`` and ``default_retryable``.

    Example:
        >>> error = HealthScoreError("boom").with_context(collector="CPU")
        >>> error.context.collector
        'CPU'
        >>> error.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> HealthScoreError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# ADAPTER ERRORS (per-instance, never abort a run)
# =============================================================================


class AdapterErrorKind(str, Enum):
    """Failure modes a metric source adapter can report."""

    UNREACHABLE = "Unreachable"
    TIMEOUT = "Timeout"
    QUERY_ERROR = "QueryError"


class AdapterError(HealthScoreError):
    """A metric fetch against one instance failed."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False
    default_kind: AdapterErrorKind = AdapterErrorKind.QUERY_ERROR

    def __init__(self, message: str, *, kind: AdapterErrorKind | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.kind = kind or self.default_kind

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        return result


class UnreachableError(AdapterError):
    """Instance could not be contacted."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True
    default_kind = AdapterErrorKind.UNREACHABLE


class FetchTimeoutError(AdapterError):
    """Fetch exceeded the collector's timeout."""

    default_retryable = True
    default_kind = AdapterErrorKind.TIMEOUT


class MetricQueryError(AdapterError):
    """The metric query ran but returned an error or unusable data."""

    default_kind = AdapterErrorKind.QUERY_ERROR


# =============================================================================
# CONFIGURATION / ORCHESTRATION
# =============================================================================


class ConfigurationError(HealthScoreError):
    """Collector configuration cannot serve an instance or a request."""

    default_category = ErrorCategory.CONFIG


class CollectorNotFoundError(ConfigurationError):
    """Named collector does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Collector not found: {name}")
        self.with_context(collector=name)


class RunPreconditionError(HealthScoreError):
    """A run cannot start its work (e.g. an empty instance roster)."""

    default_category = ErrorCategory.ORCHESTRATION


class AggregationError(HealthScoreError):
    """Composite recomputation failed to read or persist."""

    default_category = ErrorCategory.STORAGE


class InvalidTransitionError(ValueError):
    """Raised when an illegal execution status transition is attempted."""

    def __init__(self, current: str, target: str, enum_name: str = "Status") -> None:
        self.current = current
        self.target = target
        self.enum_name = enum_name
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, HealthScoreError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, HealthScoreError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    if isinstance(error, (KeyError, AttributeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


def describe_error(error: BaseException) -> str:
    """One-line ``Type: message`` summary for audit rows."""
    message = getattr(error, "message", None) or str(error) or repr(error)
    return f"{error.__class__.__name__}: {message}"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "HealthScoreError",
    "AdapterErrorKind",
    "AdapterError",
    "UnreachableError",
    "FetchTimeoutError",
    "MetricQueryError",
    "ConfigurationError",
    "CollectorNotFoundError",
    "RunPreconditionError",
    "AggregationError",
    "InvalidTransitionError",
    "is_retryable",
    "categorize_error",
    "describe_error",
]
