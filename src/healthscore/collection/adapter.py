"""
Metric Source Adapter contract.

The core never talks to a database engine directly. Each deployment
supplies one adapter that, given an instance and the selected
:class:`VersionedQuery`, returns the raw metric values for that collector.

Architecture:
    ::

        CollectorExecutor
            │  fetch(instance, query, deadline_at)
            ▼
        MetricSourceAdapter  (Protocol, async)
            │
            ├── RawMetrics(value=92)                    single-value collectors
            ├── RawMetrics(values={"CHECKDB": 3, ...})  grouped rule sets
            └── raise UnreachableError / FetchTimeoutError / MetricQueryError

        VersionDetector (optional capability)
            detect_version(instance, deadline_at) → major version

Adapters are expected to honor the deadline; the executor enforces it
anyway and cancels a fetch that overruns.

Tags:
    adapter, protocol, metrics, source
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from healthscore.core.errors import ConfigurationError
from healthscore.core.models import InstanceRef, VersionedQuery, utcnow


@dataclass
class RawMetrics:
    """Raw values returned by one fetch.

    Attributes:
        value: Primary metric value scored by ungrouped rules
        values: Named values scored by rule groups (keyed by group name)
        details: Extra category-specific data stored with the snapshot
    """

    value: Any = None
    values: dict[str, Any] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=utcnow)

    def to_snapshot_metrics(self) -> dict[str, Any]:
        metrics: dict[str, Any] = {}
        if self.value is not None:
            metrics["value"] = _plain(self.value)
        if self.values:
            metrics["values"] = {k: _plain(v) for k, v in self.values.items()}
        if self.details:
            metrics["details"] = dict(self.details)
        return metrics


def _plain(value: Any) -> Any:
    return str(value) if isinstance(value, Decimal) else value


@runtime_checkable
class MetricSourceAdapter(Protocol):
    """Fetches raw metrics for one (instance, collector query)."""

    async def fetch(
        self,
        instance: InstanceRef,
        query: VersionedQuery,
        deadline: datetime,
    ) -> RawMetrics:
        """Run *query* against *instance* and return its raw metrics.

        Raises:
            UnreachableError: the instance could not be contacted
            FetchTimeoutError: the instance did not answer before *deadline*
            MetricQueryError: the query failed or returned unusable data
        """
        ...


@runtime_checkable
class VersionDetector(Protocol):
    """Optional adapter capability: discover an instance's platform major version."""

    async def detect_version(self, instance: InstanceRef, deadline: datetime) -> int:
        ...


def load_adapter(path: str) -> MetricSourceAdapter:
    """Import an adapter from ``package.module:attribute``.

    A class or zero-argument factory is called; an instance is returned as is.

    Raises:
        ConfigurationError: the path is malformed, cannot be imported, or
            the object has no ``fetch`` coroutine.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Adapter path must look like 'module:attr', got {path!r}")
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load adapter {path!r}: {e}", cause=e) from e

    if isinstance(target, type) or (callable(target) and not hasattr(target, "fetch")):
        adapter = target()
    else:
        adapter = target
    if not isinstance(adapter, MetricSourceAdapter):
        raise ConfigurationError(f"Adapter {path!r} does not implement fetch()")
    return adapter


__all__ = [
    "MetricSourceAdapter",
    "RawMetrics",
    "VersionDetector",
    "load_adapter",
]
