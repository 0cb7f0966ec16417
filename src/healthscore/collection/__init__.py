"""Collection: running collectors against the instance fleet.

Modules
-------
adapter      MetricSourceAdapter protocol, RawMetrics, load_adapter
timeout      with_deadline_async / TimeoutExpired
queries      VersionedQuery selection
exclusions   ExclusionRegistry
instances    InstanceProvider, StaticInstanceProvider, FilteredInstanceProvider
executor     CollectorExecutor, ExecutionResult, InstanceResult
"""

from healthscore.collection.adapter import MetricSourceAdapter, RawMetrics
from healthscore.collection.exclusions import ExclusionRegistry
from healthscore.collection.executor import CollectorExecutor, ExecutionResult, InstanceResult

__all__ = [
    "CollectorExecutor",
    "ExclusionRegistry",
    "ExecutionResult",
    "InstanceResult",
    "MetricSourceAdapter",
    "RawMetrics",
]
