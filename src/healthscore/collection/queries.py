"""VersionedQuery selection for one instance.

Among active queries whose ``[min_version, max_version]`` bracket contains
the instance's platform version, the lowest ``priority`` number wins; ties
keep the order the queries were supplied in.
"""

from __future__ import annotations

from collections.abc import Iterable

from healthscore.core.errors import ConfigurationError
from healthscore.core.models import VersionedQuery

UNKNOWN_VERSION = 0


def select_query(queries: Iterable[VersionedQuery], version: int) -> VersionedQuery | None:
    compatible = [q for q in queries if q.is_active and q.is_compatible_with(version)]
    if not compatible:
        return None
    # min() returns the first of equal keys, which keeps ties stable.
    return min(compatible, key=lambda q: q.priority)


def fallback_query(queries: Iterable[VersionedQuery]) -> VersionedQuery | None:
    """Query to use when the platform version is unknown: the oldest-compatible one."""
    active = [q for q in queries if q.is_active]
    if not active:
        return None
    return min(active, key=lambda q: (q.min_version, q.priority))


def resolve_query(
    queries: Iterable[VersionedQuery],
    version: int,
    *,
    collector_name: str,
    instance_name: str,
) -> VersionedQuery:
    """Select the query for *version*, falling back for unknown versions.

    Raises:
        ConfigurationError: no active query is compatible with *version*.
    """
    queries = list(queries)
    if version == UNKNOWN_VERSION:
        query = fallback_query(queries)
    else:
        query = select_query(queries, version)
    if query is None:
        raise ConfigurationError(
            f"No compatible query for platform version {version or 'unknown'}"
        ).with_context(
            collector=collector_name,
            instance=instance_name,
            platform_version=version,
        )
    return query


__all__ = ["UNKNOWN_VERSION", "fallback_query", "resolve_query", "select_query"]
