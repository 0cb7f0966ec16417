"""
Exception registry: time-boxed per-instance overrides.

An :class:`ExclusionOverride` either skips an instance for a whole
collector run or forgives one check inside it:

    exception_type ``*`` / ``ALL`` / <collector name>  → instance Skipped
    any other type (e.g. ``CHECKDB``)                  → rules in that group ignored

Instances match case-insensitively on the full name, the host part before
``\\`` or the short host name before the first ``.``, so an override for
``SQL01`` covers ``sql01.corp.local\\PROD``.

The registry is built once per run from the store and then only read,
so edits made mid-run apply from the next run on.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from healthscore.core.models import ExclusionOverride, utcnow
from healthscore.core.store import HealthStore


class ExclusionRegistry:
    """Read-only view over the overrides effective at one point in time."""

    def __init__(self, overrides: Iterable[ExclusionOverride], *, now: datetime | None = None):
        self._now = now or utcnow()
        self._overrides = [o for o in overrides if o.is_effective(self._now)]

    @classmethod
    def from_store(
        cls,
        store: HealthStore,
        collector_name: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ExclusionRegistry:
        return cls(store.list_exclusions(collector_name), now=now)

    def __len__(self) -> int:
        return len(self._overrides)

    @property
    def active(self) -> list[ExclusionOverride]:
        return list(self._overrides)

    def matching(self, collector_name: str, instance_name: str) -> list[ExclusionOverride]:
        return [o for o in self._overrides if o.applies_to(collector_name, instance_name)]

    def skip_override(self, collector_name: str, instance_name: str) -> ExclusionOverride | None:
        """The fully-scoping override for (collector, instance), if any."""
        for override in self.matching(collector_name, instance_name):
            if override.is_full_scope():
                return override
        return None

    def is_skipped(self, collector_name: str, instance_name: str) -> bool:
        return self.skip_override(collector_name, instance_name) is not None

    def forgiven_groups(self, collector_name: str, instance_name: str) -> tuple[str, ...]:
        """Check names (rule groups) forgiven for this instance."""
        groups = {
            o.exception_type.strip()
            for o in self.matching(collector_name, instance_name)
            if not o.is_full_scope()
        }
        return tuple(sorted(groups))


__all__ = ["ExclusionRegistry"]
