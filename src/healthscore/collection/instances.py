"""Instance roster providers.

The scheduler reads the roster once at the start of every run. Any object
with a ``list_instances()`` method works, including the health store.
:class:`FilteredInstanceProvider` drops instances that must not be polled
(DMZ hosts, cloud-hosted instances, decommissioned names).
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from healthscore.core.logging import get_logger
from healthscore.core.models import InstanceRef, instance_aliases
from healthscore.core.settings import HealthScoreSettings

logger = get_logger(__name__)

CLOUD_HOSTING_SITES = frozenset({"aws", "azure", "gcp"})


@runtime_checkable
class InstanceProvider(Protocol):
    def list_instances(self) -> list[InstanceRef]:
        ...


class StaticInstanceProvider:
    """Fixed roster, mostly for tests and small deployments."""

    def __init__(self, instances: Iterable[InstanceRef | str]) -> None:
        self._instances = [
            InstanceRef(name=i) if isinstance(i, str) else i for i in instances
        ]

    def list_instances(self) -> list[InstanceRef]:
        return list(self._instances)


def is_dmz(instance: InstanceRef) -> bool:
    return instance.is_dmz or "dmz" in instance.name.lower()


def is_cloud(instance: InstanceRef) -> bool:
    site = (instance.hosting_site or "").strip().lower()
    return instance.is_cloud or site in CLOUD_HOSTING_SITES


class FilteredInstanceProvider:
    """Wraps another provider and removes ineligible instances."""

    def __init__(
        self,
        inner: InstanceProvider,
        *,
        include_dmz: bool = False,
        include_cloud: bool = False,
        only_cloud: bool = False,
        decommissioned: Iterable[str] = (),
    ) -> None:
        self._inner = inner
        self._include_dmz = include_dmz
        self._include_cloud = include_cloud or only_cloud
        self._only_cloud = only_cloud
        self._decommissioned = {name.strip().lower() for name in decommissioned}

    @classmethod
    def from_settings(
        cls,
        inner: InstanceProvider,
        settings: HealthScoreSettings,
    ) -> FilteredInstanceProvider:
        return cls(
            inner,
            include_dmz=settings.include_dmz,
            include_cloud=settings.include_cloud,
            only_cloud=settings.only_cloud,
            decommissioned=settings.decommissioned_instances,
        )

    def accepts(self, instance: InstanceRef) -> bool:
        if instance_aliases(instance.name) & self._decommissioned:
            return False
        if is_dmz(instance) and not self._include_dmz:
            return False
        cloud = is_cloud(instance)
        if self._only_cloud:
            return cloud
        return self._include_cloud or not cloud

    def list_instances(self) -> list[InstanceRef]:
        instances = self._inner.list_instances()
        eligible = [i for i in instances if self.accepts(i)]
        if len(eligible) != len(instances):
            logger.debug(
                "instances_filtered",
                total=len(instances),
                eligible=len(eligible),
            )
        return eligible


__all__ = [
    "FilteredInstanceProvider",
    "InstanceProvider",
    "StaticInstanceProvider",
    "is_cloud",
    "is_dmz",
]
