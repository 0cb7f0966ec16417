"""Tests for healthscore.collection.instances: roster providers and filters."""

from healthscore.collection.instances import (
    FilteredInstanceProvider,
    InstanceProvider,
    StaticInstanceProvider,
    is_cloud,
    is_dmz,
)
from healthscore.core.models import InstanceRef
from healthscore.core.settings import HealthScoreSettings


def roster() -> StaticInstanceProvider:
    return StaticInstanceProvider(
        [
            InstanceRef("SQL01"),
            InstanceRef("SQLDMZ01"),
            InstanceRef("SQL02", is_dmz=True),
            InstanceRef("AZSQL01", hosting_site="Azure"),
            InstanceRef("RDS01", is_cloud=True),
            InstanceRef("SQL99.corp.local\\OLD"),
        ]
    )


def names(provider: InstanceProvider) -> list[str]:
    return [i.name for i in provider.list_instances()]


class TestClassification:
    def test_dmz(self):
        assert is_dmz(InstanceRef("web-dmz-sql"))
        assert is_dmz(InstanceRef("SQL02", is_dmz=True))
        assert not is_dmz(InstanceRef("SQL01"))

    def test_cloud(self):
        assert is_cloud(InstanceRef("x", hosting_site=" AWS "))
        assert not is_cloud(InstanceRef("x", hosting_site="DC1"))


class TestStaticProvider:
    def test_accepts_names(self):
        provider = StaticInstanceProvider(["SQL01", InstanceRef("SQL02", platform_version=16)])
        assert isinstance(provider, InstanceProvider)
        assert [i.platform_version for i in provider.list_instances()] == [0, 16]


class TestFilteredProvider:
    def test_defaults_exclude_dmz_and_cloud(self):
        assert names(FilteredInstanceProvider(roster())) == ["SQL01", "SQL99.corp.local\\OLD"]

    def test_decommissioned_by_short_name(self):
        provider = FilteredInstanceProvider(roster(), decommissioned=["sql99"])
        assert names(provider) == ["SQL01"]

    def test_include_flags(self):
        provider = FilteredInstanceProvider(roster(), include_dmz=True, include_cloud=True)
        assert len(names(provider)) == 6

    def test_only_cloud(self):
        provider = FilteredInstanceProvider(roster(), only_cloud=True)
        assert names(provider) == ["AZSQL01", "RDS01"]

    def test_from_settings(self):
        settings = HealthScoreSettings(_env_file=None, include_dmz=True, decommissioned_instances=["SQL99"])
        provider = FilteredInstanceProvider.from_settings(roster(), settings)
        assert names(provider) == ["SQL01", "SQLDMZ01", "SQL02"]
