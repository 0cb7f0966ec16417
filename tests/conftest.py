"""
Shared pytest fixtures for healthscore tests.

This module provides:
- In-memory store, event bus and settings fixtures
- A fake metric source adapter (see ``tests/_support/fakes.py``)
- A helper that seeds a collector with rules and a query

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(store, seed_collector):
        seed_collector("CPU", weight=12)
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import Any

import pytest

from healthscore.core.events import set_event_bus
from healthscore.core.events.memory import InMemoryEventBus
from healthscore.core.memory import InMemoryHealthStore
from healthscore.core.models import (
    ActionType,
    CollectorDefinition,
    ComparisonOperator,
    InstanceRef,
    ThresholdRule,
    VersionedQuery,
)
from healthscore.core.settings import HealthScoreSettings, clear_settings_cache
from tests._support.fakes import FakeAdapter


@pytest.fixture(autouse=True)
def _reset_globals():
    """Isolate the global event bus and settings cache between tests."""
    set_event_bus(None)
    clear_settings_cache()
    yield
    set_event_bus(None)
    clear_settings_cache()


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def settings() -> HealthScoreSettings:
    return HealthScoreSettings(_env_file=None, database_url="sqlite://")


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def seed_collector(store) -> Callable[..., CollectorDefinition]:
    """Save a collector with a 90/75/0 Score rule ladder and one query."""

    def _seed(
        name: str = "CPU",
        *,
        weight: int | str = 10,
        rules: bool = True,
        query: bool = True,
        **fields: Any,
    ) -> CollectorDefinition:
        collector = CollectorDefinition(name=name, weight=Decimal(str(weight)), **fields)
        store.save_collector(collector)
        if rules:
            for order, (threshold, score) in enumerate([(90, 40), (75, 70), (0, 100)]):
                store.save_rule(
                    ThresholdRule(
                        name,
                        f"level{order}",
                        Decimal(threshold),
                        ComparisonOperator.GE,
                        score,
                        ActionType.SCORE,
                        order,
                    )
                )
        if query:
            store.save_query(VersionedQuery(name, f"SELECT {name}", min_version=0))
        return collector

    return _seed


@pytest.fixture
def instances(store) -> list[InstanceRef]:
    refs = [InstanceRef("SQL01", platform_version=15), InstanceRef("SQL02", platform_version=15)]
    for ref in refs:
        store.save_instance(ref)
    return refs
