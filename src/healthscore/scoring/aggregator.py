"""
Score aggregation: latest category scores → composite Health Score.

Manifesto:
    A composite score is a time series, not a mutable cell. Every
    recomputation appends a new :class:`CompositeHealthScore` so the trend
    survives and readers never race a writer.

Architecture:
    ::

        recompute(instance)                      (serialized per instance)
          │
          ├── weights   ← enabled CollectorDefinitions (optionally → 100)
          ├── snapshots ← newest per category, no older than max age
          │               missing category → 100 (optimistic until measured)
          ├── contribution[c] = round_half_up(score[c] × weight[c] / 100)
          ├── selective penalties (contribution[target] × factor)
          ├── composite = min(global_cap, Σ contributions)
          ├── status   ← first bucket with composite ≥ min_score
          └── append CompositeHealthScore + emit instance.score_updated

Tags:
    scoring, aggregation, composite, weights, time-series

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from healthscore.core.errors import AggregationError
from healthscore.core.events import EventBus, instance_score_updated
from healthscore.core.logging import get_logger
from healthscore.core.models import (
    CollectorDefinition,
    CompositeHealthScore,
    InstanceRef,
    utcnow,
)
from healthscore.core.settings import HealthScoreSettings, SelectivePenalty, StatusBucket
from healthscore.core.store import HealthStore
from healthscore.scoring.thresholds import MAX_SCORE

logger = get_logger(__name__)

_HUNDRED = Decimal(100)


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def collector_weights(
    collectors: Iterable[CollectorDefinition],
    *,
    normalize: bool = False,
) -> dict[str, Decimal]:
    """Category weights keyed by collector name (enabled collectors only)."""
    weights = {c.name: Decimal(c.weight) for c in collectors if c.is_enabled}
    total = sum(weights.values(), Decimal(0))
    if normalize and total > 0:
        weights = {name: w * _HUNDRED / total for name, w in weights.items()}
    return weights


def status_label(score: int, buckets: Iterable[StatusBucket], default: str) -> str:
    for bucket in sorted(buckets, key=lambda b: b.min_score, reverse=True):
        if score >= bucket.min_score:
            return bucket.label
    return default


def compose(
    instance_name: str,
    category_scores: Mapping[str, int],
    weights: Mapping[str, Decimal],
    *,
    global_cap: int = 100,
    buckets: Iterable[StatusBucket] = (),
    default_status: str = "Critical",
    penalties: Iterable[SelectivePenalty] = (),
    now: datetime | None = None,
) -> CompositeHealthScore:
    """Pure composite computation over already-resolved category scores.

    Categories present in *weights* but not in *category_scores* count as
    fully healthy.
    """
    scores = {name: category_scores.get(name, MAX_SCORE) for name in weights}
    contributions = {
        name: round_half_up(Decimal(scores[name]) * weight / _HUNDRED)
        for name, weight in weights.items()
    }

    for penalty in penalties:
        trigger = scores.get(penalty.when_category)
        if trigger is None or penalty.target_category not in contributions:
            continue
        if penalty.operator.compare(Decimal(trigger), penalty.value):
            contributions[penalty.target_category] = round_half_up(
                Decimal(contributions[penalty.target_category]) * penalty.factor
            )

    composite = max(0, min(global_cap, sum(contributions.values())))
    return CompositeHealthScore(
        instance_name=instance_name,
        score=composite,
        status=status_label(composite, buckets, default_status),
        category_scores=scores,
        contributions=contributions,
        global_cap=global_cap,
        computed_at=now or utcnow(),
    )


class ScoreAggregator:
    """Recomputes and persists composite scores.

    Recomputations for the same instance are serialized through a
    per-instance :class:`asyncio.Lock`; different instances proceed
    concurrently.

    Example::

        aggregator = ScoreAggregator(store, settings, event_bus=bus)
        composite = await aggregator.recompute(InstanceRef("SQL01"))
    """

    def __init__(
        self,
        store: HealthStore,
        settings: HealthScoreSettings | None = None,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or HealthScoreSettings()
        self._event_bus = event_bus
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, instance_name: str) -> asyncio.Lock:
        key = instance_name.lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def status_for(self, score: int) -> str:
        return status_label(score, self._settings.status_buckets, self._settings.default_status)

    async def recompute(
        self,
        instance: InstanceRef | str,
        *,
        correlation_id: str | None = None,
    ) -> CompositeHealthScore:
        """Compute, persist and announce a new composite score for *instance*.

        Raises:
            AggregationError: reading snapshots or writing the composite failed.
        """
        instance_name = instance.name if isinstance(instance, InstanceRef) else instance

        async with self._lock_for(instance_name):
            now = utcnow()
            try:
                collectors = await asyncio.to_thread(self._store.list_collectors, enabled_only=True)
                weights = collector_weights(
                    collectors,
                    normalize=self._settings.normalize_weights,
                )
                since = now - timedelta(seconds=self._settings.snapshot_max_age_seconds)
                snapshots = await asyncio.to_thread(self._store.latest_snapshots, instance_name, since=since)
            except Exception as e:
                raise AggregationError(
                    f"Failed to read category scores: {e}", cause=e
                ).with_context(instance=instance_name, execution_id=correlation_id) from e

            composite = compose(
                instance_name,
                {category: snap.score for category, snap in snapshots.items()},
                weights,
                global_cap=self._settings.global_cap,
                buckets=self._settings.status_buckets,
                default_status=self._settings.default_status,
                penalties=self._settings.selective_penalties,
                now=now,
            )

            try:
                await asyncio.to_thread(self._store.append_composite, composite)
            except Exception as e:
                raise AggregationError(
                    f"Failed to persist composite score: {e}", cause=e
                ).with_context(instance=instance_name, execution_id=correlation_id) from e

        logger.info(
            "composite_score_computed",
            instance=instance_name,
            score=composite.score,
            status=composite.status,
            measured_categories=len(snapshots),
        )

        if self._event_bus is not None:
            await self._event_bus.publish(instance_score_updated(composite, correlation_id))

        return composite

    async def sweep(self, instances: Iterable[InstanceRef] | None = None) -> list[CompositeHealthScore]:
        """Recompute every instance (the roster from the store by default).

        A failing instance is logged and skipped; the rest still recompute.
        """
        roster = list(instances) if instances is not None else self._store.list_instances()
        results = await asyncio.gather(
            *(self.recompute(instance) for instance in roster),
            return_exceptions=True,
        )
        composites: list[CompositeHealthScore] = []
        for instance, result in zip(roster, results):
            if isinstance(result, AggregationError):
                logger.error("composite_sweep_failed", instance=instance.name, error=result.message)
            elif isinstance(result, BaseException):
                raise result
            else:
                composites.append(result)
        logger.info("composite_sweep_completed", instances=len(roster), computed=len(composites))
        return composites


__all__ = [
    "ScoreAggregator",
    "collector_weights",
    "compose",
    "round_half_up",
    "status_label",
]
