"""Notification events emitted by the scoring core.

The core never delivers notifications itself. After every composite
recomputation and every finalized run it publishes an :class:`Event` on an
:class:`EventBus`; whatever relays scores to clients subscribes there.

Usage::

    from healthscore.core.events import INSTANCE_SCORE_UPDATED, get_event_bus

    async def relay(event: Event) -> None:
        await push(event.payload["instance_name"], event.payload["score"])

    await get_event_bus().subscribe(INSTANCE_SCORE_UPDATED, relay)

Event types
-----------
instance.score_updated    {instance_name, score, status, timestamp}
collector.run_completed   {collector_name, execution_id, status, counts, timestamp}

Modules
-------
memory      InMemoryEventBus -- asyncio, single-node
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from healthscore.core.models import CompositeHealthScore, ExecutionRecord

__all__ = [
    "COLLECTOR_RUN_COMPLETED",
    "INSTANCE_SCORE_UPDATED",
    "Event",
    "EventBus",
    "EventHandler",
    "collector_run_completed",
    "get_event_bus",
    "instance_score_updated",
    "set_event_bus",
]

INSTANCE_SCORE_UPDATED = "instance.score_updated"
COLLECTOR_RUN_COMPLETED = "collector.run_completed"


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass
class Event:
    """Event payload handed to subscribers.

    Attributes:
        event_type: Dot-separated type (e.g., ``instance.score_updated``)
        source: Origin component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        correlation_id: Execution id of the run that caused the event
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if event type matches a pattern (``*`` and ``type.*`` wildcards)."""
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return self.event_type.startswith(prefix + ".")
        return self.event_type == pattern


def instance_score_updated(
    composite: CompositeHealthScore,
    correlation_id: str | None = None,
) -> Event:
    return Event(
        event_type=INSTANCE_SCORE_UPDATED,
        source="scoring.aggregator",
        payload={
            "instance_name": composite.instance_name,
            "score": composite.score,
            "status": composite.status,
            "timestamp": composite.computed_at.isoformat(),
        },
        correlation_id=correlation_id,
    )


def collector_run_completed(record: ExecutionRecord) -> Event:
    return Event(
        event_type=COLLECTOR_RUN_COMPLETED,
        source="scheduling.service",
        payload={
            "collector_name": record.collector_name,
            "execution_id": record.id,
            "status": record.status.value,
            "counts": {
                "total": record.total_instances,
                "success": record.success_count,
                "error": record.error_count,
                "skipped": record.skipped_count,
            },
            "timestamp": (record.completed_at or record.started_at).isoformat(),
        },
        correlation_id=record.id,
    )


# ── Type Aliases ─────────────────────────────────────────────────────────

EventHandler = Callable[[Event], Awaitable[None]]


# ── EventBus Protocol ────────────────────────────────────────────────────


@runtime_checkable
class EventBus(Protocol):
    """Protocol for event bus implementations."""

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        ...

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern; returns a subscription id."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        ...

    async def close(self) -> None:
        ...


# ── Default Event Bus Singleton ──────────────────────────────────────────

_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus, creating an in-memory one if none is set."""
    global _event_bus
    if _event_bus is None:
        from healthscore.core.events.memory import InMemoryEventBus

        _event_bus = InMemoryEventBus()
    return _event_bus


def set_event_bus(bus: EventBus | None) -> None:
    """Set (or with ``None`` reset) the global event bus."""
    global _event_bus
    _event_bus = bus
