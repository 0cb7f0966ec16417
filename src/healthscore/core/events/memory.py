"""
In-memory event bus.

Events are delivered immediately to matching handlers inside the
publishing task and are not persisted. A failing handler is logged,
counted against its event type, and never propagates back into the
scheduler or the aggregator.

The bus also remembers the latest ``instance.score_updated`` payload per
instance so a relay that subscribes late can send a current snapshot
before streaming updates.

Tags:
    events, in-memory, asyncio, scores, single-node
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any

from healthscore.core.events import (
    COLLECTOR_RUN_COMPLETED,
    INSTANCE_SCORE_UPDATED,
    Event,
    EventHandler,
)
from healthscore.core.logging import get_logger

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus for single-node deployments.

    Example::

        bus = InMemoryEventBus()

        async def push_score(event: Event):
            await relay(event.payload["instance_name"], event.payload["score"])

        await bus.subscribe_score_updates(push_score)
        bus.latest_score("SQL01")   # last payload seen for SQL01, or None
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._closed = False
        self._published: Counter[str] = Counter()
        self._handler_errors: Counter[str] = Counter()
        self._latest_scores: dict[str, dict[str, Any]] = {}

    async def publish(self, event: Event) -> None:
        """Call every matching handler concurrently."""
        if self._closed:
            return

        async with self._lock:
            self._published[event.event_type] += 1
            if event.event_type == INSTANCE_SCORE_UPDATED:
                self._latest_scores[event.payload["instance_name"]] = dict(event.payload)
            handlers_to_call = [
                (sub.id, sub.handler)
                for sub in self._subscriptions.values()
                if event.matches(sub.pattern)
            ]

        if not handlers_to_call:
            return

        async def safe_call(sub_id: str, handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                self._handler_errors[event.event_type] += 1
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type,
                    correlation_id=event.correlation_id,
                    error=str(e),
                )

        await asyncio.gather(
            *[safe_call(sub_id, handler) for sub_id, handler in handlers_to_call],
            return_exceptions=True,
        )

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        async with self._lock:
            self._subscriptions[sub_id] = Subscription(
                id=sub_id,
                pattern=event_type,
                handler=handler,
            )
        return sub_id

    async def subscribe_score_updates(
        self, handler: EventHandler, *, instance_name: str | None = None
    ) -> str:
        """Subscribe to composite score changes, optionally for one instance."""
        if instance_name is None:
            return await self.subscribe(INSTANCE_SCORE_UPDATED, handler)

        async def for_instance(event: Event) -> None:
            if event.payload.get("instance_name") == instance_name:
                await handler(event)

        return await self.subscribe(INSTANCE_SCORE_UPDATED, for_instance)

    async def subscribe_run_completions(
        self, handler: EventHandler, *, collector_name: str | None = None
    ) -> str:
        """Subscribe to finalized collector runs, optionally for one collector."""
        if collector_name is None:
            return await self.subscribe(COLLECTOR_RUN_COMPLETED, handler)

        async def for_collector(event: Event) -> None:
            if event.payload.get("collector_name") == collector_name:
                await handler(event)

        return await self.subscribe(COLLECTOR_RUN_COMPLETED, for_collector)

    async def unsubscribe(self, subscription_id: str) -> None:
        async with self._lock:
            self._subscriptions.pop(subscription_id, None)

    async def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        async with self._lock:
            self._subscriptions.clear()

    def latest_score(self, instance_name: str) -> dict[str, Any] | None:
        """Last ``instance.score_updated`` payload published for *instance_name*."""
        payload = self._latest_scores.get(instance_name)
        return dict(payload) if payload is not None else None

    def stats(self) -> dict[str, Any]:
        """Publish and handler-failure counts keyed by event type."""
        return {
            "subscriptions": len(self._subscriptions),
            "published": dict(self._published),
            "handler_errors": dict(self._handler_errors),
            "instances_tracked": len(self._latest_scores),
        }

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
