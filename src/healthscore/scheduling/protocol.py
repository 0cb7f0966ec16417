"""Scheduler timing backend protocol.

The scheduler runs as "beat-as-poller": a backend controls WHEN ticks
happen, :class:`~healthscore.scheduling.service.CollectorScheduler`
controls WHAT happens on each tick (which collectors are due, whether one
is already running, dispatch).

::

    ┌───────────────────┐   tick()   ┌──────────────────────────┐
    │ AsyncioScheduler- │ ─────────► │ CollectorScheduler       │
    │ Backend (default) │            │  - due collectors        │
    └───────────────────┘            │  - no-overlap guard      │
                                     │  - spawn run task        │
    ┌───────────────────┐   tick()   │  - bookkeeping + events  │
    │ custom backend    │ ─────────► │                          │
    └───────────────────┘            └──────────────────────────┘

A tick must return quickly: runs are spawned as tasks and never awaited
inside the tick, so a slow collector cannot delay the next beat.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    Implementations:
        - AsyncioSchedulerBackend: task on the running event loop (default)
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
    ) -> None:
        """Start calling *tick_callback* every *interval_seconds*."""
        ...

    def stop(self) -> None:
        """Stop ticking. Runs already spawned by earlier ticks are unaffected."""
        ...

    def health(self) -> dict[str, Any]:
        """Backend health with at least ``healthy``, ``backend``, ``tick_count``, ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    drift_ms: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "drift_ms": self.drift_ms,
            **self.extra,
        }


__all__ = ["BackendHealth", "SchedulerBackend", "TickCallback"]
