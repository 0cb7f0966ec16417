"""Event-loop scheduler backend.

Ticks run as a single task on the caller's running event loop, so
collector runs spawned by a tick keep living across ticks (a thread that
calls ``asyncio.run`` per tick would tear them down when the tick
returns).

Example:
    >>> backend = AsyncioSchedulerBackend()
    >>> backend.start(scheduler.tick, interval_seconds=10.0)
    >>> ...
    >>> backend.stop()
    >>> await backend.wait_stopped()
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

from .protocol import BackendHealth, TickCallback

logger = logging.getLogger(__name__)


class AsyncioSchedulerBackend:
    """Default timing backend: ``asyncio.sleep`` loop on the running loop.

    Must be started from inside a coroutine (it creates a task).
    """

    name = "asyncio"

    def __init__(self) -> None:
        self._task: asyncio.Task[None] | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 10.0
        self._drift_ms: float | None = None

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
    ) -> None:
        if self.is_running:
            logger.warning("AsyncioSchedulerBackend already started")
            return

        self._interval = interval_seconds

        async def _loop() -> None:
            logger.info("AsyncioSchedulerBackend started (interval=%ss)", interval_seconds)
            next_at = time.monotonic() + interval_seconds
            while True:
                await asyncio.sleep(max(0.0, next_at - time.monotonic()))
                self._drift_ms = (time.monotonic() - next_at) * 1000
                next_at += interval_seconds
                self._tick_count += 1
                self._last_tick = datetime.now(UTC)
                try:
                    await tick_callback()
                except Exception:
                    logger.exception("Tick failed")

        self._task = asyncio.get_running_loop().create_task(_loop(), name="healthscore-scheduler")

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        logger.info("AsyncioSchedulerBackend stopping")

    async def wait_stopped(self) -> None:
        """Await the loop task after :meth:`stop`."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("AsyncioSchedulerBackend shutdown complete")

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            drift_ms=self._drift_ms,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick


__all__ = ["AsyncioSchedulerBackend"]
