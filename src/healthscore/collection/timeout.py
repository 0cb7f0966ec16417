"""
Per-instance deadline enforcement for metric fetches.

Every adapter call runs inside :func:`with_deadline_async`. The adapter is
handed the absolute deadline so it can pass it on to its driver, but the
deadline is enforced here regardless: a fetch that overruns is cancelled
and surfaces as :class:`TimeoutExpired`.

Architecture:
    ::

        async with with_deadline_async(collector.timeout_seconds, "CPU@SQL01") as ctx:
            raw = await adapter.fetch(instance, query, ctx.deadline_at)
                  │
                  └── asyncio.timeout(effective) cancels the await
                       → TimeoutExpired(timeout, elapsed, operation)

    Nested deadlines shrink to the tighter bound (tracked per task through
    a ContextVar, so concurrent fetches never see each other's deadlines).

Tags:
    timeout, deadline, asyncio, cancellation
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TypeVar

from healthscore.core.models import utcnow

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


@dataclass
class DeadlineContext:
    """Deadline state for one guarded operation.

    Attributes:
        deadline: Absolute deadline on the monotonic clock
        timeout_seconds: Effective timeout in seconds
        operation: Name/description of the operation
        deadline_at: Wall-clock deadline handed to adapters
    """

    deadline: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)
    deadline_at: datetime = field(default_factory=utcnow)

    def remaining(self) -> float:
        """Seconds left; negative once expired."""
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return time.monotonic() >= self.deadline


_current_deadline: ContextVar[DeadlineContext | None] = ContextVar(
    "healthscore_deadline", default=None
)


def get_current_deadline() -> DeadlineContext | None:
    return _current_deadline.get()


def get_effective_timeout(requested: float) -> float:
    """Requested timeout, shrunk to the enclosing deadline if that is tighter."""
    ctx = _current_deadline.get()
    if ctx is None:
        return requested
    return max(0.0, min(requested, ctx.remaining()))


@asynccontextmanager
async def with_deadline_async(
    seconds: float,
    operation: str | None = None,
) -> AsyncIterator[DeadlineContext]:
    """Async context manager enforcing a time limit via ``asyncio.timeout``.

    Raises:
        TimeoutExpired: If the deadline is exceeded
        ValueError: If seconds is negative

    Example:
        >>> async with with_deadline_async(10.0, "CPU@SQL01") as ctx:
        ...     raw = await adapter.fetch(instance, query, ctx.deadline_at)
    """
    if seconds < 0:
        raise ValueError(f"Timeout must be non-negative, got {seconds}")

    effective = get_effective_timeout(seconds)
    now = time.monotonic()
    ctx = DeadlineContext(
        deadline=now + effective,
        timeout_seconds=effective,
        operation=operation or "operation",
        start_time=now,
        deadline_at=utcnow() + timedelta(seconds=effective),
    )
    token = _current_deadline.set(ctx)

    try:
        async with asyncio.timeout(effective):
            yield ctx
    except TimeoutError as e:
        if isinstance(e, TimeoutExpired):
            raise
        raise TimeoutExpired(
            timeout=effective,
            elapsed=ctx.elapsed,
            operation=ctx.operation,
        ) from None
    finally:
        _current_deadline.reset(token)


async def run_with_timeout_async(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    operation: str | None = None,
) -> T:
    """Await *awaitable* under a deadline.

    Raises:
        TimeoutExpired: If execution exceeds the timeout
    """
    async with with_deadline_async(timeout_seconds, operation):
        return await awaitable


__all__ = [
    "DeadlineContext",
    "TimeoutExpired",
    "get_current_deadline",
    "get_effective_timeout",
    "run_with_timeout_async",
    "with_deadline_async",
]
