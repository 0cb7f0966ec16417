"""Scheduling: when collectors run, and the audit trail of each run.

Modules
-------
protocol          SchedulerBackend protocol, BackendHealth
asyncio_backend   AsyncioSchedulerBackend (default timing backend)
audit             ExecutionAuditLog
service           CollectorScheduler, build_scheduler
"""

from healthscore.scheduling.asyncio_backend import AsyncioSchedulerBackend
from healthscore.scheduling.audit import ExecutionAuditLog
from healthscore.scheduling.protocol import BackendHealth, SchedulerBackend
from healthscore.scheduling.service import (
    CollectorScheduler,
    SchedulerHealth,
    SchedulerStats,
    build_scheduler,
)

__all__ = [
    "AsyncioSchedulerBackend",
    "BackendHealth",
    "CollectorScheduler",
    "ExecutionAuditLog",
    "SchedulerBackend",
    "SchedulerHealth",
    "SchedulerStats",
    "build_scheduler",
]
