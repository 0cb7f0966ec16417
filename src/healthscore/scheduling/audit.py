"""
Execution audit log: the ExecutionRecord lifecycle.

Every run gets exactly one record. It is appended ``Running`` before any
instance is dispatched and finalized once with counts, status and an error
summary. A finalized record is never touched again; attempts raise
:class:`InvalidTransitionError`.

Architecture:
    ::

        start(collector, trigger, triggered_by)   → append Running row
        finalize(record, result)                  → Completed | Failed | Cancelled
        fail(record, error)                       → Failed, no instances counted
        recent(collector, limit)                  → newest first

Tags:
    audit, ledger, execution-record, append-only
"""

from __future__ import annotations

from dataclasses import fields, replace

from healthscore.collection.executor import ExecutionResult
from healthscore.core.errors import describe_error
from healthscore.core.logging import get_logger
from healthscore.core.models import (
    ExecutionRecord,
    ExecutionStatus,
    TriggerKind,
    utcnow,
    validate_execution_transition,
)
from healthscore.core.store import HealthStore

logger = get_logger(__name__)


class ExecutionAuditLog:
    """Creates and finalizes ExecutionRecords in the store."""

    def __init__(self, store: HealthStore) -> None:
        self._store = store

    def start(
        self,
        collector_name: str,
        trigger: TriggerKind = TriggerKind.SCHEDULED,
        triggered_by: str | None = None,
    ) -> ExecutionRecord:
        record = ExecutionRecord.start(collector_name, trigger, triggered_by)
        self._store.append_execution(record)
        logger.info(
            "execution_started",
            execution_id=record.id,
            collector=collector_name,
            trigger=trigger.value,
            triggered_by=triggered_by,
        )
        return record

    def finalize(self, record: ExecutionRecord, result: ExecutionResult) -> ExecutionRecord:
        """Close *record* with the counts and status of *result*."""
        return self._close(
            record,
            result.status,
            success=result.success_count,
            error=result.error_count,
            skipped=result.skipped_count,
            summary=result.error_summary(),
        )

    def fail(self, record: ExecutionRecord, error: BaseException | str) -> ExecutionRecord:
        """Close *record* as Failed for a run-wide failure."""
        summary = error if isinstance(error, str) else describe_error(error)
        return self._close(record, ExecutionStatus.FAILED, summary=summary)

    def cancel(self, record: ExecutionRecord, reason: str | None = None) -> ExecutionRecord:
        return self._close(record, ExecutionStatus.CANCELLED, summary=reason)

    def _close(
        self,
        record: ExecutionRecord,
        status: ExecutionStatus,
        *,
        success: int = 0,
        error: int = 0,
        skipped: int = 0,
        summary: str | None = None,
    ) -> ExecutionRecord:
        validate_execution_transition(record.status, status)
        closed = replace(
            record,
            status=status,
            completed_at=utcnow(),
            success_count=success,
            error_count=error,
            skipped_count=skipped,
            total_instances=success + error + skipped,
            error_summary=summary,
        )
        # The caller's record stays Running until the store accepts the update.
        self._store.update_execution(closed)
        for f in fields(closed):
            setattr(record, f.name, getattr(closed, f.name))
        logger.info(
            "execution_finalized",
            execution_id=record.id,
            collector=record.collector_name,
            status=status.value,
            duration_ms=record.duration_ms,
            total=record.total_instances,
            success=success,
            error=error,
            skipped=skipped,
        )
        return record

    def get(self, execution_id: str) -> ExecutionRecord | None:
        return self._store.get_execution(execution_id)

    def recent(self, collector_name: str | None = None, limit: int = 20) -> list[ExecutionRecord]:
        return self._store.list_executions(collector_name, limit=limit)


__all__ = ["ExecutionAuditLog"]
