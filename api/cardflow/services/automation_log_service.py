"""Execution log recorder for rule and webhook firings.

Invariants:
- Status only moves pending -> running -> success|failed, or pending -> skipped.
- Terminal rows are never updated again.
- Duration is measured with a monotonic clock; wall time is only used for timestamps.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.models.automation import TERMINAL_LOG_STATUSES, AutomationLog, AutomationLogStatus, AutomationRule
from cardflow.utils.datetime import utcnow

logger = logging.getLogger("cardflow.services.automation_log_service")

_OPEN_STATUSES = (AutomationLogStatus.PENDING, AutomationLogStatus.RUNNING)
ERROR_LIMIT = 500


@dataclass(slots=True)
class LogHandle:
    """Reference to an in-flight log row."""
    id: uuid.UUID
    status: AutomationLogStatus = AutomationLogStatus.PENDING
    started_monotonic: float | None = None
    duration_ms: int | None = None
    actions_executed: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_LOG_STATUSES


def _truncate(value: str | None) -> str | None:
    return value[:ERROR_LIMIT] if value else None


async def start(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    trigger_event: str,
    trigger_data: dict[str, Any] | None,
    rule_id: uuid.UUID | None = None,
    webhook_id: uuid.UUID | None = None,
    task_id: uuid.UUID | None = None,
) -> LogHandle:
    """Insert a pending log row and commit it."""
    log_id = uuid.uuid4()
    session.add(
        AutomationLog(
            id=log_id,
            rule_id=rule_id,
            webhook_id=webhook_id,
            board_id=board_id,
            task_id=task_id,
            trigger_event=trigger_event,
            trigger_data=trigger_data,
            status=AutomationLogStatus.PENDING,
            actions_executed=[],
        )
    )
    await session.commit()
    return LogHandle(id=log_id)


async def _transition(
    session: AsyncSession,
    handle: LogHandle,
    *,
    allowed_from: tuple[AutomationLogStatus, ...],
    values: dict[str, Any],
) -> bool:
    result = await session.execute(
        update(AutomationLog)
        .where(AutomationLog.id == handle.id, AutomationLog.status.in_(allowed_from))
        .values(**values)
    )
    await session.commit()
    if not result.rowcount:
        logger.warning("Ignored %s transition for log %s", values.get("status"), handle.id)
        return False
    handle.status = values["status"]
    return True


async def mark_running(session: AsyncSession, handle: LogHandle) -> bool:
    handle.started_monotonic = time.monotonic()
    return await _transition(
        session,
        handle,
        allowed_from=(AutomationLogStatus.PENDING,),
        values={"status": AutomationLogStatus.RUNNING, "started_at": utcnow()},
    )


async def finish(
    session: AsyncSession,
    handle: LogHandle,
    *,
    actions_executed: list[dict[str, Any]],
    error: str | None = None,
) -> bool:
    """Close a running log as success, or failed when any action failed."""
    failed = error is not None or any(entry.get("status") != "success" for entry in actions_executed)
    final = AutomationLogStatus.FAILED if failed else AutomationLogStatus.SUCCESS
    if failed and not error:
        first = next(entry for entry in actions_executed if entry.get("status") != "success")
        error = f"{first.get('action')}: {first.get('error') or 'action_failed'}"
    started = handle.started_monotonic if handle.started_monotonic is not None else time.monotonic()
    duration_ms = max(0, int((time.monotonic() - started) * 1000))
    changed = await _transition(
        session,
        handle,
        allowed_from=(AutomationLogStatus.RUNNING,),
        values={
            "status": final,
            "actions_executed": actions_executed,
            "error": _truncate(error),
            "completed_at": utcnow(),
            "duration_ms": duration_ms,
        },
    )
    if changed:
        handle.duration_ms = duration_ms
        handle.actions_executed = actions_executed
        handle.error = _truncate(error)
    return changed


async def skip(session: AsyncSession, handle: LogHandle, *, reason: str | None = None) -> bool:
    """Close a pending log as skipped (conditions rejected or cap reached)."""
    now = utcnow()
    changed = await _transition(
        session,
        handle,
        allowed_from=(AutomationLogStatus.PENDING,),
        values={
            "status": AutomationLogStatus.SKIPPED,
            "error": _truncate(reason),
            "started_at": now,
            "completed_at": now,
            "duration_ms": 0,
        },
    )
    if changed:
        handle.duration_ms = 0
        handle.error = _truncate(reason)
    return changed


async def fail_open_log(session: AsyncSession, handle: LogHandle, error: str) -> None:
    """Force a still-open log to failed after an unexpected engine error."""
    await session.execute(
        update(AutomationLog)
        .where(AutomationLog.id == handle.id, AutomationLog.status.in_(_OPEN_STATUSES))
        .values(status=AutomationLogStatus.FAILED, error=_truncate(error), completed_at=utcnow())
    )
    await session.commit()
    handle.status = AutomationLogStatus.FAILED
    handle.error = _truncate(error)


async def has_fired_for_task(
    session: AsyncSession,
    *,
    rule_id: uuid.UUID,
    task_id: uuid.UUID,
    trigger_event: str,
    due_date: str | None,
) -> bool:
    """Return True when a rule already fired for a task, trigger and due date.

    The due date is read back from the logged task snapshot, so rescheduling a
    task lets its due-date rules fire again.
    """
    result = await session.execute(
        select(AutomationLog.trigger_data)
        .where(
            AutomationLog.rule_id == rule_id,
            AutomationLog.task_id == task_id,
            AutomationLog.trigger_event == trigger_event,
            AutomationLog.status != AutomationLogStatus.SKIPPED,
        )
    )
    for trigger_data in result.scalars():
        task = (trigger_data or {}).get("task") or {}
        if task.get("due_date") == due_date:
            return True
    return False


async def list_logs(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[AutomationLog]:
    """List a rule's logs, newest first."""
    rule = await session.get(AutomationRule, rule_id)
    if not rule or rule.board_id != board_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    result = await session.execute(
        select(AutomationLog)
        .where(AutomationLog.rule_id == rule_id)
        .order_by(AutomationLog.created_at.desc(), AutomationLog.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def prune_logs(session: AsyncSession, *, retention_days: int) -> int:
    """Delete terminal logs older than the retention window."""
    cutoff = utcnow() - timedelta(days=retention_days)
    result = await session.execute(
        delete(AutomationLog).where(
            AutomationLog.created_at < cutoff,
            AutomationLog.status.in_(tuple(TERMINAL_LOG_STATUSES)),
        )
    )
    await session.commit()
    removed = int(result.rowcount or 0)
    if removed:
        logger.info("Pruned %d automation logs older than %d days", removed, retention_days)
    return removed
