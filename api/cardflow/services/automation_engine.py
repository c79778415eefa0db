"""Rule engine: event -> matching rules -> conditions -> actions -> log.

Invariants:
- Rules for one event run sequentially in match order; each rule sees the
  board state left by the rules before it.
- A rule failure never aborts the remaining rules or reaches the emitter.
- execution_count is incremented exactly once per firing that ran actions,
  through a conditional SQL update that enforces max_executions.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.core.config import settings
from cardflow.models.automation import AutomationLogStatus, AutomationRule
from cardflow.schema.automation import (
    AutomationEventCreate,
    AutomationEventResult,
    AutomationFiringRead,
    TriggerType,
)
from cardflow.services import (
    automation_actions,
    automation_conditions,
    automation_context,
    automation_log_service,
    automation_triggers,
    board_service,
)
from cardflow.services.automation_context import TriggerEvent
from cardflow.services.automation_triggers import RuleSnapshot
from cardflow.services.task_queue import task_queue
from cardflow.utils.datetime import ensure_aware, parse_datetime, utcnow

logger = logging.getLogger("cardflow.services.automation_engine")

# Time-based triggers fire at most once per rule, task and due date.
DEDUPED_TRIGGERS = frozenset({TriggerType.DUE_DATE_APPROACHING.value, TriggerType.DUE_DATE_PASSED.value})

SKIP_CONDITIONS = "conditions_not_met"
SKIP_CAP = "execution_cap_reached"


async def claim_execution(session: AsyncSession, rule: RuleSnapshot) -> bool:
    """Atomically count a firing against the rule's cap; False when the cap is reached."""
    result = await session.execute(
        update(AutomationRule)
        .where(
            AutomationRule.id == rule.id,
            or_(
                AutomationRule.max_executions.is_(None),
                AutomationRule.execution_count < AutomationRule.max_executions,
            ),
        )
        .values(execution_count=AutomationRule.execution_count + 1)
    )
    await session.commit()
    claimed = bool(result.rowcount)
    if rule.max_executions is not None:
        # Cached snapshots carry the old count; reload so capped rules stop matching.
        automation_triggers.invalidate_board(rule.board_id)
    return claimed


def _firing(rule: RuleSnapshot, handle: automation_log_service.LogHandle) -> AutomationFiringRead:
    return AutomationFiringRead(
        rule_id=rule.id,
        rule_name=rule.name,
        log_id=handle.id,
        status=handle.status.value,
        actions_executed=handle.actions_executed,
        error=handle.error,
        duration_ms=handle.duration_ms,
    )


def _trigger_data(event: TriggerEvent) -> dict[str, Any]:
    data = automation_context.snapshot(event.context)
    data["occurred_at"] = event.occurred_at.isoformat()
    return data


async def fire_rule(
    session: AsyncSession,
    rule: RuleSnapshot,
    event: TriggerEvent,
    *,
    dedupe: bool = True,
    count_execution: bool = True,
) -> AutomationFiringRead | None:
    """Evaluate and run one rule for an event; returns None when deduplicated."""
    task_id = event.task_id
    if dedupe and task_id and event.type in DEDUPED_TRIGGERS:
        already = await automation_log_service.has_fired_for_task(
            session,
            rule_id=rule.id,
            task_id=task_id,
            trigger_event=event.type,
            due_date=(event.context.get("task") or {}).get("due_date"),
        )
        if already:
            logger.debug("Rule %s already fired %s for task %s", rule.id, event.type, task_id)
            return None

    handle = await automation_log_service.start(
        session,
        board_id=event.board_id,
        trigger_event=event.type,
        trigger_data=_trigger_data(event),
        rule_id=rule.id,
        task_id=task_id,
    )
    try:
        if not automation_conditions.evaluate_conditions(rule.conditions, event.context):
            await automation_log_service.skip(session, handle, reason=SKIP_CONDITIONS)
            return _firing(rule, handle)
        if count_execution and not await claim_execution(session, rule):
            await automation_log_service.skip(session, handle, reason=SKIP_CAP)
            return _firing(rule, handle)

        await automation_log_service.mark_running(session, handle)
        outcomes = await automation_actions.execute_actions(
            session, rule.actions, event.context, board_id=event.board_id
        )
        await automation_log_service.finish(session, handle, actions_executed=outcomes)
    except Exception as exc:
        logger.exception("Automation rule %s failed on event %s", rule.id, event.type)
        await session.rollback()
        await automation_log_service.fail_open_log(session, handle, f"engine_error: {exc.__class__.__name__}")
        return _firing(rule, handle)

    logger.info(
        "Rule %s (%s) fired on %s: %s in %sms",
        rule.id,
        rule.name,
        event.type,
        handle.status.value,
        handle.duration_ms,
    )
    return _firing(rule, handle)


async def process_event(session: AsyncSession, event: TriggerEvent) -> AutomationEventResult:
    """Run every matching rule for an event, in priority order."""
    rules = await automation_triggers.match_rules(session, event)
    results: list[AutomationFiringRead] = []
    for rule in rules:
        firing = await fire_rule(session, rule, event)
        if firing is None:
            continue
        results.append(firing)
        if firing.status != AutomationLogStatus.SKIPPED.value:
            await automation_context.refresh_task(session, event.board_id, event.context)
    executed = sum(
        1 for firing in results if firing.status in {AutomationLogStatus.SUCCESS.value, AutomationLogStatus.FAILED.value}
    )
    return AutomationEventResult(
        trigger_type=event.type,
        rules_matched=len(rules),
        rules_executed=executed,
        results=results,
    )


async def trigger_automation(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    trigger_type: str,
    occurred_at: datetime | None = None,
    **context_kwargs: Any,
) -> AutomationEventResult:
    """Build an event context from board state and process it inline."""
    context = await automation_context.build_context(session, board_id, **context_kwargs)
    event = TriggerEvent(type=trigger_type, board_id=board_id, context=context, occurred_at=occurred_at or utcnow())
    return await process_event(session, event)


async def dispatch_event(session: AsyncSession, event: TriggerEvent) -> dict[str, Any]:
    """Hand an event to the automations queue, or process it inline."""
    from cardflow.jobs.automations import process_event_job

    async def _fallback() -> dict[str, Any]:
        result = await process_event(session, event)
        return result.model_dump(mode="json")

    return await task_queue.enqueue_or_run(
        process_event_job,
        fallback=_fallback,
        queue_name="automations",
        timeout_seconds=120,
        retry=None,
        wait=False,
        description=f"automation:{event.type}:{event.board_id}",
        **event.to_job_kwargs(),
    )


def event_from_job(
    *, trigger_type: str, board_id: str, context: dict[str, Any], occurred_at: str | None = None
) -> TriggerEvent:
    """Rebuild an event from queue job kwargs."""
    return TriggerEvent(
        type=trigger_type,
        board_id=uuid.UUID(board_id),
        context=context,
        occurred_at=parse_datetime(occurred_at) or utcnow(),
    )


async def run_rule_test(
    session: AsyncSession,
    *,
    rule: AutomationRule,
    task_id: uuid.UUID | None,
    user_id: uuid.UUID,
) -> AutomationFiringRead:
    """Run a rule once on demand (even when disabled) against an optional task."""
    if task_id and not await board_service.get_task_on_board(session, rule.board_id, task_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    snapshot = RuleSnapshot.from_model(rule)
    context = await automation_context.build_context(session, rule.board_id, task_id=task_id, user_id=user_id)
    context["metadata"]["test_run"] = True
    event = TriggerEvent(type=snapshot.trigger_type, board_id=rule.board_id, context=context)
    return await fire_rule(session, snapshot, event, dedupe=False, count_execution=False)


async def check_checklist_completion(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    checklist_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> dict[str, Any] | None:
    """Dispatch checklist_completed when every item of the checklist is checked."""
    checklist = await board_service.get_checklist_on_board(session, board_id, checklist_id)
    if not checklist:
        return None
    checked, total = await board_service.checklist_progress(session, checklist.id)
    if total == 0 or checked < total:
        return None
    context = await automation_context.build_context(
        session, board_id, task_id=checklist.task_id, checklist_id=checklist.id, user_id=user_id
    )
    event = TriggerEvent(type=TriggerType.CHECKLIST_COMPLETED.value, board_id=board_id, context=context)
    return await dispatch_event(session, event)


async def ingest_event(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    payload: AutomationEventCreate,
    user_id: uuid.UUID | None,
) -> dict[str, Any]:
    """Turn a board domain event into a trigger event and dispatch it."""
    context = await automation_context.build_context(
        session,
        board_id,
        task_id=payload.task_id,
        list_id=payload.list_id,
        previous_list_id=payload.previous_list_id,
        user_id=user_id,
        label_id=payload.label_id,
        member_id=payload.member_id,
        checklist_id=payload.checklist_id,
        comment_id=payload.comment_id,
        cron_expression=payload.cron_expression,
        metadata=payload.metadata,
    )
    event = TriggerEvent(type=payload.type.value, board_id=board_id, context=context)
    result = await dispatch_event(session, event)
    if payload.type is TriggerType.CHECKLIST_ITEM_CHECKED and payload.checklist_id:
        completed = await check_checklist_completion(
            session, board_id=board_id, checklist_id=payload.checklist_id, user_id=user_id
        )
        if completed is not None:
            result = {**result, "follow_up": completed}
    return result



async def emit_due_date_events(session: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    """Scan for approaching and overdue tasks and run due-date rules for them."""
    now = ensure_aware(now) or utcnow()
    horizon = now + timedelta(days=settings.due_date_scan_window_days)
    approaching = await board_service.tasks_due_between(session, start=now, end=horizon)
    overdue = await board_service.tasks_due_between(session, start=None, end=now)
    targets = [(task.id, board_id) for task, board_id in approaching]
    overdue_targets = [(task.id, board_id) for task, board_id in overdue]

    summary = {"approaching": 0, "passed": 0, "fired": 0}
    for trigger_type, items, key in (
        (TriggerType.DUE_DATE_APPROACHING.value, targets, "approaching"),
        (TriggerType.DUE_DATE_PASSED.value, overdue_targets, "passed"),
    ):
        for task_id, board_id in items:
            summary[key] += 1
            result = await trigger_automation(
                session, board_id=board_id, trigger_type=trigger_type, occurred_at=now, task_id=task_id
            )
            summary["fired"] += result.rules_executed
    logger.info(
        "Due-date scan: %d approaching, %d overdue, %d rules fired",
        summary["approaching"],
        summary["passed"],
        summary["fired"],
    )
    return summary
