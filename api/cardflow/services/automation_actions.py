"""Action executor: runs rule actions against the board, one at a time.

Invariants:
- Actions run strictly in list order; each awaits completion before the next.
- A failing action is rolled back and recorded; later actions still run.
- Successful actions are committed immediately so later actions (and later
  rules for the same event) observe their effects.
"""

from __future__ import annotations

import json
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable

import httpx
from fastapi import HTTPException
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.core.config import settings
from cardflow.models.board import Task
from cardflow.schema.automation import (
    ActionConfig,
    AddCommentAction,
    AddLabelAction,
    ArchiveCardAction,
    AssignMemberAction,
    CopyCardAction,
    CreateChecklistAction,
    MarkChecklistCompleteAction,
    MoveCardAction,
    RemoveLabelAction,
    SendNotificationAction,
    SendWebhookAction,
    SetDueDateAction,
    UnassignMemberAction,
)
from cardflow.services import automation_context, board_service
from cardflow.services.board_service import coerce_uuid
from cardflow.utils.datetime import utcnow
from cardflow.utils.redaction import redact_secrets

logger = logging.getLogger("cardflow.services.automation_actions")

DEFAULT_NOTIFICATION_TITLE = "Automation Alert"
ERROR_LIMIT = 500

_single_action_adapter: TypeAdapter[ActionConfig] = TypeAdapter(ActionConfig)


class ActionError(RuntimeError):
    """Raised by handlers for expected, user-facing action failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(slots=True)
class ActionRun:
    """Shared state for one action sequence."""
    session: AsyncSession
    board_id: uuid.UUID
    context: dict[str, Any]


ActionHandler = Callable[[ActionRun, Any], Awaitable[dict[str, Any]]]


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.outbound_webhook_timeout_seconds)


def _truncate_error(value: str | None, limit: int = ERROR_LIMIT) -> str | None:
    if not value:
        return None
    return value[:limit]


def _event_user_id(run: ActionRun) -> uuid.UUID | None:
    return coerce_uuid((run.context.get("user") or {}).get("id"))


async def _require_task(run: ActionRun) -> Task:
    task_id = coerce_uuid((run.context.get("task") or {}).get("id"))
    if not task_id:
        raise ActionError("task_required")
    task = await board_service.get_task_on_board(run.session, run.board_id, task_id)
    if not task:
        raise ActionError("task_not_found")
    return task


async def _move_card(run: ActionRun, action: MoveCardAction) -> dict[str, Any]:
    task = await _require_task(run)
    target = await board_service.get_list_on_board(run.session, run.board_id, coerce_uuid(action.target_list_id))
    if not target:
        raise ActionError("target_list_not_found")
    moved = task.list_id != target.id
    position = await board_service.move_task(run.session, task, target.id)
    return {"moved": moved, "task_id": str(task.id), "list_id": str(target.id), "position": position}


async def _assign_member(run: ActionRun, action: AssignMemberAction) -> dict[str, Any]:
    task = await _require_task(run)
    members = await board_service.list_member_ids(run.session, run.board_id)
    if action.user_id:
        user_id = coerce_uuid(action.user_id)
        mode = "user"
    elif action.assign_creator:
        user_id = task.created_by_id
        mode = "creator"
    elif action.assign_random:
        user_id = random.choice(members) if members else None
        mode = "random"
    else:
        raise ActionError("assign_member_missing_target")
    if not user_id or user_id not in members:
        raise ActionError("assign_member_not_on_board")
    await board_service.set_assignee(run.session, task, user_id)
    return {"assigned": True, "task_id": str(task.id), "user_id": str(user_id), "mode": mode}


async def _unassign_member(run: ActionRun, action: UnassignMemberAction) -> dict[str, Any]:
    task = await _require_task(run)
    only_user = coerce_uuid(action.user_id)
    if only_user and task.assignee_id != only_user:
        return {"unassigned": False, "task_id": str(task.id), "reason": "not_assigned"}
    previous = task.assignee_id
    await board_service.set_assignee(run.session, task, None)
    return {
        "unassigned": previous is not None,
        "task_id": str(task.id),
        "previous_assignee_id": str(previous) if previous else None,
    }


async def _add_label(run: ActionRun, action: AddLabelAction) -> dict[str, Any]:
    task = await _require_task(run)
    label = await board_service.find_label(
        run.session, run.board_id, label_id=coerce_uuid(action.label_id), label_name=action.label_name
    )
    created = False
    if not label and action.create_if_missing and action.label_name:
        label = await board_service.create_label(run.session, run.board_id, action.label_name)
        created = True
    if not label:
        raise ActionError("label_not_found")
    attached = await board_service.attach_label(run.session, task.id, label.id)
    return {
        "added": attached,
        "task_id": str(task.id),
        "label_id": str(label.id),
        "label_name": label.name,
        "created": created,
    }


async def _remove_label(run: ActionRun, action: RemoveLabelAction) -> dict[str, Any]:
    task = await _require_task(run)
    label = await board_service.find_label(
        run.session, run.board_id, label_id=coerce_uuid(action.label_id), label_name=action.label_name
    )
    if not label:
        raise ActionError("label_not_found")
    removed = await board_service.detach_label(run.session, task.id, label.id)
    return {"removed": removed, "task_id": str(task.id), "label_id": str(label.id)}


async def _add_comment(run: ActionRun, action: AddCommentAction) -> dict[str, Any]:
    task = await _require_task(run)
    content = automation_context.interpolate(action.comment_content, run.context).strip()
    if not content:
        raise ActionError("comment_empty")
    comment = await board_service.add_comment(run.session, task.id, content, _event_user_id(run))
    return {"added": True, "comment_id": str(comment.id), "task_id": str(task.id)}


async def _notification_recipients(run: ActionRun, action: SendNotificationAction) -> list[uuid.UUID]:
    task = run.context.get("task") or {}
    if action.notify_type in {"user", "specific"}:
        candidates = [coerce_uuid(user_id) for user_id in action.notify_user_ids]
        return [user_id for user_id in candidates if user_id]
    if action.notify_type == "assignee":
        assignee = coerce_uuid(task.get("assignee_id"))
        return [assignee] if assignee else []
    if action.notify_type == "creator":
        creator = coerce_uuid(task.get("created_by_id")) or _event_user_id(run)
        return [creator] if creator else []
    return await board_service.list_member_ids(run.session, run.board_id)


async def _send_notification(run: ActionRun, action: SendNotificationAction) -> dict[str, Any]:
    recipients = await _notification_recipients(run, action)
    title = automation_context.interpolate(action.notification_title or DEFAULT_NOTIFICATION_TITLE, run.context)
    message = automation_context.interpolate(action.notification_message, run.context)
    task = run.context.get("task") or {}
    sent = await board_service.create_notifications(
        run.session,
        recipients,
        title=title or DEFAULT_NOTIFICATION_TITLE,
        message=message,
        data={"task_id": task.get("id"), "board_id": str(run.board_id)},
    )
    return {"sent": True, "user_count": sent}


def _webhook_payload(run: ActionRun, action: SendWebhookAction) -> dict[str, Any] | list[Any]:
    if not action.webhook_payload:
        task = run.context.get("task") or {}
        return {
            "event": "automation_triggered",
            "board_id": str(run.board_id),
            "task_id": task.get("id"),
            "timestamp": utcnow().isoformat(),
        }
    rendered = automation_context.interpolate(
        action.webhook_payload, run.context, escape=automation_context.json_escape
    )
    try:
        return json.loads(rendered)
    except json.JSONDecodeError as exc:
        raise ActionError("webhook_payload_invalid_json") from exc


async def _send_webhook(run: ActionRun, action: SendWebhookAction) -> dict[str, Any]:
    if not action.webhook_url:
        raise ActionError("webhook_url_required")
    payload = _webhook_payload(run, action)
    headers = {"Content-Type": "application/json", **action.webhook_headers}
    method = action.webhook_method
    safe_url = redact_secrets(action.webhook_url)
    try:
        async with _http_client() as client:
            response = await client.request(
                method,
                action.webhook_url,
                headers=headers,
                json=payload if method != "GET" else None,
            )
    except httpx.HTTPError as exc:
        logger.warning("Outbound webhook %s %s failed: %s", method, safe_url, exc.__class__.__name__)
        raise ActionError(f"webhook_request_failed:{exc.__class__.__name__}") from exc
    logger.info("Outbound webhook %s %s -> %s", method, safe_url, response.status_code)
    if not response.is_success:
        raise ActionError(f"webhook_http_{response.status_code}")
    return {"sent": True, "status_code": response.status_code, "method": method}


async def _set_due_date(run: ActionRun, action: SetDueDateAction) -> dict[str, Any]:
    task = await _require_task(run)
    due_date = utcnow() + timedelta(days=action.due_date_offset)
    if action.due_date_hour is not None:
        due_date = due_date.replace(hour=action.due_date_hour, minute=0, second=0, microsecond=0)
    await board_service.set_due_date(run.session, task, due_date)
    return {"set": True, "task_id": str(task.id), "due_date": due_date.isoformat()}


async def _archive_card(run: ActionRun, action: ArchiveCardAction) -> dict[str, Any]:
    task = await _require_task(run)
    await board_service.archive_task(run.session, task)
    return {"archived": True, "task_id": str(task.id)}


async def _copy_card(run: ActionRun, action: CopyCardAction) -> dict[str, Any]:
    task = await _require_task(run)
    list_id = task.list_id
    if action.copy_to_list_id:
        target = await board_service.get_list_on_board(run.session, run.board_id, coerce_uuid(action.copy_to_list_id))
        if not target:
            raise ActionError("copy_target_list_not_found")
        list_id = target.id
    title = automation_context.interpolate(action.copy_title, run.context).strip() or f"{task.title} (Copy)"
    copy = await board_service.copy_task(run.session, task, list_id=list_id, title=title)
    return {"copied": True, "original_id": str(task.id), "new_id": str(copy.id), "list_id": str(list_id)}


async def _create_checklist(run: ActionRun, action: CreateChecklistAction) -> dict[str, Any]:
    task = await _require_task(run)
    if not action.checklist_name:
        raise ActionError("checklist_name_required")
    items = action.item_lines()
    checklist = await board_service.create_checklist(run.session, task.id, action.checklist_name, items)
    return {"created": True, "checklist_id": str(checklist.id), "item_count": len(items)}


async def _mark_checklist_complete(run: ActionRun, action: MarkChecklistCompleteAction) -> dict[str, Any]:
    task = await _require_task(run)
    event_checklist = coerce_uuid((run.context.get("checklist") or {}).get("id"))
    checklist = None
    if action.checklist_name:
        checklist = await board_service.find_checklist(run.session, task.id, name=action.checklist_name)
    elif event_checklist:
        checklist = await board_service.find_checklist(run.session, task.id, checklist_id=event_checklist)
    if not checklist:
        raise ActionError("checklist_not_found")
    checked = await board_service.complete_checklist(run.session, checklist.id)
    return {"completed": True, "checklist_id": str(checklist.id), "items_checked": checked}


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "move_card": _move_card,
    "assign_member": _assign_member,
    "unassign_member": _unassign_member,
    "add_label": _add_label,
    "remove_label": _remove_label,
    "add_comment": _add_comment,
    "send_notification": _send_notification,
    "send_webhook": _send_webhook,
    "set_due_date": _set_due_date,
    "archive_card": _archive_card,
    "copy_card": _copy_card,
    "create_checklist": _create_checklist,
    "mark_checklist_complete": _mark_checklist_complete,
}

# Actions whose effects are visible in the task snapshot.
TASK_MUTATING_ACTIONS = frozenset(
    {"move_card", "assign_member", "unassign_member", "add_label", "remove_label", "set_due_date", "archive_card"}
)


def _action_type(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("type") or "unknown")
    return str(getattr(raw, "type", "unknown"))


async def execute_action(run: ActionRun, raw: ActionConfig | dict[str, Any]) -> dict[str, Any]:
    """Execute one action and return its outcome entry; never raises."""
    action_type = _action_type(raw)
    try:
        action = raw if not isinstance(raw, dict) else _single_action_adapter.validate_python(raw)
    except ValidationError:
        return {"action": action_type, "status": "failed", "error": "action_config_invalid"}
    handler = ACTION_HANDLERS.get(action.type)
    if not handler:
        return {"action": action_type, "status": "failed", "error": f"unsupported_action:{action_type}"}

    try:
        result = await handler(run, action)
        await run.session.commit()
    except ActionError as exc:
        await run.session.rollback()
        return {"action": action_type, "status": "failed", "error": _truncate_error(exc.message)}
    except HTTPException as exc:
        await run.session.rollback()
        return {"action": action_type, "status": "failed", "error": _truncate_error(str(exc.detail))}
    except Exception as exc:
        logger.exception("Automation action %s failed on board %s", action_type, run.board_id)
        await run.session.rollback()
        return {"action": action_type, "status": "failed", "error": _truncate_error(redact_secrets(str(exc)))}

    if action_type in TASK_MUTATING_ACTIONS:
        await automation_context.refresh_task(run.session, run.board_id, run.context)
    return {"action": action_type, "status": "success", "result": result}


async def execute_actions(
    session: AsyncSession,
    actions: list[ActionConfig] | list[dict[str, Any]],
    context: dict[str, Any],
    *,
    board_id: uuid.UUID,
) -> list[dict[str, Any]]:
    """Run actions sequentially, isolating failures per action."""
    run = ActionRun(session=session, board_id=board_id, context=context)
    outcomes: list[dict[str, Any]] = []
    for raw in actions:
        outcomes.append(await execute_action(run, raw))
    return outcomes
