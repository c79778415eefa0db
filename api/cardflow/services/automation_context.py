"""Trigger events, event context snapshots, and template interpolation.

Invariants:
- Context values are JSON-safe (string IDs, ISO timestamps) so they can be
  snapshotted into logs as-is.
- Interpolation only resolves allow-listed paths; anything else becomes "".
"""

from __future__ import annotations

import copy
import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.services import board_service
from cardflow.utils.datetime import utcnow

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")

INTERPOLATION_PATHS: dict[str, tuple[str, ...]] = {
    "task.id": ("task", "id"),
    "task.title": ("task", "title"),
    "task.description": ("task", "description"),
    "task.dueDate": ("task", "due_date"),
    "list.name": ("list", "name"),
    "board.name": ("board", "name"),
    "user.name": ("user", "name"),
    "user.email": ("user", "email"),
}
PAYLOAD_ROOT = "payload"


@dataclass(slots=True)
class TriggerEvent:
    """Normalized domain event handed to the trigger matcher."""
    type: str
    board_id: uuid.UUID
    context: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def task_id(self) -> uuid.UUID | None:
        task = self.context.get("task") or {}
        return board_service.coerce_uuid(task.get("id"))

    def to_job_kwargs(self) -> dict[str, Any]:
        """Serialize for worker queues."""
        return {
            "trigger_type": self.type,
            "board_id": str(self.board_id),
            "context": self.context,
            "occurred_at": self.occurred_at.isoformat(),
        }


async def build_context(
    session: AsyncSession,
    board_id: uuid.UUID,
    *,
    task_id: uuid.UUID | None = None,
    list_id: uuid.UUID | None = None,
    previous_list_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    label_id: uuid.UUID | None = None,
    member_id: uuid.UUID | None = None,
    checklist_id: uuid.UUID | None = None,
    comment_id: uuid.UUID | None = None,
    cron_expression: str | None = None,
    payload: dict[str, Any] | None = None,
    webhook: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Hydrate an event context from board state."""
    board = await board_service.get_board(session, board_id)
    task = await board_service.task_snapshot(session, board_id, task_id)
    if task and not list_id:
        list_id = board_service.coerce_uuid(task["list_id"])
    board_list = await board_service.get_list_on_board(session, board_id, list_id)
    user = await board_service.get_user(session, user_id)

    label = None
    if label_id:
        found = await board_service.find_label(session, board_id, label_id=label_id)
        label = {"id": str(found.id), "name": found.name} if found else {"id": str(label_id), "name": None}

    checklist = None
    if checklist_id:
        found_checklist = await board_service.get_checklist_on_board(session, board_id, checklist_id)
        checklist = {
            "id": str(checklist_id),
            "name": found_checklist.name if found_checklist else None,
        }

    return {
        "board": {"id": str(board_id), "name": board.name if board else None},
        "task": task,
        "list": board_service.list_snapshot(board_list),
        "previous_list_id": str(previous_list_id) if previous_list_id else None,
        "user": board_service.user_snapshot(user),
        "label": label,
        "member": {"id": str(member_id)} if member_id else None,
        "checklist": checklist,
        "comment_id": str(comment_id) if comment_id else None,
        "cron_expression": cron_expression,
        "payload": payload,
        "webhook": webhook,
        "metadata": dict(metadata or {}),
    }


async def refresh_task(session: AsyncSession, board_id: uuid.UUID, context: dict[str, Any]) -> None:
    """Re-read the task snapshot (and its list) after earlier actions mutated it."""
    task = context.get("task")
    if not task:
        return
    fresh = await board_service.task_snapshot(session, board_id, board_service.coerce_uuid(task.get("id")))
    if not fresh:
        return
    context["task"] = fresh
    board_list = await board_service.get_list_on_board(session, board_id, board_service.coerce_uuid(fresh["list_id"]))
    if board_list:
        context["list"] = board_service.list_snapshot(board_list)


def resolve_path(context: dict[str, Any], path: tuple[str, ...]) -> Any:
    """Walk a key path through nested dicts, returning None when absent."""
    value: Any = context
    for part in path:
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
        if value is None:
            return None
    return value


def _placeholder_path(name: str) -> tuple[str, ...] | None:
    if name in INTERPOLATION_PATHS:
        return INTERPOLATION_PATHS[name]
    parts = tuple(name.split("."))
    if len(parts) > 1 and parts[0] == PAYLOAD_ROOT and all(parts):
        return parts
    return None


def _render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return ", ".join(value)
        return json.dumps(value, default=str)
    return str(value)


def json_escape(text: str) -> str:
    """Escape text for safe embedding inside a JSON string literal."""
    return json.dumps(text)[1:-1]


def interpolate(
    template: str | None,
    context: dict[str, Any],
    *,
    escape: Callable[[str], str] | None = None,
) -> str:
    """Replace ``{{path}}`` placeholders with context values."""
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        path = _placeholder_path(match.group(1))
        rendered = _render_value(resolve_path(context, path)) if path else ""
        return escape(rendered) if escape else rendered

    return _PLACEHOLDER_RE.sub(_replace, template)


def snapshot(context: dict[str, Any]) -> dict[str, Any]:
    """Return a detached JSON-safe copy of the context for logging."""
    return json.loads(json.dumps(copy.deepcopy(context), default=str))
