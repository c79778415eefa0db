"""Board collaborator used by the automation engine.

Functions here read board state and apply the mutations automation actions
need. They flush but never commit; callers own the transaction boundary.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.models.board import (
    DEFAULT_LABEL_COLOR,
    Board,
    BoardList,
    BoardMember,
    BoardRole,
    Checklist,
    ChecklistItem,
    Comment,
    Label,
    Notification,
    Task,
    TaskLabel,
)
from cardflow.models.user import User
from cardflow.utils.datetime import ensure_aware

MANAGE_ROLES = frozenset({BoardRole.OWNER, BoardRole.ADMIN})


def coerce_uuid(value: Any) -> uuid.UUID | None:
    """Parse a UUID from config/context values, returning None when malformed."""
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def get_board(session: AsyncSession, board_id: uuid.UUID) -> Board | None:
    return await session.get(Board, board_id)


async def get_member_role(session: AsyncSession, board_id: uuid.UUID, user_id: uuid.UUID) -> BoardRole | None:
    """Return the user's role on a board; the board creator is always an owner."""
    board = await get_board(session, board_id)
    if not board:
        return None
    if board.created_by_id == user_id:
        return BoardRole.OWNER
    result = await session.execute(
        select(BoardMember.role).where(BoardMember.board_id == board_id, BoardMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def require_board_access(
    session: AsyncSession, *, board_id: uuid.UUID, user_id: uuid.UUID, manage: bool = False
) -> Board:
    """Ensure the user can see (or manage) a board's automations."""
    board = await get_board(session, board_id)
    role = await get_member_role(session, board_id, user_id) if board else None
    if not board or role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")
    if manage and role not in MANAGE_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient board permissions")
    return board


async def list_member_ids(session: AsyncSession, board_id: uuid.UUID) -> list[uuid.UUID]:
    """Return board member user IDs including the creator, in a stable order."""
    result = await session.execute(
        select(BoardMember.user_id).where(BoardMember.board_id == board_id).order_by(BoardMember.user_id)
    )
    member_ids = list(result.scalars().all())
    board = await get_board(session, board_id)
    if board and board.created_by_id and board.created_by_id not in member_ids:
        member_ids.insert(0, board.created_by_id)
    return member_ids


async def get_user(session: AsyncSession, user_id: uuid.UUID | None) -> User | None:
    if not user_id:
        return None
    return await session.get(User, user_id)


async def get_list_on_board(session: AsyncSession, board_id: uuid.UUID, list_id: uuid.UUID | None) -> BoardList | None:
    if not list_id:
        return None
    result = await session.execute(
        select(BoardList).where(BoardList.id == list_id, BoardList.board_id == board_id)
    )
    return result.scalar_one_or_none()


async def get_task_on_board(session: AsyncSession, board_id: uuid.UUID, task_id: uuid.UUID | None) -> Task | None:
    if not task_id:
        return None
    result = await session.execute(
        select(Task).join(BoardList, Task.list_id == BoardList.id).where(
            Task.id == task_id, BoardList.board_id == board_id
        )
    )
    return result.scalar_one_or_none()


async def task_labels(session: AsyncSession, task_id: uuid.UUID) -> list[Label]:
    result = await session.execute(
        select(Label)
        .join(TaskLabel, TaskLabel.label_id == Label.id)
        .where(TaskLabel.task_id == task_id)
        .order_by(Label.name)
    )
    return list(result.scalars().all())


async def task_snapshot(session: AsyncSession, board_id: uuid.UUID, task_id: uuid.UUID | None) -> dict[str, Any] | None:
    """Return a JSON-safe snapshot of a task as seen by conditions and templates."""
    task = await get_task_on_board(session, board_id, task_id)
    if not task:
        return None
    labels = await task_labels(session, task.id)
    due_date = ensure_aware(task.due_date)
    return {
        "id": str(task.id),
        "title": task.title,
        "description": task.description,
        "list_id": str(task.list_id),
        "position": task.position,
        "assignee_id": str(task.assignee_id) if task.assignee_id else None,
        "created_by_id": str(task.created_by_id) if task.created_by_id else None,
        "due_date": due_date.isoformat() if due_date else None,
        "archived": task.archived,
        "labels": [{"id": str(label.id), "name": label.name} for label in labels],
        "label_ids": [str(label.id) for label in labels],
        "label_names": [label.name for label in labels],
    }


def list_snapshot(board_list: BoardList | None) -> dict[str, Any] | None:
    if not board_list:
        return None
    return {"id": str(board_list.id), "name": board_list.name}


def user_snapshot(user: User | None) -> dict[str, Any] | None:
    if not user:
        return None
    return {"id": str(user.id), "name": user.display_name or user.email, "email": user.email}


async def _next_position(session: AsyncSession, list_id: uuid.UUID) -> float:
    result = await session.execute(select(func.max(Task.position)).where(Task.list_id == list_id))
    current = result.scalar_one_or_none()
    return float(current or 0) + 1


async def move_task(session: AsyncSession, task: Task, list_id: uuid.UUID) -> float:
    """Move a task to the end of the target list; a task already there keeps its position."""
    if task.list_id == list_id:
        return task.position
    task.list_id = list_id
    task.position = await _next_position(session, list_id)
    await session.flush()
    return task.position


async def set_assignee(session: AsyncSession, task: Task, user_id: uuid.UUID | None) -> None:
    task.assignee_id = user_id
    await session.flush()


async def find_label(
    session: AsyncSession,
    board_id: uuid.UUID,
    *,
    label_id: uuid.UUID | None = None,
    label_name: str | None = None,
) -> Label | None:
    """Resolve a board label by ID first, then by exact name."""
    if label_id:
        result = await session.execute(select(Label).where(Label.id == label_id, Label.board_id == board_id))
        label = result.scalar_one_or_none()
        if label:
            return label
    if label_name:
        result = await session.execute(
            select(Label).where(Label.board_id == board_id, Label.name == label_name).order_by(Label.id).limit(1)
        )
        return result.scalar_one_or_none()
    return None


async def create_label(session: AsyncSession, board_id: uuid.UUID, name: str, color: str = DEFAULT_LABEL_COLOR) -> Label:
    label = Label(board_id=board_id, name=name, color=color)
    session.add(label)
    await session.flush()
    return label


async def attach_label(session: AsyncSession, task_id: uuid.UUID, label_id: uuid.UUID) -> bool:
    """Attach a label to a task; returns False when it was already attached."""
    result = await session.execute(
        select(TaskLabel.id).where(TaskLabel.task_id == task_id, TaskLabel.label_id == label_id)
    )
    if result.scalar_one_or_none():
        return False
    session.add(TaskLabel(task_id=task_id, label_id=label_id))
    await session.flush()
    return True


async def detach_label(session: AsyncSession, task_id: uuid.UUID, label_id: uuid.UUID) -> bool:
    result = await session.execute(
        delete(TaskLabel).where(TaskLabel.task_id == task_id, TaskLabel.label_id == label_id)
    )
    return bool(result.rowcount)


async def add_comment(session: AsyncSession, task_id: uuid.UUID, content: str, user_id: uuid.UUID | None) -> Comment:
    comment = Comment(task_id=task_id, content=content, user_id=user_id)
    session.add(comment)
    await session.flush()
    return comment


async def create_notifications(
    session: AsyncSession,
    user_ids: list[uuid.UUID],
    *,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> int:
    """Create one automation notification per distinct user."""
    unique_ids = list(dict.fromkeys(user_ids))
    for user_id in unique_ids:
        session.add(Notification(user_id=user_id, type="automation", title=title, message=message, data=data))
    await session.flush()
    return len(unique_ids)


async def set_due_date(session: AsyncSession, task: Task, due_date: datetime) -> None:
    task.due_date = due_date
    await session.flush()


async def archive_task(session: AsyncSession, task: Task) -> None:
    task.archived = True
    await session.flush()


async def copy_task(session: AsyncSession, task: Task, *, list_id: uuid.UUID, title: str) -> Task:
    """Copy a task (with its labels) to the end of a list."""
    copy = Task(
        list_id=list_id,
        title=title,
        description=task.description,
        position=await _next_position(session, list_id),
        assignee_id=task.assignee_id,
        created_by_id=task.created_by_id,
        due_date=task.due_date,
    )
    session.add(copy)
    await session.flush()
    for label in await task_labels(session, task.id):
        session.add(TaskLabel(task_id=copy.id, label_id=label.id))
    await session.flush()
    return copy


async def create_checklist(session: AsyncSession, task_id: uuid.UUID, name: str, items: list[str]) -> Checklist:
    checklist = Checklist(task_id=task_id, name=name)
    session.add(checklist)
    await session.flush()
    for position, content in enumerate(items):
        session.add(ChecklistItem(checklist_id=checklist.id, content=content, position=position))
    await session.flush()
    return checklist


async def find_checklist(
    session: AsyncSession,
    task_id: uuid.UUID,
    *,
    checklist_id: uuid.UUID | None = None,
    name: str | None = None,
) -> Checklist | None:
    stmt = select(Checklist).where(Checklist.task_id == task_id)
    if checklist_id:
        stmt = stmt.where(Checklist.id == checklist_id)
    elif name:
        stmt = stmt.where(Checklist.name == name)
    else:
        return None
    result = await session.execute(stmt.order_by(Checklist.id).limit(1))
    return result.scalar_one_or_none()


async def get_checklist_on_board(
    session: AsyncSession, board_id: uuid.UUID, checklist_id: uuid.UUID | None
) -> Checklist | None:
    if not checklist_id:
        return None
    result = await session.execute(
        select(Checklist)
        .join(Task, Checklist.task_id == Task.id)
        .join(BoardList, Task.list_id == BoardList.id)
        .where(Checklist.id == checklist_id, BoardList.board_id == board_id)
    )
    return result.scalar_one_or_none()


async def checklist_progress(session: AsyncSession, checklist_id: uuid.UUID) -> tuple[int, int]:
    """Return (checked, total) item counts for a checklist."""
    result = await session.execute(
        select(ChecklistItem.checked).where(ChecklistItem.checklist_id == checklist_id)
    )
    states = list(result.scalars().all())
    return sum(1 for checked in states if checked), len(states)


async def complete_checklist(session: AsyncSession, checklist_id: uuid.UUID) -> int:
    """Check every open item of a checklist; returns how many were changed."""
    result = await session.execute(
        update(ChecklistItem)
        .where(ChecklistItem.checklist_id == checklist_id, ChecklistItem.checked.is_(False))
        .values(checked=True)
    )
    return int(result.rowcount or 0)


async def tasks_due_between(
    session: AsyncSession, *, start: datetime | None, end: datetime
) -> list[tuple[Task, uuid.UUID]]:
    """Return open tasks due in [start, end) with their board IDs; no start means every earlier task."""
    query = (
        select(Task, BoardList.board_id)
        .join(BoardList, Task.list_id == BoardList.id)
        .where(Task.archived.is_(False), Task.due_date.is_not(None), Task.due_date < end)
    )
    if start is not None:
        query = query.where(Task.due_date >= start)
    result = await session.execute(query.order_by(Task.due_date))
    return [(task, board_id) for task, board_id in result.all()]
