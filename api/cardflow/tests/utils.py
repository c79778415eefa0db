"""Shared helpers for API and service tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.models.automation import AutomationLog, AutomationRule
from cardflow.models.board import Board, BoardList, BoardMember, BoardRole, Label, Task
from cardflow.models.user import User


@dataclass(slots=True)
class AuthContext:
    """Authenticated client context for API tests."""

    client: AsyncClient
    user: dict[str, Any]
    email: str
    password: str
    access_token: str

    @property
    def user_id(self) -> str:
        return str(self.user["id"])

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


async def register_and_login(client: AsyncClient, *, prefix: str = "user") -> AuthContext:
    """Register and log in a new user, returning the auth context."""
    suffix = uuid.uuid4().hex[:8]
    email = f"{prefix}_{suffix}@example.com"
    password = "supersecret123"
    creds = {"email": email, "password": password, "display_name": f"{prefix.title()} {suffix}"}

    register_res = await client.post("/api/auth/register", json=creds)
    assert register_res.status_code == 200
    user = register_res.json()["user"]

    login_res = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert login_res.status_code == 200

    return AuthContext(
        client=client,
        user=user,
        email=email,
        password=password,
        access_token=login_res.json()["access_token"],
    )


@dataclass(slots=True)
class BoardFixture:
    """IDs of a seeded board; plain values so they survive session rollbacks."""

    board_id: uuid.UUID
    owner_id: uuid.UUID
    list_ids: dict[str, uuid.UUID] = field(default_factory=dict)
    task_ids: dict[str, uuid.UUID] = field(default_factory=dict)


async def create_user(session: AsyncSession, *, prefix: str = "member") -> uuid.UUID:
    user = User(
        email=f"{prefix}_{uuid.uuid4().hex[:8]}@example.com",
        hashed_password="not-used",
        display_name=prefix.title(),
    )
    session.add(user)
    await session.commit()
    return user.id


async def seed_board(
    session: AsyncSession,
    *,
    owner_id: uuid.UUID | None = None,
    lists: tuple[str, ...] = ("To Do", "Doing", "Done"),
) -> BoardFixture:
    """Create a board owned by a user, with the given lists."""
    owner_id = owner_id or await create_user(session, prefix="owner")
    board = Board(name="Launch board", created_by_id=owner_id)
    session.add(board)
    await session.flush()
    fixture = BoardFixture(board_id=board.id, owner_id=owner_id)
    for position, name in enumerate(lists):
        board_list = BoardList(board_id=board.id, name=name, position=float(position))
        session.add(board_list)
        await session.flush()
        fixture.list_ids[name] = board_list.id
    await session.commit()
    return fixture


async def add_member(
    session: AsyncSession, board: BoardFixture, user_id: uuid.UUID, role: BoardRole = BoardRole.MEMBER
) -> None:
    session.add(BoardMember(board_id=board.board_id, user_id=user_id, role=role))
    await session.commit()


async def add_task(
    session: AsyncSession,
    board: BoardFixture,
    *,
    title: str,
    list_name: str = "To Do",
    description: str | None = None,
    due_date: datetime | None = None,
    assignee_id: uuid.UUID | None = None,
    created_by_id: uuid.UUID | None = None,
) -> uuid.UUID:
    task = Task(
        list_id=board.list_ids[list_name],
        title=title,
        description=description,
        position=float(len(board.task_ids) + 1),
        due_date=due_date,
        assignee_id=assignee_id,
        created_by_id=created_by_id or board.owner_id,
    )
    session.add(task)
    await session.commit()
    board.task_ids[title] = task.id
    return task.id


async def add_label(session: AsyncSession, board: BoardFixture, name: str) -> uuid.UUID:
    label = Label(board_id=board.board_id, name=name, color="#ef4444")
    session.add(label)
    await session.commit()
    return label.id


async def add_rule(session: AsyncSession, board: BoardFixture, **fields: Any) -> uuid.UUID:
    """Insert a rule row directly, bypassing save-time validation."""
    values: dict[str, Any] = {
        "name": "Rule",
        "enabled": True,
        "trigger_type": "card_created",
        "trigger_config": {},
        "conditions": [],
        "actions": [],
        "priority": 0,
        "execution_count": 0,
        "created_by_id": board.owner_id,
    }
    values.update(fields)
    rule = AutomationRule(board_id=board.board_id, **values)
    session.add(rule)
    await session.commit()
    return rule.id


async def fetch(session: AsyncSession, model: type, object_id: uuid.UUID) -> Any:
    """Load a row fresh from the database, ignoring any expired identity-map state."""
    result = await session.execute(
        select(model).where(model.id == object_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def logs_for_rule(session: AsyncSession, rule_id: uuid.UUID) -> list[AutomationLog]:
    result = await session.execute(
        select(AutomationLog)
        .where(AutomationLog.rule_id == rule_id)
        .order_by(AutomationLog.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
