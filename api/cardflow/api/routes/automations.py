"""Board automation rule endpoints."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.api.deps import get_current_user, get_db
from cardflow.models.user import User
from cardflow.schema.automation import (
    AutomationEventCreate,
    AutomationFiringRead,
    AutomationLogRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleTestRequest,
    AutomationRuleUpdate,
    AutomationTemplateInstantiate,
)
from cardflow.services import (
    automation_engine,
    automation_log_service,
    automation_service,
    automation_templates,
    board_service,
)

router = APIRouter()


@router.get("", response_model=list[AutomationRuleRead])
async def list_automation_rules(
    board_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutomationRuleRead]:
    """List a board's automation rules in execution order."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id)
    rules = await automation_service.list_rules(session, board_id=board_id)
    return [AutomationRuleRead.model_validate(rule) for rule in rules]


@router.post("", response_model=AutomationRuleRead, status_code=status.HTTP_201_CREATED)
async def create_automation_rule(
    board_id: uuid.UUID,
    payload: AutomationRuleCreate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    """Create a new automation rule."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    rule = await automation_service.create_rule(session, board_id=board_id, user_id=current_user.id, payload=payload)
    return AutomationRuleRead.model_validate(rule)


@router.post("/events")
async def emit_automation_event(
    board_id: uuid.UUID,
    payload: AutomationEventCreate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Accept a board domain event and run (or enqueue) matching rules."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id)
    return await automation_engine.ingest_event(
        session, board_id=board_id, payload=payload, user_id=current_user.id
    )


@router.post(
    "/from-template/{template_id}",
    response_model=AutomationRuleRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule_from_template(
    board_id: uuid.UUID,
    template_id: str,
    payload: AutomationTemplateInstantiate | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    """Adopt a catalog template as a board rule."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    rule = await automation_templates.instantiate_template(
        session,
        board_id=board_id,
        user_id=current_user.id,
        template_id=template_id,
        payload=payload or AutomationTemplateInstantiate(),
    )
    return AutomationRuleRead.model_validate(rule)


@router.get("/{rule_id}", response_model=AutomationRuleRead)
async def get_automation_rule(
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id)
    rule = await automation_service.get_rule(session, board_id=board_id, rule_id=rule_id)
    return AutomationRuleRead.model_validate(rule)


@router.patch("/{rule_id}", response_model=AutomationRuleRead)
async def update_automation_rule(
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    payload: AutomationRuleUpdate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    """Update an automation rule."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    rule = await automation_service.get_rule(session, board_id=board_id, rule_id=rule_id)
    rule = await automation_service.update_rule(session, rule=rule, payload=payload)
    return AutomationRuleRead.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_rule(
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    """Delete an automation rule and its logs."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    rule = await automation_service.get_rule(session, board_id=board_id, rule_id=rule_id)
    await automation_service.delete_rule(session, rule=rule)


@router.post("/{rule_id}/toggle", response_model=AutomationRuleRead)
async def toggle_automation_rule(
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    """Flip a rule between enabled and disabled."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    rule = await automation_service.get_rule(session, board_id=board_id, rule_id=rule_id)
    rule = await automation_service.toggle_rule(session, rule=rule)
    return AutomationRuleRead.model_validate(rule)


@router.get("/{rule_id}/logs", response_model=list[AutomationLogRead])
async def list_automation_logs(
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutomationLogRead]:
    """List a rule's execution logs, newest first."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id)
    logs = await automation_log_service.list_logs(
        session, board_id=board_id, rule_id=rule_id, limit=limit, offset=offset
    )
    return [AutomationLogRead.model_validate(log) for log in logs]


@router.post("/{rule_id}/test", response_model=AutomationFiringRead)
async def run_automation_rule_test(
    board_id: uuid.UUID,
    rule_id: uuid.UUID,
    payload: AutomationRuleTestRequest | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationFiringRead:
    """Run a rule once against an optional task, regardless of its trigger."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    rule = await automation_service.get_rule(session, board_id=board_id, rule_id=rule_id)
    return await automation_engine.run_rule_test(
        session,
        rule=rule,
        task_id=payload.task_id if payload else None,
        user_id=current_user.id,
    )
