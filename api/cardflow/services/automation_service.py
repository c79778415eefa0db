"""Automation rule storage helpers.

Invariants:
- Stored action/condition/trigger configs are the canonical dumps of their
  validated schemas.
- An enabled rule always has a non-empty action list with every required
  field set; drafts may keep template placeholders.
- Every write invalidates the board's cached rule set.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.models.automation import AutomationLog, AutomationRule
from cardflow.schema.automation import (
    ActionConfig,
    AutomationRuleCreate,
    AutomationRuleUpdate,
    TriggerConfig,
    dump_actions,
    dump_conditions,
    dump_trigger_config,
    parse_actions,
)
from cardflow.services import automation_triggers

logger = logging.getLogger("cardflow.services.automation_service")


class ConfigurationError(HTTPException):
    """Rule configuration rejected at save time."""

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def validate_rule_config(*, enabled: bool, actions: list[ActionConfig]) -> None:
    """Reject enabled rules with no actions or with unfilled required fields."""
    if not enabled:
        return
    if not actions:
        raise ConfigurationError("An enabled rule needs at least one action")
    for index, action in enumerate(actions):
        missing = action.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Action {index + 1} ({action.type}) is missing required fields: {', '.join(missing)}"
            )


async def list_rules(session: AsyncSession, *, board_id: uuid.UUID) -> list[AutomationRule]:
    """List a board's rules in execution order."""
    result = await session.execute(
        select(AutomationRule)
        .where(AutomationRule.board_id == board_id)
        .order_by(AutomationRule.priority.desc(), AutomationRule.created_at, AutomationRule.id)
    )
    return list(result.scalars().all())


async def get_rule(session: AsyncSession, *, board_id: uuid.UUID, rule_id: uuid.UUID) -> AutomationRule:
    """Fetch a single automation rule by ID."""
    result = await session.execute(
        select(AutomationRule).where(AutomationRule.id == rule_id, AutomationRule.board_id == board_id)
    )
    rule = result.scalar_one_or_none()
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return rule


async def create_rule(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    user_id: uuid.UUID | None,
    payload: AutomationRuleCreate,
    template_id: str | None = None,
) -> AutomationRule:
    """Create a new automation rule."""
    validate_rule_config(enabled=payload.enabled, actions=payload.actions)
    rule = AutomationRule(
        board_id=board_id,
        name=payload.name,
        description=payload.description,
        enabled=payload.enabled,
        trigger_type=payload.trigger_type.value,
        trigger_config=dump_trigger_config(payload.trigger_config),
        conditions=dump_conditions(payload.conditions),
        actions=dump_actions(payload.actions),
        priority=payload.priority,
        max_executions=payload.max_executions,
        execution_count=0,
        is_template=template_id is not None,
        template_id=template_id,
        created_by_id=user_id,
    )
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    automation_triggers.invalidate_board(board_id)
    logger.info("Created automation rule %s (%s) on board %s", rule.id, rule.trigger_type, board_id)
    return rule


async def update_rule(
    session: AsyncSession, *, rule: AutomationRule, payload: AutomationRuleUpdate
) -> AutomationRule:
    """Update an automation rule; the resulting state must still be valid."""
    fields = payload.model_fields_set
    enabled = payload.enabled if "enabled" in fields and payload.enabled is not None else rule.enabled
    actions: list[ActionConfig] = (
        payload.actions if "actions" in fields and payload.actions is not None else parse_actions(rule.actions)
    )
    validate_rule_config(enabled=enabled, actions=actions)

    if "name" in fields and payload.name is not None:
        rule.name = payload.name
    if "description" in fields:
        rule.description = payload.description
    rule.enabled = enabled
    if "trigger_type" in fields and payload.trigger_type is not None:
        rule.trigger_type = payload.trigger_type.value
    if "trigger_config" in fields:
        rule.trigger_config = dump_trigger_config(payload.trigger_config or TriggerConfig())
    if "conditions" in fields:
        rule.conditions = dump_conditions(payload.conditions or [])
    if "actions" in fields and payload.actions is not None:
        rule.actions = dump_actions(payload.actions)
    if "priority" in fields and payload.priority is not None:
        rule.priority = payload.priority
    if "max_executions" in fields:
        rule.max_executions = payload.max_executions
    await session.commit()
    await session.refresh(rule)
    automation_triggers.invalidate_board(rule.board_id)
    return rule


async def set_enabled(session: AsyncSession, *, rule: AutomationRule, enabled: bool) -> AutomationRule:
    """Enable or disable a rule; counters and priority are untouched."""
    if enabled:
        validate_rule_config(enabled=True, actions=parse_actions(rule.actions))
    rule.enabled = enabled
    await session.commit()
    await session.refresh(rule)
    automation_triggers.invalidate_board(rule.board_id)
    logger.info("Automation rule %s %s", rule.id, "enabled" if enabled else "disabled")
    return rule


async def toggle_rule(session: AsyncSession, *, rule: AutomationRule) -> AutomationRule:
    """Flip a rule's enabled flag."""
    return await set_enabled(session, rule=rule, enabled=not rule.enabled)


async def delete_rule(session: AsyncSession, *, rule: AutomationRule) -> None:
    """Delete an automation rule together with its logs."""
    board_id = rule.board_id
    await session.execute(delete(AutomationLog).where(AutomationLog.rule_id == rule.id))
    await session.delete(rule)
    await session.commit()
    automation_triggers.invalidate_board(board_id)

