"""Trigger matching: candidate rules for a domain event.

Invariants:
- Only enabled rules of the event's board and trigger type are returned.
- Rules at their execution cap are excluded from matching.
- Order is priority desc, then created_at asc, then id for a total order.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.core.config import settings
from cardflow.models.automation import AutomationRule
from cardflow.schema.automation import TriggerConfig, TriggerType, parse_trigger_config
from cardflow.services.automation_context import TriggerEvent
from cardflow.utils.datetime import ensure_aware, parse_datetime

logger = logging.getLogger("cardflow.services.automation_triggers")


@dataclass(frozen=True, slots=True)
class RuleSnapshot:
    """Immutable view of a rule, safe to share across sessions and rollbacks."""
    id: uuid.UUID
    board_id: uuid.UUID
    name: str
    enabled: bool
    trigger_type: str
    trigger_config: dict[str, Any]
    conditions: list[dict[str, Any]]
    actions: list[dict[str, Any]]
    priority: int
    max_executions: int | None
    execution_count: int
    created_by_id: uuid.UUID | None
    created_at: datetime

    @classmethod
    def from_model(cls, rule: AutomationRule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            board_id=rule.board_id,
            name=rule.name,
            enabled=rule.enabled,
            trigger_type=rule.trigger_type,
            trigger_config=dict(rule.trigger_config or {}),
            conditions=list(rule.conditions or []),
            actions=list(rule.actions or []),
            priority=rule.priority or 0,
            max_executions=rule.max_executions,
            execution_count=rule.execution_count or 0,
            created_by_id=rule.created_by_id,
            created_at=ensure_aware(rule.created_at),
        )

    @property
    def capped(self) -> bool:
        return self.max_executions is not None and self.execution_count >= self.max_executions

    @property
    def sort_key(self) -> tuple[int, datetime, str]:
        return (-self.priority, self.created_at, str(self.id))


class RuleCache:
    """Per-board cache of enabled rule snapshots with TTL and explicit invalidation."""

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = settings.rule_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: dict[uuid.UUID, tuple[float, tuple[RuleSnapshot, ...]]] = {}

    def get(self, board_id: uuid.UUID) -> tuple[RuleSnapshot, ...] | None:
        entry = self._entries.get(board_id)
        if not entry:
            return None
        expires_at, rules = entry
        if self._clock() >= expires_at:
            self._entries.pop(board_id, None)
            return None
        return rules

    def put(self, board_id: uuid.UUID, rules: tuple[RuleSnapshot, ...]) -> None:
        if self._ttl <= 0:
            return
        self._entries[board_id] = (self._clock() + self._ttl, rules)

    def invalidate(self, board_id: uuid.UUID) -> None:
        if self._entries.pop(board_id, None) is not None:
            logger.debug("Rule cache invalidated for board %s", board_id)

    @property
    def size(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


rule_cache = RuleCache()


def invalidate_board(board_id: uuid.UUID) -> None:
    rule_cache.invalidate(board_id)


async def load_enabled_rules(session: AsyncSession, board_id: uuid.UUID) -> tuple[RuleSnapshot, ...]:
    """Return enabled rule snapshots for a board, from cache when fresh."""
    cached = rule_cache.get(board_id)
    if cached is not None:
        return cached
    result = await session.execute(
        select(AutomationRule).where(AutomationRule.board_id == board_id, AutomationRule.enabled.is_(True))
    )
    rules = tuple(RuleSnapshot.from_model(rule) for rule in result.scalars().all())
    rule_cache.put(board_id, rules)
    return rules


def _same_id(expected: str | None, actual: Any) -> bool:
    if not expected:
        return True
    return actual is not None and str(actual).lower() == expected.lower()


def _due_window(config: TriggerConfig) -> timedelta | None:
    if config.days_before_due is None and config.hours_before_due is None:
        return None
    hours = (config.days_before_due or 0) * 24 + (config.hours_before_due or 0)
    return timedelta(hours=hours)


def _task_due_date(context: dict[str, Any]) -> datetime | None:
    return parse_datetime((context.get("task") or {}).get("due_date"))


def _match_card_moved(config: TriggerConfig, event: TriggerEvent) -> bool:
    context = event.context
    destination = (context.get("list") or {}).get("id") or (context.get("task") or {}).get("list_id")
    return _same_id(config.from_list_id, context.get("previous_list_id")) and _same_id(
        config.to_list_id, destination
    )


def _match_label(config: TriggerConfig, event: TriggerEvent) -> bool:
    label = event.context.get("label") or {}
    if config.label_id:
        return _same_id(config.label_id, label.get("id"))
    if config.label_name:
        return label.get("name") == config.label_name
    return True


def _match_member(config: TriggerConfig, event: TriggerEvent) -> bool:
    return _same_id(config.member_id, (event.context.get("member") or {}).get("id"))


def _match_due_date_approaching(config: TriggerConfig, event: TriggerEvent) -> bool:
    due_date = _task_due_date(event.context)
    if not due_date:
        return False
    now = event.occurred_at
    if due_date < now:
        return False
    window = _due_window(config)
    return window is None or due_date <= now + window


def _match_due_date_passed(config: TriggerConfig, event: TriggerEvent) -> bool:
    due_date = _task_due_date(event.context)
    return due_date is not None and due_date < event.occurred_at


def _match_checklist(config: TriggerConfig, event: TriggerEvent) -> bool:
    if not config.checklist_name:
        return True
    return (event.context.get("checklist") or {}).get("name") == config.checklist_name


def _match_webhook(config: TriggerConfig, event: TriggerEvent) -> bool:
    return _same_id(config.webhook_id, (event.context.get("webhook") or {}).get("id"))


def _match_scheduled(config: TriggerConfig, event: TriggerEvent) -> bool:
    if not config.cron_expression:
        return True
    return (event.context.get("cron_expression") or "").strip() == config.cron_expression.strip()


TRIGGER_FILTERS: dict[str, Callable[[TriggerConfig, TriggerEvent], bool]] = {
    TriggerType.CARD_MOVED.value: _match_card_moved,
    TriggerType.LABEL_ADDED.value: _match_label,
    TriggerType.LABEL_REMOVED.value: _match_label,
    TriggerType.MEMBER_ASSIGNED.value: _match_member,
    TriggerType.MEMBER_UNASSIGNED.value: _match_member,
    TriggerType.DUE_DATE_APPROACHING.value: _match_due_date_approaching,
    TriggerType.DUE_DATE_PASSED.value: _match_due_date_passed,
    TriggerType.CHECKLIST_COMPLETED.value: _match_checklist,
    TriggerType.CHECKLIST_ITEM_CHECKED.value: _match_checklist,
    TriggerType.WEBHOOK_RECEIVED.value: _match_webhook,
    TriggerType.SCHEDULED.value: _match_scheduled,
}


def trigger_matches(rule: RuleSnapshot, event: TriggerEvent) -> bool:
    """Apply the trigger-config filters relevant to the event type."""
    if rule.trigger_type != event.type:
        return False
    matcher = TRIGGER_FILTERS.get(event.type)
    if not matcher:
        return True
    try:
        config = parse_trigger_config(rule.trigger_config)
    except ValueError:
        logger.warning("Rule %s has an unreadable trigger config; skipping", rule.id)
        return False
    return matcher(config, event)


def order_rules(rules: list[RuleSnapshot]) -> list[RuleSnapshot]:
    return sorted(rules, key=lambda rule: rule.sort_key)


async def match_rules(session: AsyncSession, event: TriggerEvent) -> list[RuleSnapshot]:
    """Return candidate rules for an event in execution order."""
    rules = await load_enabled_rules(session, event.board_id)
    candidates = [rule for rule in rules if not rule.capped and trigger_matches(rule, event)]
    ordered = order_rules(candidates)
    logger.debug(
        "Event %s on board %s matched %d of %d enabled rules", event.type, event.board_id, len(ordered), len(rules)
    )
    return ordered
