from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from cardflow.services import automation_triggers
from cardflow.services.automation_context import TriggerEvent
from cardflow.services.automation_triggers import RuleCache, RuleSnapshot, match_rules, trigger_matches
from cardflow.tests.utils import add_rule, seed_board

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _rule(trigger_type: str, **overrides) -> RuleSnapshot:
    values = {
        "id": uuid.uuid4(),
        "board_id": uuid.uuid4(),
        "name": "rule",
        "enabled": True,
        "trigger_type": trigger_type,
        "trigger_config": {},
        "conditions": [],
        "actions": [],
        "priority": 0,
        "max_executions": None,
        "execution_count": 0,
        "created_by_id": None,
        "created_at": NOW,
    }
    values.update(overrides)
    return RuleSnapshot(**values)


def _event(trigger_type: str, board_id: uuid.UUID | None = None, **context) -> TriggerEvent:
    return TriggerEvent(type=trigger_type, board_id=board_id or uuid.uuid4(), context=context, occurred_at=NOW)


def test_card_moved_to_list_filter():
    target = str(uuid.uuid4())
    other = str(uuid.uuid4())
    rule = _rule("card_moved", trigger_config={"toListId": target})

    assert trigger_matches(rule, _event("card_moved", list={"id": target}))
    assert trigger_matches(rule, _event("card_moved", list={"id": target.upper()}))
    assert not trigger_matches(rule, _event("card_moved", list={"id": other}))

    wildcard = _rule("card_moved")
    assert trigger_matches(wildcard, _event("card_moved", list={"id": other}))


def test_card_moved_from_list_filter_uses_previous_list():
    source = str(uuid.uuid4())
    rule = _rule("card_moved", trigger_config={"from_list_id": source})
    assert trigger_matches(rule, _event("card_moved", previous_list_id=source, list={"id": "x"}))
    assert not trigger_matches(rule, _event("card_moved", previous_list_id="y", list={"id": "x"}))


def test_trigger_type_must_match():
    rule = _rule("card_created")
    assert not trigger_matches(rule, _event("card_moved"))


def test_label_filter_by_id_or_name():
    label_id = str(uuid.uuid4())
    by_id = _rule("label_added", trigger_config={"label_id": label_id})
    by_name = _rule("label_added", trigger_config={"label_name": "Review"})

    assert trigger_matches(by_id, _event("label_added", label={"id": label_id, "name": "Other"}))
    assert not trigger_matches(by_id, _event("label_added", label={"id": str(uuid.uuid4()), "name": "Review"}))
    assert trigger_matches(by_name, _event("label_added", label={"id": "x", "name": "Review"}))
    assert not trigger_matches(by_name, _event("label_added", label={"id": "x", "name": "review"}))


def test_due_date_approaching_window():
    rule = _rule("due_date_approaching", trigger_config={"daysBeforeDue": 2})
    soon = (NOW + timedelta(days=1, hours=20)).isoformat()
    later = (NOW + timedelta(days=3)).isoformat()
    past = (NOW - timedelta(hours=1)).isoformat()

    assert trigger_matches(rule, _event("due_date_approaching", task={"id": "t", "due_date": soon}))
    assert not trigger_matches(rule, _event("due_date_approaching", task={"id": "t", "due_date": later}))
    assert not trigger_matches(rule, _event("due_date_approaching", task={"id": "t", "due_date": past}))
    assert not trigger_matches(rule, _event("due_date_approaching", task={"id": "t", "due_date": None}))


def test_due_date_window_combines_days_and_hours():
    rule = _rule("due_date_approaching", trigger_config={"days_before_due": 1, "hours_before_due": 6})
    inside = (NOW + timedelta(hours=29)).isoformat()
    outside = (NOW + timedelta(hours=31)).isoformat()
    assert trigger_matches(rule, _event("due_date_approaching", task={"due_date": inside}))
    assert not trigger_matches(rule, _event("due_date_approaching", task={"due_date": outside}))


def test_due_date_passed_requires_past_due_date():
    rule = _rule("due_date_passed")
    assert trigger_matches(rule, _event("due_date_passed", task={"due_date": (NOW - timedelta(minutes=1)).isoformat()}))
    assert not trigger_matches(rule, _event("due_date_passed", task={"due_date": (NOW + timedelta(days=1)).isoformat()}))


def test_checklist_and_webhook_filters():
    checklist_rule = _rule("checklist_completed", trigger_config={"checklist_name": "QA"})
    assert trigger_matches(checklist_rule, _event("checklist_completed", checklist={"id": "c", "name": "QA"}))
    assert not trigger_matches(checklist_rule, _event("checklist_completed", checklist={"id": "c", "name": "Docs"}))

    webhook_id = str(uuid.uuid4())
    webhook_rule = _rule("webhook_received", trigger_config={"webhookId": webhook_id})
    assert trigger_matches(webhook_rule, _event("webhook_received", webhook={"id": webhook_id}))
    assert not trigger_matches(webhook_rule, _event("webhook_received", webhook={"id": str(uuid.uuid4())}))


def test_rule_cache_expires_and_invalidates():
    now = [100.0]
    cache = RuleCache(ttl_seconds=30, clock=lambda: now[0])
    board_id = uuid.uuid4()
    rules = (_rule("card_created", board_id=board_id),)

    cache.put(board_id, rules)
    assert cache.get(board_id) == rules
    now[0] += 31
    assert cache.get(board_id) is None

    cache.put(board_id, rules)
    cache.invalidate(board_id)
    assert cache.get(board_id) is None
    assert cache.size == 0


@pytest.mark.asyncio
async def test_match_rules_filters_board_enabled_and_type_then_orders(session):
    board = await seed_board(session)
    other_board = await seed_board(session)
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)

    low = await add_rule(session, board, name="low", priority=1, created_at=base)
    high = await add_rule(session, board, name="high", priority=10, created_at=base + timedelta(minutes=5))
    high_older = await add_rule(session, board, name="high older", priority=10, created_at=base)
    await add_rule(session, board, name="disabled", priority=50, enabled=False)
    await add_rule(session, board, name="other type", priority=50, trigger_type="card_moved")
    await add_rule(session, other_board, name="other board", priority=50)
    await add_rule(session, board, name="capped", priority=50, max_executions=2, execution_count=2)

    event = _event("card_created", board_id=board.board_id)
    matched = await match_rules(session, event)

    assert [rule.id for rule in matched] == [high_older, high, low]
    assert all(rule.board_id == board.board_id and rule.enabled for rule in matched)


@pytest.mark.asyncio
async def test_match_rules_uses_cache_until_invalidated(session):
    board = await seed_board(session)
    await add_rule(session, board, name="first")
    event = _event("card_created", board_id=board.board_id)

    assert len(await match_rules(session, event)) == 1
    await add_rule(session, board, name="second")
    assert len(await match_rules(session, event)) == 1

    automation_triggers.invalidate_board(board.board_id)
    assert len(await match_rules(session, event)) == 2
