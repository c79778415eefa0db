"""End-to-end rule firing through the engine against a real session."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from cardflow.models.automation import AutomationLogStatus, AutomationRule
from cardflow.models.board import Checklist, ChecklistItem, Task
from cardflow.schema.automation import AutomationEventCreate
from cardflow.services import automation_engine, automation_service
from cardflow.services.automation_engine import emit_due_date_events, trigger_automation
from cardflow.tests.utils import add_rule, add_task, fetch, logs_for_rule, seed_board

URGENT_RULE = {
    "name": "Flag urgent cards",
    "trigger_type": "card_created",
    "conditions": [{"field": "task.title", "operator": "contains", "value": "URGENT"}],
    "actions": [{"type": "add_label", "label_name": "Urgent", "create_if_missing": True}],
}


@pytest.mark.asyncio
async def test_urgent_rule_labels_matching_card_and_skips_others(session):
    board = await seed_board(session)
    rule_id = await add_rule(session, board, **URGENT_RULE)
    urgent_id = await add_task(session, board, title="URGENT: fix prod")
    routine_id = await add_task(session, board, title="routine cleanup")

    fired = await trigger_automation(
        session, board_id=board.board_id, trigger_type="card_created", task_id=urgent_id, user_id=board.owner_id
    )
    assert fired.rules_matched == 1 and fired.rules_executed == 1
    assert fired.results[0].status == "success"
    assert fired.results[0].actions_executed[0]["result"]["label_name"] == "Urgent"
    assert fired.results[0].actions_executed[0]["result"]["created"] is True

    skipped = await trigger_automation(
        session, board_id=board.board_id, trigger_type="card_created", task_id=routine_id, user_id=board.owner_id
    )
    assert skipped.rules_executed == 0
    assert skipped.results[0].status == "skipped"

    logs = await logs_for_rule(session, rule_id)
    assert [log.status for log in logs] == [AutomationLogStatus.SUCCESS, AutomationLogStatus.SKIPPED]
    assert logs[1].actions_executed == []
    assert logs[1].error == automation_engine.SKIP_CONDITIONS
    assert logs[0].trigger_data["task"]["title"] == "URGENT: fix prod"
    assert logs[0].duration_ms is not None and logs[0].completed_at is not None

    rule = await fetch(session, AutomationRule, rule_id)
    assert rule.execution_count == 1


@pytest.mark.asyncio
async def test_failing_action_keeps_sibling_and_counts_once(session):
    board = await seed_board(session)
    other = await seed_board(session)
    rule_id = await add_rule(
        session,
        board,
        actions=[
            {"type": "move_card", "target_list_id": str(other.list_ids["Done"])},
            {"type": "add_comment", "comment_content": "Automated follow-up"},
        ],
    )
    task_id = await add_task(session, board, title="Card")

    result = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)

    firing = result.results[0]
    assert firing.status == "failed"
    assert [entry["status"] for entry in firing.actions_executed] == ["failed", "success"]
    assert firing.error == "move_card: target_list_not_found"
    log = (await logs_for_rule(session, rule_id))[0]
    assert log.status == AutomationLogStatus.FAILED
    assert len(log.actions_executed) == 2
    assert (await fetch(session, AutomationRule, rule_id)).execution_count == 1


@pytest.mark.asyncio
async def test_rule_failure_does_not_affect_other_rules(session, monkeypatch):
    board = await seed_board(session)
    broken_id = await add_rule(session, board, name="broken", priority=5, actions=[{"type": "archive_card"}])
    healthy_id = await add_rule(
        session, board, name="healthy", priority=1, actions=[{"type": "add_comment", "comment_content": "ok"}]
    )
    task_id = await add_task(session, board, title="Card")

    real_evaluate = automation_engine.automation_conditions.evaluate_conditions
    calls = {"count": 0}

    def flaky_evaluate(conditions, context):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("boom")
        return real_evaluate(conditions, context)

    monkeypatch.setattr(automation_engine.automation_conditions, "evaluate_conditions", flaky_evaluate)

    result = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)

    assert [firing.rule_id for firing in result.results] == [broken_id, healthy_id]
    assert result.results[0].status == "failed"
    assert result.results[0].error == "engine_error: RuntimeError"
    assert result.results[1].status == "success"
    assert (await logs_for_rule(session, broken_id))[0].status == AutomationLogStatus.FAILED


@pytest.mark.asyncio
async def test_later_rules_observe_state_left_by_earlier_rules(session):
    board = await seed_board(session)
    await add_rule(
        session,
        board,
        name="move first",
        priority=10,
        actions=[{"type": "move_card", "target_list_id": str(board.list_ids["Doing"])}],
    )
    second_id = await add_rule(
        session,
        board,
        name="only in doing",
        priority=1,
        conditions=[{"field": "list.name", "operator": "equals", "value": "Doing"}],
        actions=[{"type": "add_comment", "comment_content": "Now in {{list.name}}"}],
    )
    task_id = await add_task(session, board, title="Card")

    result = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)

    assert [firing.status for firing in result.results] == ["success", "success"]
    assert result.results[1].rule_id == second_id
    assert (await fetch(session, Task, task_id)).list_id == board.list_ids["Doing"]


@pytest.mark.asyncio
async def test_max_executions_excludes_rule_once_reached(session):
    board = await seed_board(session)
    rule_id = await add_rule(
        session, board, max_executions=1, actions=[{"type": "add_comment", "comment_content": "once"}]
    )
    task_id = await add_task(session, board, title="Card")

    first = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)
    second = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)

    assert first.rules_executed == 1
    assert second.rules_matched == 0 and second.results == []
    assert len(await logs_for_rule(session, rule_id)) == 1
    assert (await fetch(session, AutomationRule, rule_id)).execution_count == 1


@pytest.mark.asyncio
async def test_disabled_rule_never_fires(session):
    board = await seed_board(session)
    rule_id = await add_rule(session, board, enabled=False, actions=[{"type": "archive_card"}])
    task_id = await add_task(session, board, title="Card")

    result = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)

    assert result.rules_matched == 0
    assert await logs_for_rule(session, rule_id) == []


@pytest.mark.asyncio
async def test_due_date_scan_fires_within_window_once_per_task(session):
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    board = await seed_board(session)
    rule_id = await add_rule(
        session,
        board,
        trigger_type="due_date_approaching",
        trigger_config={"daysBeforeDue": 2},
        actions=[{"type": "move_card", "target_list_id": str(board.list_ids["Doing"])}],
    )
    overdue_rule = await add_rule(
        session,
        board,
        trigger_type="due_date_passed",
        actions=[{"type": "add_label", "label_name": "Late", "create_if_missing": True}],
    )
    soon_id = await add_task(session, board, title="Soon", due_date=now + timedelta(days=1, hours=20))
    later_id = await add_task(session, board, title="Later", due_date=now + timedelta(days=3))
    late_id = await add_task(session, board, title="Late", due_date=now - timedelta(hours=2))

    summary = await emit_due_date_events(session, now=now)
    assert summary == {"approaching": 2, "passed": 1, "fired": 2}
    assert (await fetch(session, Task, soon_id)).list_id == board.list_ids["Doing"]
    assert (await fetch(session, Task, later_id)).list_id == board.list_ids["To Do"]

    again = await emit_due_date_events(session, now=now + timedelta(minutes=15))
    assert again["fired"] == 0
    approaching_logs = await logs_for_rule(session, rule_id)
    assert [log.task_id for log in approaching_logs] == [soon_id]
    assert [log.task_id for log in await logs_for_rule(session, overdue_rule)] == [late_id]


@pytest.mark.asyncio
async def test_run_rule_test_ignores_disabled_flag_and_counter(session):
    board = await seed_board(session)
    rule_id = await add_rule(
        session, board, enabled=False, actions=[{"type": "add_comment", "comment_content": "test run"}]
    )
    task_id = await add_task(session, board, title="Card")
    rule = await fetch(session, AutomationRule, rule_id)

    firing = await automation_engine.run_rule_test(session, rule=rule, task_id=task_id, user_id=board.owner_id)

    assert firing.status == "success"
    log = (await logs_for_rule(session, rule_id))[0]
    assert log.trigger_data["metadata"]["test_run"] is True
    assert (await fetch(session, AutomationRule, rule_id)).execution_count == 0


@pytest.mark.asyncio
async def test_ingest_checklist_item_checked_dispatches_completion(session):
    board = await seed_board(session)
    task_id = await add_task(session, board, title="Card")
    checklist = Checklist(task_id=task_id, name="QA")
    session.add(checklist)
    await session.flush()
    checklist_id = checklist.id
    session.add_all(
        [
            ChecklistItem(checklist_id=checklist_id, content="one", checked=True, position=0),
            ChecklistItem(checklist_id=checklist_id, content="two", checked=True, position=1),
        ]
    )
    await session.commit()
    rule_id = await add_rule(
        session,
        board,
        trigger_type="checklist_completed",
        trigger_config={"checklistName": "QA"},
        actions=[{"type": "add_label", "label_name": "Review", "create_if_missing": True}],
    )

    payload = AutomationEventCreate(type="checklist_item_checked", task_id=task_id, checklist_id=checklist_id)
    result = await automation_engine.ingest_event(
        session, board_id=board.board_id, payload=payload, user_id=board.owner_id
    )

    assert result["rules_matched"] == 0
    assert result["follow_up"]["rules_executed"] == 1
    assert (await logs_for_rule(session, rule_id))[0].status == AutomationLogStatus.SUCCESS


@pytest.mark.asyncio
async def test_toggle_only_affects_future_matching(session):
    board = await seed_board(session)
    rule_id = await add_rule(session, board, actions=[{"type": "add_comment", "comment_content": "hi"}])
    task_id = await add_task(session, board, title="Card")

    await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)
    rule = await fetch(session, AutomationRule, rule_id)
    await automation_service.set_enabled(session, rule=rule, enabled=False)
    result = await trigger_automation(session, board_id=board.board_id, trigger_type="card_created", task_id=task_id)

    assert result.rules_matched == 0
    count = (
        await session.execute(select(AutomationRule.execution_count).where(AutomationRule.id == rule_id))
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_rescheduled_task_fires_due_date_rule_again(session):
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    board = await seed_board(session)
    rule_id = await add_rule(
        session,
        board,
        trigger_type="due_date_passed",
        actions=[{"type": "add_comment", "comment_content": "Overdue since {{task.dueDate}}"}],
    )
    task_id = await add_task(session, board, title="Late", due_date=now - timedelta(hours=2))

    first = await emit_due_date_events(session, now=now)
    assert first["fired"] == 1

    task = await fetch(session, Task, task_id)
    task.due_date = now + timedelta(days=2)
    await session.commit()

    later = now + timedelta(days=3)
    second = await emit_due_date_events(session, now=later)
    assert second == {"approaching": 0, "passed": 1, "fired": 1}
    third = await emit_due_date_events(session, now=later + timedelta(minutes=15))
    assert third["fired"] == 0
    assert len(await logs_for_rule(session, rule_id)) == 2


@pytest.mark.asyncio
async def test_long_overdue_task_fires_newly_created_passed_rule(session):
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    board = await seed_board(session)
    task_id = await add_task(session, board, title="Ancient", due_date=now - timedelta(days=45))
    rule_id = await add_rule(
        session,
        board,
        trigger_type="due_date_passed",
        actions=[{"type": "add_label", "label_name": "Late", "create_if_missing": True}],
    )

    summary = await emit_due_date_events(session, now=now)

    assert summary["passed"] == 1
    assert summary["fired"] == 1
    assert [log.task_id for log in await logs_for_rule(session, rule_id)] == [task_id]
