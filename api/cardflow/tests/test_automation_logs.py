from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException

from cardflow.models.automation import AutomationLog, AutomationLogStatus
from cardflow.services import automation_log_service
from cardflow.tests.utils import add_rule, fetch, seed_board
from cardflow.utils.datetime import utcnow


async def _start(session, board, rule_id):
    return await automation_log_service.start(
        session,
        board_id=board.board_id,
        trigger_event="card_created",
        trigger_data={"task": None},
        rule_id=rule_id,
    )


@pytest.mark.asyncio
async def test_log_lifecycle_pending_running_success(session):
    board = await seed_board(session)
    rule_id = await add_rule(session, board)
    handle = await _start(session, board, rule_id)
    assert (await fetch(session, AutomationLog, handle.id)).status == AutomationLogStatus.PENDING

    assert await automation_log_service.mark_running(session, handle)
    running = await fetch(session, AutomationLog, handle.id)
    assert running.status == AutomationLogStatus.RUNNING
    assert running.started_at is not None

    entries = [{"action": "archive_card", "status": "success", "result": {"archived": True}}]
    assert await automation_log_service.finish(session, handle, actions_executed=entries)
    done = await fetch(session, AutomationLog, handle.id)
    assert done.status == AutomationLogStatus.SUCCESS
    assert done.actions_executed == entries
    assert done.error is None
    assert done.duration_ms >= 0
    assert handle.terminal


@pytest.mark.asyncio
async def test_finish_marks_failed_with_first_error(session):
    board = await seed_board(session)
    handle = await _start(session, board, await add_rule(session, board))
    await automation_log_service.mark_running(session, handle)

    entries = [
        {"action": "add_comment", "status": "success", "result": {}},
        {"action": "move_card", "status": "failed", "error": "target_list_not_found"},
        {"action": "send_webhook", "status": "failed", "error": "webhook_http_500"},
    ]
    await automation_log_service.finish(session, handle, actions_executed=entries)

    log = await fetch(session, AutomationLog, handle.id)
    assert log.status == AutomationLogStatus.FAILED
    assert log.error == "move_card: target_list_not_found"


@pytest.mark.asyncio
async def test_terminal_logs_are_never_updated_again(session):
    board = await seed_board(session)
    handle = await _start(session, board, await add_rule(session, board))
    assert await automation_log_service.skip(session, handle, reason="conditions_not_met")

    assert not await automation_log_service.mark_running(session, handle)
    assert not await automation_log_service.finish(session, handle, actions_executed=[])
    log = await fetch(session, AutomationLog, handle.id)
    assert log.status == AutomationLogStatus.SKIPPED
    assert log.duration_ms == 0
    assert log.error == "conditions_not_met"


@pytest.mark.asyncio
async def test_list_logs_newest_first_and_scoped_to_board(session):
    board = await seed_board(session)
    other = await seed_board(session)
    rule_id = await add_rule(session, board)
    first = await _start(session, board, rule_id)
    second = await _start(session, board, rule_id)
    (await fetch(session, AutomationLog, first.id)).created_at = utcnow() - timedelta(minutes=5)
    await session.commit()

    logs = await automation_log_service.list_logs(session, board_id=board.board_id, rule_id=rule_id)
    assert [log.id for log in logs] == [second.id, first.id]

    paged = await automation_log_service.list_logs(session, board_id=board.board_id, rule_id=rule_id, limit=1, offset=1)
    assert [log.id for log in paged] == [first.id]

    with pytest.raises(HTTPException) as excinfo:
        await automation_log_service.list_logs(session, board_id=other.board_id, rule_id=rule_id)
    assert excinfo.value.status_code == 404

    with pytest.raises(HTTPException):
        await automation_log_service.list_logs(session, board_id=board.board_id, rule_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_prune_logs_removes_old_terminal_rows_only(session):
    board = await seed_board(session)
    rule_id = await add_rule(session, board)
    old_done = await _start(session, board, rule_id)
    await automation_log_service.skip(session, old_done)
    old_open = await _start(session, board, rule_id)
    fresh_done = await _start(session, board, rule_id)
    await automation_log_service.skip(session, fresh_done)
    for handle in (old_done, old_open):
        (await fetch(session, AutomationLog, handle.id)).created_at = utcnow() - timedelta(days=60)
    await session.commit()

    removed = await automation_log_service.prune_logs(session, retention_days=30)

    assert removed == 1
    assert await fetch(session, AutomationLog, old_done.id) is None
    assert await fetch(session, AutomationLog, old_open.id) is not None
    assert await fetch(session, AutomationLog, fresh_done.id) is not None
