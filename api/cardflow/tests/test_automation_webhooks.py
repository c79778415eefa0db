"""Inbound automation webhook management and gateway tests."""

from __future__ import annotations

import json
import uuid

import pytest
from sqlalchemy import func, select

from cardflow.core.security import compute_signature
from cardflow.models.automation import AutomationLog, AutomationWebhook
from cardflow.models.board import Comment
from cardflow.services.secret_vault import secret_vault
from cardflow.tests.utils import add_rule, add_task, fetch, register_and_login, seed_board


async def _setup(client, session, **webhook_fields):
    auth = await register_and_login(client, prefix="hooks")
    board = await seed_board(session, owner_id=uuid.UUID(auth.user_id))
    task_id = await add_task(session, board, title="Deploy")
    payload = {
        "name": "CI hook",
        "actions": [{"type": "add_comment", "comment_content": "Build {{payload.build.status}} from {{payload.source}}"}],
    }
    payload.update(webhook_fields)
    res = await client.post(f"/api/boards/{board.board_id}/automation-webhooks", json=payload)
    assert res.status_code == 201
    return board, task_id, res.json()


def _flip_bit(data: bytes) -> bytes:
    return bytes([data[0] ^ 0x01]) + data[1:]


def _flip_hex(signature: str) -> str:
    return signature[:-1] + ("0" if signature[-1] != "0" else "1")


async def _log_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(AutomationLog))).scalar_one()


@pytest.mark.asyncio
async def test_create_returns_secret_once_and_stores_it_encrypted(client, session):
    board, _, created = await _setup(client, session)

    secret = created["secret"]
    assert secret.startswith("whks_")
    assert created["secret_prefix"] == secret[:12]
    assert created["webhook_url"].endswith(f"/api/webhooks/automation/{created['endpoint']}")

    stored = await fetch(session, AutomationWebhook, uuid.UUID(created["id"]))
    assert secret not in stored.encrypted_secret
    assert secret_vault.decrypt(stored.encrypted_secret) == secret

    listing = await client.get(f"/api/boards/{board.board_id}/automation-webhooks")
    assert listing.status_code == 200
    assert "secret" not in listing.json()[0]
    assert secret not in listing.text


@pytest.mark.asyncio
async def test_signed_call_runs_actions_and_counts(client, session):
    board, task_id, created = await _setup(client, session)
    body = json.dumps({"task_id": str(task_id), "source": "ci", "build": {"status": "passed"}}).encode()
    signature = compute_signature(created["secret"], body)

    res = await client.post(
        f"/api/webhooks/automation/{created['endpoint']}",
        content=body,
        headers={"X-Signature": signature, "Content-Type": "application/json"},
    )

    assert res.status_code == 200
    payload = res.json()
    assert payload["received"] is True
    assert payload["status"] == "success"
    assert payload["actions_executed"][0]["status"] == "success"
    comment = (await session.execute(select(Comment).where(Comment.task_id == task_id))).scalar_one()
    assert comment.content == "Build passed from ci"

    log = await fetch(session, AutomationLog, uuid.UUID(payload["log_id"]))
    assert log.webhook_id == uuid.UUID(created["id"])
    assert log.trigger_event == "webhook_received"
    assert log.trigger_data["payload"]["source"] == "ci"

    webhook = await fetch(session, AutomationWebhook, uuid.UUID(created["id"]))
    assert webhook.call_count == 1
    assert webhook.last_called_at is not None

    prefixed = await client.post(
        f"/api/webhooks/automation/{created['endpoint']}",
        content=body,
        headers={"X-Signature": f"sha256={signature}"},
    )
    assert prefixed.status_code == 200


@pytest.mark.asyncio
async def test_any_bit_flip_is_rejected_without_side_effects(client, session):
    _, task_id, created = await _setup(client, session)
    body = json.dumps({"task_id": str(task_id), "source": "ci"}).encode()
    signature = compute_signature(created["secret"], body)
    url = f"/api/webhooks/automation/{created['endpoint']}"

    attempts = [
        (_flip_bit(body), signature),
        (body, _flip_hex(signature)),
        (body, None),
        (body, "not-hex-at-all"),
    ]
    for attempt_body, attempt_signature in attempts:
        headers = {"X-Signature": attempt_signature} if attempt_signature else {}
        res = await client.post(url, content=attempt_body, headers=headers)
        assert res.status_code == 401
        assert res.json() == {"detail": "Unauthorized"}

    assert await _log_count(session) == 0
    webhook = await fetch(session, AutomationWebhook, uuid.UUID(created["id"]))
    assert webhook.call_count == 0
    assert (await session.execute(select(Comment))).scalars().all() == []


@pytest.mark.asyncio
async def test_ip_allow_list_is_enforced_before_signature(client, session):
    board, task_id, created = await _setup(client, session, allowed_ips=["198.51.100.0/24"])
    body = json.dumps({"task_id": str(task_id)}).encode()
    headers = {"X-Signature": compute_signature(created["secret"], body)}
    url = f"/api/webhooks/automation/{created['endpoint']}"

    denied = await client.post(url, content=body, headers=headers)
    assert denied.status_code == 401
    assert await _log_count(session) == 0

    update = await client.patch(
        f"/api/boards/{board.board_id}/automation-webhooks/{created['id']}",
        json={"allowed_ips": ["203.0.113.10"]},
    )
    assert update.status_code == 200

    allowed = await client.post(url, content=body, headers=headers)
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_rotate_secret_invalidates_previous_secret(client, session):
    board, task_id, created = await _setup(client, session)
    body = json.dumps({"task_id": str(task_id)}).encode()
    url = f"/api/webhooks/automation/{created['endpoint']}"

    rotated = await client.post(f"/api/boards/{board.board_id}/automation-webhooks/{created['id']}/rotate-secret")
    assert rotated.status_code == 200
    new_secret = rotated.json()["secret"]
    assert new_secret != created["secret"]

    old = await client.post(url, content=body, headers={"X-Signature": compute_signature(created["secret"], body)})
    assert old.status_code == 401
    new = await client.post(url, content=body, headers={"X-Signature": compute_signature(new_secret, body)})
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_unsigned_webhook_and_invalid_json(client, session):
    _, task_id, created = await _setup(client, session, require_signature=False)
    url = f"/api/webhooks/automation/{created['endpoint']}"

    ok = await client.post(url, json={"task_id": str(task_id), "source": "cron"})
    assert ok.status_code == 200

    bad = await client.post(url, content=b"{not json", headers={"Content-Type": "application/json"})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_disabled_or_unknown_endpoint_is_not_found(client, session):
    board, _, created = await _setup(client, session)
    await client.patch(
        f"/api/boards/{board.board_id}/automation-webhooks/{created['id']}", json={"enabled": False}
    )

    res = await client.post(f"/api/webhooks/automation/{created['endpoint']}", content=b"{}")
    assert res.status_code == 404
    missing = await client.get("/api/webhooks/automation/whk_missing")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_challenge_echoes_token(client, session):
    _, _, created = await _setup(client, session)
    res = await client.get(f"/api/webhooks/automation/{created['endpoint']}", params={"challenge": "abc123"})
    assert res.status_code == 200
    assert res.json() == {"ok": True, "webhook": "CI hook", "challenge": "abc123"}


@pytest.mark.asyncio
async def test_webhook_received_rules_fire_after_webhook_actions(client, session):
    board, task_id, created = await _setup(client, session, require_signature=False)
    rule_id = await add_rule(
        session,
        board,
        trigger_type="webhook_received",
        trigger_config={"webhookId": created["id"]},
        actions=[{"type": "add_label", "label_name": "From CI", "create_if_missing": True}],
    )

    res = await client.post(
        f"/api/webhooks/automation/{created['endpoint']}", json={"task_id": str(task_id), "source": "ci"}
    )

    assert res.status_code == 200
    rules = res.json()["rules"]
    assert rules["rules_executed"] == 1
    assert rules["results"][0]["rule_id"] == str(rule_id)


@pytest.mark.asyncio
async def test_delete_webhook_removes_it_and_its_logs(client, session):
    board, task_id, created = await _setup(client, session, require_signature=False)
    await client.post(f"/api/webhooks/automation/{created['endpoint']}", json={"task_id": str(task_id)})
    assert await _log_count(session) == 1

    res = await client.delete(f"/api/boards/{board.board_id}/automation-webhooks/{created['id']}")
    assert res.status_code == 204
    assert await _log_count(session) == 0
    assert await fetch(session, AutomationWebhook, uuid.UUID(created["id"])) is None


@pytest.mark.asyncio
async def test_incomplete_webhook_actions_are_rejected_at_save(client, session):
    board, _, created = await _setup(client, session)
    base = f"/api/boards/{board.board_id}/automation-webhooks"

    res = await client.post(base, json={"name": "Mover", "actions": [{"type": "move_card"}]})
    assert res.status_code == 400
    assert "target_list_id" in res.json()["detail"]

    update = await client.patch(f"{base}/{created['id']}", json={"actions": [{"type": "send_webhook"}]})
    assert update.status_code == 400
    webhook = await fetch(session, AutomationWebhook, uuid.UUID(created["id"]))
    assert webhook.actions[0]["type"] == "add_comment"
    assert len((await client.get(base)).json()) == 1
