"""Security regression tests for webhook secrets and signatures."""

from __future__ import annotations

import json
import logging
import uuid

import pytest

from cardflow.core import security
from cardflow.core.security import compute_signature, generate_webhook_secret, verify_signature
from cardflow.tests.utils import add_task, register_and_login, seed_board


def test_generated_secrets_are_unique_and_prefixed():
    secrets_seen = {generate_webhook_secret() for _ in range(20)}
    assert len(secrets_seen) == 20
    assert all(secret.startswith("whks_") and len(secret) == 69 for secret in secrets_seen)


def test_verify_signature_uses_constant_time_compare(monkeypatch):
    calls: list[tuple[bytes, bytes]] = []
    real_compare = security.hmac.compare_digest

    def _spy(left, right):
        calls.append((left, right))
        return real_compare(left, right)

    monkeypatch.setattr(security.hmac, "compare_digest", _spy)
    body = b'{"ok": true}'
    signature = compute_signature("whks_test", body)

    assert verify_signature("whks_test", body, signature)
    assert not verify_signature("whks_test", body, signature.upper())
    assert not verify_signature("whks_test", body, "")
    assert not verify_signature("whks_test", body, "sha256=" + "0" * 64)
    assert len(calls) == 3


def test_verify_signature_tolerates_non_ascii_header():
    assert verify_signature("whks_test", b"{}", "sígnature") is False


@pytest.mark.asyncio
async def test_webhook_secret_never_reaches_logs(client, session, caplog):
    caplog.set_level(logging.DEBUG, logger="cardflow")
    auth = await register_and_login(client, prefix="leak")
    board = await seed_board(session, owner_id=uuid.UUID(auth.user_id))
    task_id = await add_task(session, board, title="Deploy")
    base = f"/api/boards/{board.board_id}/automation-webhooks"

    created = await client.post(
        base, json={"name": "CI", "actions": [{"type": "add_comment", "comment_content": "{{payload.source}}"}]}
    )
    assert created.status_code == 201
    secret = created.json()["secret"]
    body = json.dumps({"task_id": str(task_id), "source": "ci"}).encode()

    await client.post(
        f"/api/webhooks/automation/{created.json()['endpoint']}",
        content=body,
        headers={"X-Signature": compute_signature(secret, body)},
    )
    await client.post(
        f"/api/webhooks/automation/{created.json()['endpoint']}",
        content=body,
        headers={"X-Signature": "deadbeef"},
    )
    rotated = await client.post(f"{base}/{created.json()['id']}/rotate-secret")

    assert secret not in caplog.text
    assert rotated.json()["secret"] not in caplog.text
    fetched = await client.get(base)
    assert secret not in fetched.text
    assert rotated.json()["secret"] not in fetched.text


@pytest.mark.asyncio
async def test_webhook_management_requires_board_admin(client, session):
    owner = await register_and_login(client, prefix="owner")
    stranger = await register_and_login(client, prefix="stranger")
    board = await seed_board(session, owner_id=uuid.UUID(owner.user_id))

    res = await client.post(
        f"/api/boards/{board.board_id}/automation-webhooks",
        json={"name": "CI", "actions": [{"type": "add_comment", "comment_content": "hi"}]},
        headers=stranger.headers,
    )
    assert res.status_code == 404
