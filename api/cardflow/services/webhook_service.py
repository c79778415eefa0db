"""Inbound automation webhooks: management and the authenticated gateway.

Invariants:
- Raw secrets exist only in the create/rotate response; storage holds the
  Fernet token and a display prefix.
- Authentication failures are indistinguishable to the caller (401, no
  detail) and never produce an automation log or any mutation.
- call_count is incremented with a single SQL update per accepted call.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.core.config import settings
from cardflow.core.security import generate_webhook_endpoint, generate_webhook_secret, verify_signature
from cardflow.models.automation import AutomationLog, AutomationWebhook
from cardflow.schema.automation import (
    AutomationWebhookCreate,
    AutomationWebhookRead,
    AutomationWebhookSecretRead,
    AutomationWebhookUpdate,
    TriggerType,
    dump_actions,
)
from cardflow.services import (
    automation_actions,
    automation_context,
    automation_engine,
    automation_log_service,
    automation_service,
)
from cardflow.services.automation_context import TriggerEvent
from cardflow.services.board_service import coerce_uuid
from cardflow.services.secret_vault import mask_secret, secret_vault
from cardflow.utils.datetime import utcnow

logger = logging.getLogger("cardflow.services.webhook_service")


class WebhookAuthenticationError(HTTPException):
    """Signature or source check failed; carries no detail on purpose."""

    def __init__(self) -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def build_webhook_url(endpoint: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}{settings.api_prefix}/webhooks/automation/{endpoint}"


def to_read(webhook: AutomationWebhook) -> AutomationWebhookRead:
    return AutomationWebhookRead(
        id=webhook.id,
        board_id=webhook.board_id,
        name=webhook.name,
        description=webhook.description,
        endpoint=webhook.endpoint,
        webhook_url=build_webhook_url(webhook.endpoint),
        secret_prefix=webhook.secret_prefix,
        enabled=webhook.enabled,
        require_signature=webhook.require_signature,
        allowed_ips=webhook.allowed_ips,
        actions=list(webhook.actions or []),
        call_count=webhook.call_count,
        last_called_at=webhook.last_called_at,
        created_at=webhook.created_at,
    )


def to_secret_read(webhook: AutomationWebhook, secret: str) -> AutomationWebhookSecretRead:
    return AutomationWebhookSecretRead(**to_read(webhook).model_dump(), secret=secret)


async def list_webhooks(session: AsyncSession, *, board_id: uuid.UUID) -> list[AutomationWebhook]:
    result = await session.execute(
        select(AutomationWebhook)
        .where(AutomationWebhook.board_id == board_id)
        .order_by(AutomationWebhook.created_at.desc())
    )
    return list(result.scalars().all())


async def get_webhook(session: AsyncSession, *, board_id: uuid.UUID, webhook_id: uuid.UUID) -> AutomationWebhook:
    result = await session.execute(
        select(AutomationWebhook).where(AutomationWebhook.id == webhook_id, AutomationWebhook.board_id == board_id)
    )
    webhook = result.scalar_one_or_none()
    if not webhook:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return webhook


def _new_secret() -> tuple[str, str, str]:
    """Return (raw secret, encrypted token, display prefix)."""
    secret = generate_webhook_secret()
    return secret, secret_vault.encrypt(secret), mask_secret(secret)


async def create_webhook(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    payload: AutomationWebhookCreate,
) -> tuple[AutomationWebhook, str]:
    """Create a webhook and return it with its raw secret (shown once)."""
    automation_service.validate_rule_config(enabled=True, actions=payload.actions)
    secret, encrypted, prefix = _new_secret()
    webhook = AutomationWebhook(
        board_id=board_id,
        name=payload.name,
        description=payload.description,
        endpoint=generate_webhook_endpoint(),
        encrypted_secret=encrypted,
        secret_prefix=prefix,
        enabled=payload.enabled,
        require_signature=payload.require_signature,
        allowed_ips=payload.allowed_ips or None,
        actions=dump_actions(payload.actions),
        call_count=0,
        created_by_id=user_id,
    )
    session.add(webhook)
    await session.commit()
    await session.refresh(webhook)
    logger.info("Created automation webhook %s on board %s", webhook.id, board_id)
    return webhook, secret


async def update_webhook(
    session: AsyncSession, *, webhook: AutomationWebhook, payload: AutomationWebhookUpdate
) -> AutomationWebhook:
    fields = payload.model_fields_set
    if "name" in fields and payload.name is not None:
        webhook.name = payload.name
    if "description" in fields:
        webhook.description = payload.description
    if "actions" in fields and payload.actions is not None:
        automation_service.validate_rule_config(enabled=True, actions=payload.actions)
        webhook.actions = dump_actions(payload.actions)
    if "enabled" in fields and payload.enabled is not None:
        webhook.enabled = payload.enabled
    if "require_signature" in fields and payload.require_signature is not None:
        webhook.require_signature = payload.require_signature
    if "allowed_ips" in fields:
        webhook.allowed_ips = payload.allowed_ips or None
    await session.commit()
    await session.refresh(webhook)
    return webhook


async def rotate_secret(session: AsyncSession, *, webhook: AutomationWebhook) -> tuple[AutomationWebhook, str]:
    """Replace the signing secret; the previous one stops working immediately."""
    secret, encrypted, prefix = _new_secret()
    webhook.encrypted_secret = encrypted
    webhook.secret_prefix = prefix
    await session.commit()
    await session.refresh(webhook)
    logger.info("Rotated secret for automation webhook %s", webhook.id)
    return webhook, secret


async def delete_webhook(session: AsyncSession, *, webhook: AutomationWebhook) -> None:
    await session.execute(delete(AutomationLog).where(AutomationLog.webhook_id == webhook.id))
    await session.delete(webhook)
    await session.commit()


def _entry_matches(entry: str, candidate: str) -> bool:
    """Return True if an allowlist entry (IP or CIDR network) matches a candidate IP."""
    try:
        network = ipaddress.ip_network(entry, strict=False)
        return ipaddress.ip_address(candidate) in network
    except ValueError:
        return False


def ip_allowed(allowed_ips: list[str] | None, client_ip: str | None) -> bool:
    if not allowed_ips:
        return True
    if not client_ip:
        return False
    return any(_entry_matches(entry, client_ip) for entry in allowed_ips if entry)


def resolve_client_ip(peer_ip: str | None, forwarded_for: str | None) -> str | None:
    """Return the caller IP, honouring X-Forwarded-For only when configured to."""
    if settings.webhook_trust_forwarded_for and forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return peer_ip


async def _get_enabled_by_endpoint(session: AsyncSession, endpoint: str) -> AutomationWebhook:
    result = await session.execute(select(AutomationWebhook).where(AutomationWebhook.endpoint == endpoint))
    webhook = result.scalar_one_or_none()
    if not webhook or not webhook.enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return webhook


def authenticate(webhook: AutomationWebhook, *, body: bytes, signature: str | None, client_ip: str | None) -> None:
    """Check source IP and HMAC signature; raises a uniform 401 on failure."""
    if not ip_allowed(webhook.allowed_ips, client_ip):
        logger.warning("Security: webhook %s rejected call from disallowed address %s", webhook.id, client_ip)
        raise WebhookAuthenticationError()
    if not webhook.require_signature:
        return
    secret = secret_vault.decrypt(webhook.encrypted_secret)
    if not secret or not verify_signature(secret, body, signature):
        logger.warning(
            "Security: webhook %s rejected call with %s signature from %s",
            webhook.id,
            "invalid" if signature else "missing",
            client_ip or "unknown",
        )
        raise WebhookAuthenticationError()


def _parse_payload(body: bytes) -> dict[str, Any]:
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    return payload if isinstance(payload, dict) else {"data": payload}


async def challenge(session: AsyncSession, *, endpoint: str, token: str | None) -> dict[str, Any]:
    """Answer a verification probe for an existing, enabled webhook."""
    webhook = await _get_enabled_by_endpoint(session, endpoint)
    return {"ok": True, "webhook": webhook.name, "challenge": token}


async def handle_inbound(
    session: AsyncSession,
    *,
    endpoint: str,
    body: bytes,
    signature: str | None,
    client_ip: str | None,
) -> dict[str, Any]:
    """Authenticate an inbound call, run the webhook's actions, then fire webhook_received rules."""
    webhook = await _get_enabled_by_endpoint(session, endpoint)
    authenticate(webhook, body=body, signature=signature, client_ip=client_ip)
    payload = _parse_payload(body)

    webhook_id = webhook.id
    board_id = webhook.board_id
    actions = list(webhook.actions or [])
    webhook_info = {"id": str(webhook_id), "name": webhook.name}

    await session.execute(
        update(AutomationWebhook)
        .where(AutomationWebhook.id == webhook_id)
        .values(call_count=AutomationWebhook.call_count + 1, last_called_at=utcnow())
    )
    await session.commit()

    task_id = coerce_uuid(payload.get("task_id") or payload.get("taskId"))
    context = await automation_context.build_context(
        session, board_id, task_id=task_id, payload=payload, webhook=webhook_info
    )
    event = TriggerEvent(type=TriggerType.WEBHOOK_RECEIVED.value, board_id=board_id, context=context)
    handle = await automation_log_service.start(
        session,
        board_id=board_id,
        trigger_event=event.type,
        trigger_data=automation_context.snapshot(context),
        webhook_id=webhook_id,
        task_id=event.task_id,
    )
    await automation_log_service.mark_running(session, handle)
    outcomes = await automation_actions.execute_actions(session, actions, context, board_id=board_id)
    await automation_log_service.finish(session, handle, actions_executed=outcomes)
    logger.info(
        "Webhook %s processed from %s: %s (%d actions)",
        webhook_id,
        client_ip or "unknown",
        handle.status.value,
        len(outcomes),
    )

    rules = await automation_engine.dispatch_event(session, event)
    return {
        "received": True,
        "log_id": str(handle.id),
        "status": handle.status.value,
        "actions_executed": outcomes,
        "rules": rules,
    }
