"""Automation webhook management and the public inbound endpoint."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.api.deps import get_current_user, get_db
from cardflow.core.config import settings
from cardflow.models.user import User
from cardflow.schema.automation import (
    AutomationWebhookCreate,
    AutomationWebhookRead,
    AutomationWebhookSecretRead,
    AutomationWebhookUpdate,
)
from cardflow.services import board_service, webhook_service

router = APIRouter()
inbound_router = APIRouter()


@router.get("", response_model=list[AutomationWebhookRead])
async def list_automation_webhooks(
    board_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutomationWebhookRead]:
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id)
    webhooks = await webhook_service.list_webhooks(session, board_id=board_id)
    return [webhook_service.to_read(webhook) for webhook in webhooks]


@router.post("", response_model=AutomationWebhookSecretRead, status_code=status.HTTP_201_CREATED)
async def create_automation_webhook(
    board_id: uuid.UUID,
    payload: AutomationWebhookCreate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationWebhookSecretRead:
    """Create an inbound webhook; the response is the only place the secret appears."""
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    webhook, secret = await webhook_service.create_webhook(
        session, board_id=board_id, user_id=current_user.id, payload=payload
    )
    return webhook_service.to_secret_read(webhook, secret)


@router.patch("/{webhook_id}", response_model=AutomationWebhookRead)
async def update_automation_webhook(
    board_id: uuid.UUID,
    webhook_id: uuid.UUID,
    payload: AutomationWebhookUpdate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationWebhookRead:
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    webhook = await webhook_service.get_webhook(session, board_id=board_id, webhook_id=webhook_id)
    webhook = await webhook_service.update_webhook(session, webhook=webhook, payload=payload)
    return webhook_service.to_read(webhook)


@router.post("/{webhook_id}/rotate-secret", response_model=AutomationWebhookSecretRead)
async def rotate_automation_webhook_secret(
    board_id: uuid.UUID,
    webhook_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationWebhookSecretRead:
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    webhook = await webhook_service.get_webhook(session, board_id=board_id, webhook_id=webhook_id)
    webhook, secret = await webhook_service.rotate_secret(session, webhook=webhook)
    return webhook_service.to_secret_read(webhook, secret)


@router.delete(
    "/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_webhook(
    board_id: uuid.UUID,
    webhook_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    await board_service.require_board_access(session, board_id=board_id, user_id=current_user.id, manage=True)
    webhook = await webhook_service.get_webhook(session, board_id=board_id, webhook_id=webhook_id)
    await webhook_service.delete_webhook(session, webhook=webhook)


@inbound_router.post("/{endpoint}")
async def receive_automation_webhook(
    endpoint: str,
    request: Request,
    session: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Public entry point: authenticated by allow-list and HMAC signature only."""
    body = await request.body()
    client_ip = webhook_service.resolve_client_ip(
        request.client.host if request.client else None,
        request.headers.get("x-forwarded-for"),
    )
    return await webhook_service.handle_inbound(
        session,
        endpoint=endpoint,
        body=body,
        signature=request.headers.get(settings.webhook_signature_header),
        client_ip=client_ip,
    )


@inbound_router.get("/{endpoint}")
async def verify_automation_webhook(
    endpoint: str,
    challenge: str | None = Query(default=None),
    session: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await webhook_service.challenge(session, endpoint=endpoint, token=challenge)
