"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import auth, automations, templates, webhooks

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(templates.router, prefix="/automations/templates", tags=["automation-templates"])
api_router.include_router(automations.router, prefix="/boards/{board_id}/automations", tags=["automations"])
api_router.include_router(
    webhooks.router, prefix="/boards/{board_id}/automation-webhooks", tags=["automation-webhooks"]
)
api_router.include_router(webhooks.inbound_router, prefix="/webhooks/automation", tags=["webhooks"])
