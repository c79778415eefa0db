"""Read-only automation template catalog."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from cardflow.api.deps import get_current_user
from cardflow.models.user import User
from cardflow.schema.automation import AutomationTemplateRead
from cardflow.services import automation_templates

router = APIRouter()

CATALOG_VERSION_HEADER = "X-Template-Catalog-Version"


@router.get("", response_model=list[AutomationTemplateRead])
async def list_templates(
    response: Response,
    category: str | None = Query(default=None),
    _: User = Depends(get_current_user),
) -> list[AutomationTemplateRead]:
    """Browse templates, most used first."""
    response.headers[CATALOG_VERSION_HEADER] = automation_templates.CATALOG_VERSION
    return [template.to_read() for template in automation_templates.list_templates(category)]


@router.get("/{template_id}", response_model=AutomationTemplateRead)
async def get_template(template_id: str, _: User = Depends(get_current_user)) -> AutomationTemplateRead:
    return automation_templates.get_template(template_id).to_read()
