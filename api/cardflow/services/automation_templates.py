"""Static catalog of pre-built automation rules and their instantiation."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.models.automation import AutomationRule
from cardflow.schema.automation import (
    AutomationRuleCreate,
    AutomationTemplateInstantiate,
    AutomationTemplateRead,
    dump_conditions,
    dump_trigger_config,
    normalize_actions,
    parse_conditions,
    parse_trigger_config,
)
from cardflow.services import automation_service
from cardflow.services.automation_service import ConfigurationError

logger = logging.getLogger("cardflow.services.automation_templates")

CATALOG_VERSION = "2024.1"


@dataclass(frozen=True)
class AutomationTemplate:
    """Read-only rule blueprint; placeholders name the fields a board must fill in."""
    id: str
    name: str
    description: str
    category: str
    icon: str
    trigger_type: str
    trigger_config: dict[str, Any] = field(default_factory=dict)
    conditions: list[dict[str, Any]] = field(default_factory=list)
    actions: list[dict[str, Any]] = field(default_factory=list)
    usage_count: int = 0
    placeholders: tuple[str, ...] = ()

    def to_read(self) -> AutomationTemplateRead:
        return AutomationTemplateRead(
            id=self.id,
            name=self.name,
            description=self.description,
            category=self.category,
            icon=self.icon,
            trigger_type=self.trigger_type,
            trigger_config=dict(self.trigger_config),
            conditions=[dict(item) for item in self.conditions],
            actions=[dict(item) for item in self.actions],
            usage_count=self.usage_count,
            placeholders=list(self.placeholders),
        )


_SLACK_PAYLOAD = json.dumps(
    {
        "text": "New card created: {{task.title}}",
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": "*New card:* {{task.title}}"}}],
    }
)

_RAW_TEMPLATES: tuple[dict[str, Any], ...] = (
    {
        "id": "tmpl_due_date_urgent",
        "name": "Move to Urgent when the due date approaches",
        "description": "When a card is due in less than 2 days, move it to the 'Urgent' list and label it.",
        "category": "productivity",
        "icon": "alarm-clock",
        "trigger_type": "due_date_approaching",
        "trigger_config": {"days_before_due": 2},
        "actions": [
            {"type": "move_card"},
            {"type": "add_label", "label_name": "Urgent", "create_if_missing": True},
        ],
        "usage_count": 1250,
        "placeholders": ("actions.0.target_list_id",),
    },
    {
        "id": "tmpl_checklist_done",
        "name": "Add a Review label when a checklist is completed",
        "description": "When every item of a checklist is checked, add the 'Review' label to the card.",
        "category": "productivity",
        "icon": "check-circle",
        "trigger_type": "checklist_completed",
        "actions": [{"type": "add_label", "label_name": "Review", "create_if_missing": True}],
        "usage_count": 890,
    },
    {
        "id": "tmpl_assign_creator",
        "name": "Assign to creator",
        "description": "When a new card is created, assign it to the person who created it.",
        "category": "organization",
        "icon": "user",
        "trigger_type": "card_created",
        "actions": [{"type": "assign_member", "assign_creator": True}],
        "usage_count": 2100,
    },
    {
        "id": "tmpl_mention_notify",
        "name": "Notify on @mention",
        "description": "When someone is mentioned in a comment, send them a notification.",
        "category": "notifications",
        "icon": "at-sign",
        "trigger_type": "comment_mention",
        "actions": [
            {
                "type": "send_notification",
                "notify_type": "assignee",
                "notification_title": "You were mentioned",
                "notification_message": "Someone mentioned you in a comment on {{task.title}}",
            }
        ],
        "usage_count": 1560,
    },
    {
        "id": "tmpl_archive_done",
        "name": "Archive finished cards",
        "description": "When a card is moved to the 'Done' list, archive it.",
        "category": "organization",
        "icon": "archive",
        "trigger_type": "card_moved",
        "actions": [{"type": "archive_card"}],
        "usage_count": 780,
        "placeholders": ("trigger_config.to_list_id",),
    },
    {
        "id": "tmpl_overdue_notify",
        "name": "Notify when overdue",
        "description": "When the due date has passed, notify the assignee and flag the card as late.",
        "category": "notifications",
        "icon": "alert-triangle",
        "trigger_type": "due_date_passed",
        "actions": [
            {
                "type": "send_notification",
                "notify_type": "assignee",
                "notification_title": "Card overdue",
                "notification_message": "The card {{task.title}} is past its due date",
            },
            {"type": "add_label", "label_name": "Late", "create_if_missing": True},
        ],
        "usage_count": 1100,
    },
    {
        "id": "tmpl_webhook_slack",
        "name": "Send to Slack",
        "description": "When a card is created, post a message to Slack through an incoming webhook.",
        "category": "integrations",
        "icon": "link",
        "trigger_type": "card_created",
        "actions": [{"type": "send_webhook", "webhook_method": "POST", "webhook_payload": _SLACK_PAYLOAD}],
        "usage_count": 650,
        "placeholders": ("actions.0.webhook_url",),
    },
    {
        "id": "tmpl_set_deadline",
        "name": "Automatic due date",
        "description": "When a card is created, set its due date to 7 days later at 17:00.",
        "category": "productivity",
        "icon": "calendar",
        "trigger_type": "card_created",
        "actions": [{"type": "set_due_date", "due_date_offset": 7, "due_date_hour": 17}],
        "usage_count": 920,
    },
    {
        "id": "tmpl_review_checklist",
        "name": "Create a review checklist",
        "description": "When the 'Review' label is added, create a verification checklist on the card.",
        "category": "organization",
        "icon": "list-checks",
        "trigger_type": "label_added",
        "trigger_config": {"label_name": "Review"},
        "actions": [
            {
                "type": "create_checklist",
                "checklist_name": "Review Checklist",
                "checklist_items": [
                    "Review the code",
                    "Test the features",
                    "Check the documentation",
                    "Sign off with the team",
                ],
            }
        ],
        "usage_count": 540,
    },
    {
        "id": "tmpl_copy_on_done",
        "name": "Copy to archive",
        "description": "When a card is marked as done, create a copy of it in the Archive list.",
        "category": "organization",
        "icon": "copy",
        "trigger_type": "card_moved",
        "actions": [{"type": "copy_card", "copy_title": "{{task.title}} [Archived]"}],
        "usage_count": 380,
        "placeholders": ("trigger_config.to_list_id", "actions.0.copy_to_list_id"),
    },
)


def _build(raw: dict[str, Any]) -> AutomationTemplate:
    return AutomationTemplate(
        id=raw["id"],
        name=raw["name"],
        description=raw["description"],
        category=raw["category"],
        icon=raw["icon"],
        trigger_type=raw["trigger_type"],
        trigger_config=dump_trigger_config(parse_trigger_config(raw.get("trigger_config"))),
        conditions=dump_conditions(parse_conditions(raw.get("conditions"))),
        actions=normalize_actions(raw["actions"]),
        usage_count=raw.get("usage_count", 0),
        placeholders=tuple(raw.get("placeholders", ())),
    )


TEMPLATES: dict[str, AutomationTemplate] = {raw["id"]: _build(raw) for raw in _RAW_TEMPLATES}


def list_templates(category: str | None = None) -> list[AutomationTemplate]:
    """Return catalog entries, most used first."""
    templates = [t for t in TEMPLATES.values() if not category or t.category == category]
    return sorted(templates, key=lambda t: (-t.usage_count, t.name))


def get_template(template_id: str) -> AutomationTemplate:
    template = TEMPLATES.get(template_id)
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return template


def unfilled_placeholders(
    template: AutomationTemplate, trigger_config: dict[str, Any], actions: list[dict[str, Any]]
) -> list[str]:
    """Return template placeholders still empty in the given configs."""
    remaining: list[str] = []
    for placeholder in template.placeholders:
        root, _, rest = placeholder.partition(".")
        if root == "trigger_config":
            value = trigger_config.get(rest)
        else:
            index, _, key = rest.partition(".")
            value = actions[int(index)].get(key) if int(index) < len(actions) else None
        if value in (None, "", []):
            remaining.append(placeholder)
    return remaining


def _merged_actions(template: AutomationTemplate, overrides: dict[int, dict[str, Any]]) -> list[dict[str, Any]]:
    actions = [dict(action) for action in template.actions]
    for index, override in overrides.items():
        if index < 0 or index >= len(actions):
            raise ConfigurationError(f"Template {template.id} has no action {index}")
        actions[index] = {**actions[index], **override, "type": actions[index]["type"]}
    return normalize_actions(actions)


async def instantiate_template(
    session: AsyncSession,
    *,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    template_id: str,
    payload: AutomationTemplateInstantiate,
) -> AutomationRule:
    """Copy a template into a new board rule; unfilled placeholders keep it disabled."""
    template = get_template(template_id)
    try:
        trigger_config = dump_trigger_config(
            parse_trigger_config({**template.trigger_config, **payload.trigger_config})
        )
        actions = _merged_actions(template, payload.action_overrides)
        remaining = unfilled_placeholders(template, trigger_config, actions)
        enabled = payload.enabled if payload.enabled is not None else not remaining
        create = AutomationRuleCreate(
            name=payload.name or template.name,
            description=template.description,
            enabled=enabled,
            trigger_type=template.trigger_type,
            trigger_config=trigger_config,
            conditions=template.conditions,
            actions=actions,
            priority=payload.priority,
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid template overrides: {exc.error_count()} validation errors") from exc
    if enabled and remaining:
        raise ConfigurationError(f"Fill in {', '.join(remaining)} before enabling this rule")
    rule = await automation_service.create_rule(
        session, board_id=board_id, user_id=user_id, payload=create, template_id=template.id
    )
    logger.info("Instantiated template %s as rule %s (enabled=%s)", template.id, rule.id, rule.enabled)
    return rule
