"""Automation rule, condition, action, log, and webhook schemas.

Invariants:
- Action configs are a tagged union keyed by ``type``; unknown types fail validation.
- Trigger config keys that a trigger does not use are kept but never matched on.
- Blank strings in configs are treated as unset so template placeholders stay open.
"""

from __future__ import annotations

import enum
import ipaddress
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from cardflow.models.automation import AutomationLogStatus
from cardflow.schema.base import ORMModel


class TriggerType(str, enum.Enum):
    """Domain or external events that make a rule eligible to fire."""
    CARD_CREATED = "card_created"
    CARD_MOVED = "card_moved"
    CARD_UPDATED = "card_updated"
    DUE_DATE_APPROACHING = "due_date_approaching"
    DUE_DATE_PASSED = "due_date_passed"
    CHECKLIST_COMPLETED = "checklist_completed"
    CHECKLIST_ITEM_CHECKED = "checklist_item_checked"
    COMMENT_ADDED = "comment_added"
    COMMENT_MENTION = "comment_mention"
    LABEL_ADDED = "label_added"
    LABEL_REMOVED = "label_removed"
    MEMBER_ASSIGNED = "member_assigned"
    MEMBER_UNASSIGNED = "member_unassigned"
    ATTACHMENT_ADDED = "attachment_added"
    WEBHOOK_RECEIVED = "webhook_received"
    SCHEDULED = "scheduled"


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


# Condition field -> path into the event context.
CONDITION_FIELDS: dict[str, tuple[str, ...]] = {
    "task.title": ("task", "title"),
    "task.description": ("task", "description"),
    "task.assigneeId": ("task", "assignee_id"),
    "task.dueDate": ("task", "due_date"),
    "task.taskLabels": ("task", "label_names"),
    "task.archived": ("task", "archived"),
    "list.name": ("list", "name"),
}
DATE_CONDITION_FIELDS = frozenset({"task.dueDate"})


class CamelModel(BaseModel):
    """Config model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_values(cls, data: Any) -> Any:
        # Blank keys fall back to field defaults; the union discriminator is left untouched.
        if not isinstance(data, dict):
            return data
        return {
            key: value
            for key, value in data.items()
            if key == "type" or not (isinstance(value, str) and not value.strip())
        }


class TriggerConfig(CamelModel):
    """Trigger filters; every field is an optional wildcard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    from_list_id: str | None = None
    to_list_id: str | None = None
    days_before_due: float | None = Field(default=None, ge=0)
    hours_before_due: float | None = Field(default=None, ge=0)
    label_id: str | None = None
    label_name: str | None = None
    member_id: str | None = None
    checklist_name: str | None = None
    webhook_id: str | None = None
    cron_expression: str | None = None


class Condition(CamelModel):
    """Boolean predicate over an allow-listed context field."""
    field: str
    operator: ConditionOperator
    value: Any = None

    @field_validator("field")
    @classmethod
    def _allowed_field(cls, value: str) -> str:
        if value not in CONDITION_FIELDS:
            allowed = ", ".join(sorted(CONDITION_FIELDS))
            raise ValueError(f"Unsupported condition field '{value}' (allowed: {allowed})")
        return value


class ActionBase(CamelModel):
    """Common behaviour for action configs."""

    required_fields: ClassVar[tuple[str, ...]] = ()

    def missing_fields(self) -> list[str]:
        """Return required fields that are still unset (e.g. template placeholders)."""
        return [name for name in self.required_fields if getattr(self, name) in (None, "", [])]


class MoveCardAction(ActionBase):
    type: Literal["move_card"]
    target_list_id: str | None = None

    required_fields: ClassVar[tuple[str, ...]] = ("target_list_id",)


class AssignMemberAction(ActionBase):
    type: Literal["assign_member"]
    user_id: str | None = None
    assign_creator: bool = False
    assign_random: bool = False

    def missing_fields(self) -> list[str]:
        if self.user_id or self.assign_creator or self.assign_random:
            return []
        return ["user_id|assign_creator|assign_random"]


class UnassignMemberAction(ActionBase):
    type: Literal["unassign_member"]
    user_id: str | None = None


class AddLabelAction(ActionBase):
    type: Literal["add_label"]
    label_id: str | None = None
    label_name: str | None = None
    create_if_missing: bool = False

    def missing_fields(self) -> list[str]:
        return [] if self.label_id or self.label_name else ["label_id|label_name"]


class RemoveLabelAction(ActionBase):
    type: Literal["remove_label"]
    label_id: str | None = None
    label_name: str | None = None

    def missing_fields(self) -> list[str]:
        return [] if self.label_id or self.label_name else ["label_id|label_name"]


class AddCommentAction(ActionBase):
    type: Literal["add_comment"]
    comment_content: str | None = None

    required_fields: ClassVar[tuple[str, ...]] = ("comment_content",)


class SendNotificationAction(ActionBase):
    type: Literal["send_notification"]
    notify_type: Literal["user", "assignee", "creator", "board_members", "specific"] = "assignee"
    notify_user_ids: list[str] = Field(default_factory=list)
    notification_title: str | None = None
    notification_message: str | None = None

    def missing_fields(self) -> list[str]:
        if self.notify_type in {"user", "specific"} and not self.notify_user_ids:
            return ["notify_user_ids"]
        return []


class SendWebhookAction(ActionBase):
    type: Literal["send_webhook"]
    webhook_url: str | None = None
    webhook_method: Literal["GET", "POST", "PUT"] = "POST"
    webhook_headers: dict[str, str] = Field(default_factory=dict)
    webhook_payload: str | None = None

    required_fields: ClassVar[tuple[str, ...]] = ("webhook_url",)

    @field_validator("webhook_method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "POST"
        return value.strip().upper() if isinstance(value, str) else value


class SetDueDateAction(ActionBase):
    type: Literal["set_due_date"]
    due_date_offset: int = 0
    due_date_hour: int | None = Field(default=None, ge=0, le=23)


class ArchiveCardAction(ActionBase):
    type: Literal["archive_card"]


class CopyCardAction(ActionBase):
    type: Literal["copy_card"]
    copy_to_list_id: str | None = None
    copy_title: str | None = None


class CreateChecklistAction(ActionBase):
    type: Literal["create_checklist"]
    checklist_name: str | None = None
    checklist_items: list[str] | str | None = Field(default_factory=list)

    required_fields: ClassVar[tuple[str, ...]] = ("checklist_name",)

    def item_lines(self) -> list[str]:
        """Return checklist items one per line, skipping blanks."""
        raw = self.checklist_items or []
        lines = raw.splitlines() if isinstance(raw, str) else list(raw)
        return [line.strip() for line in lines if line and line.strip()]


class MarkChecklistCompleteAction(ActionBase):
    type: Literal["mark_checklist_complete"]
    checklist_name: str | None = None


ActionConfig = Annotated[
    Union[
        MoveCardAction,
        AssignMemberAction,
        UnassignMemberAction,
        AddLabelAction,
        RemoveLabelAction,
        AddCommentAction,
        SendNotificationAction,
        SendWebhookAction,
        SetDueDateAction,
        ArchiveCardAction,
        CopyCardAction,
        CreateChecklistAction,
        MarkChecklistCompleteAction,
    ],
    Field(discriminator="type"),
]

action_list_adapter: TypeAdapter[list[ActionConfig]] = TypeAdapter(list[ActionConfig])
condition_list_adapter: TypeAdapter[list[Condition]] = TypeAdapter(list[Condition])


def parse_actions(raw: list[dict[str, Any]] | None) -> list[ActionConfig]:
    """Validate stored or incoming action dicts into typed configs."""
    return action_list_adapter.validate_python(raw or [])


def dump_actions(actions: list[ActionConfig]) -> list[dict[str, Any]]:
    """Serialize typed actions into their canonical stored form."""
    return [action.model_dump(mode="json", exclude_none=True, exclude_defaults=True) for action in actions]


def normalize_actions(raw: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return dump_actions(parse_actions(raw))


def parse_conditions(raw: list[dict[str, Any]] | None) -> list[Condition]:
    return condition_list_adapter.validate_python(raw or [])


def dump_conditions(conditions: list[Condition]) -> list[dict[str, Any]]:
    return [condition.model_dump(mode="json") for condition in conditions]


def parse_trigger_config(raw: dict[str, Any] | None) -> TriggerConfig:
    return TriggerConfig.model_validate(raw or {})


def dump_trigger_config(config: TriggerConfig) -> dict[str, Any]:
    return config.model_dump(mode="json", exclude_none=True)


def _validate_ip_entries(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    cleaned: list[str] = []
    for entry in value:
        entry = entry.strip()
        if not entry:
            continue
        try:
            ipaddress.ip_network(entry, strict=False)
        except ValueError as exc:
            raise ValueError(f"Invalid IP or network '{entry}'") from exc
        cleaned.append(entry)
    return cleaned


class AutomationRuleCreate(BaseModel):
    """Payload for creating an automation rule."""
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    enabled: bool = True
    trigger_type: TriggerType
    trigger_config: TriggerConfig = Field(default_factory=TriggerConfig)
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[ActionConfig] = Field(default_factory=list)
    priority: int = 0
    max_executions: int | None = Field(default=None, ge=1)


class AutomationRuleUpdate(BaseModel):
    """Payload for updating an automation rule."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    enabled: bool | None = None
    trigger_type: TriggerType | None = None
    trigger_config: TriggerConfig | None = None
    conditions: list[Condition] | None = None
    actions: list[ActionConfig] | None = None
    priority: int | None = None
    max_executions: int | None = Field(default=None, ge=1)


class AutomationRuleRead(ORMModel):
    """Automation rule representation."""
    id: UUID
    board_id: UUID
    name: str
    description: str | None = None
    enabled: bool
    trigger_type: str
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    actions: list[dict[str, Any]] = Field(default_factory=list)
    priority: int
    max_executions: int | None = None
    execution_count: int
    is_template: bool
    template_id: str | None = None
    created_by_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class AutomationLogRead(ORMModel):
    """Execution log entry for a rule or webhook firing."""
    id: UUID
    rule_id: UUID | None = None
    webhook_id: UUID | None = None
    board_id: UUID
    task_id: UUID | None = None
    trigger_event: str
    trigger_data: dict[str, Any] | None = None
    status: AutomationLogStatus
    actions_executed: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    created_at: datetime


class AutomationEventCreate(BaseModel):
    """Domain event emitted by the board application."""
    type: TriggerType
    task_id: UUID | None = None
    list_id: UUID | None = None
    previous_list_id: UUID | None = None
    label_id: UUID | None = None
    member_id: UUID | None = None
    checklist_id: UUID | None = None
    comment_id: UUID | None = None
    cron_expression: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AutomationRuleTestRequest(BaseModel):
    """Optional task to run a rule against from the management UI."""
    task_id: UUID | None = None


class AutomationFiringRead(BaseModel):
    """Outcome of one rule firing within an event."""
    rule_id: UUID | None = None
    rule_name: str | None = None
    log_id: UUID | None = None
    status: str
    actions_executed: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    duration_ms: int | None = None


class AutomationEventResult(BaseModel):
    """Summary returned after an event has been processed."""
    trigger_type: str
    rules_matched: int
    rules_executed: int
    results: list[AutomationFiringRead] = Field(default_factory=list)


class AutomationWebhookCreate(BaseModel):
    """Payload for creating an inbound webhook."""
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    actions: list[ActionConfig] = Field(min_length=1)
    enabled: bool = True
    require_signature: bool = True
    allowed_ips: list[str] | None = None

    @field_validator("allowed_ips")
    @classmethod
    def _check_ips(cls, value: list[str] | None) -> list[str] | None:
        return _validate_ip_entries(value)


class AutomationWebhookUpdate(BaseModel):
    """Payload for updating an inbound webhook; the secret is rotated separately."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    actions: list[ActionConfig] | None = Field(default=None, min_length=1)
    enabled: bool | None = None
    require_signature: bool | None = None
    allowed_ips: list[str] | None = None

    @field_validator("allowed_ips")
    @classmethod
    def _check_ips(cls, value: list[str] | None) -> list[str] | None:
        return _validate_ip_entries(value)


class AutomationWebhookRead(ORMModel):
    """Webhook representation with the secret masked."""
    id: UUID
    board_id: UUID
    name: str
    description: str | None = None
    endpoint: str
    webhook_url: str
    secret_prefix: str
    enabled: bool
    require_signature: bool
    allowed_ips: list[str] | None = None
    actions: list[dict[str, Any]] = Field(default_factory=list)
    call_count: int
    last_called_at: datetime | None = None
    created_at: datetime


class AutomationWebhookSecretRead(AutomationWebhookRead):
    """Webhook representation carrying the raw secret; only returned once."""
    secret: str
    secret_warning: str = "Save this secret now. It won't be shown again."


class AutomationTemplateRead(BaseModel):
    """Template catalog entry."""
    id: str
    name: str
    description: str
    category: str
    icon: str | None = None
    trigger_type: str
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    actions: list[dict[str, Any]] = Field(default_factory=list)
    usage_count: int
    placeholders: list[str] = Field(default_factory=list)


class AutomationTemplateInstantiate(BaseModel):
    """Board-specific values filled in when adopting a template."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    action_overrides: dict[int, dict[str, Any]] = Field(default_factory=dict)
    priority: int = 0
    enabled: bool | None = None
