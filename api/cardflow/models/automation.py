"""Automation rule, execution log, and inbound webhook models."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cardflow.db.base_class import Base

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutomationLogStatus(str, enum.Enum):
    """Lifecycle of a single rule firing."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_LOG_STATUSES = frozenset(
    {AutomationLogStatus.SUCCESS, AutomationLogStatus.FAILED, AutomationLogStatus.SKIPPED}
)


class AutomationRule(Base):
    """Board-scoped trigger/conditions/actions configuration."""

    __tablename__ = "automation_rules"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    board_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trigger_config: Mapped[dict] = mapped_column(JSON_COMPATIBLE, default=dict, nullable=False)
    conditions: Mapped[list] = mapped_column(JSON_COMPATIBLE, default=list, nullable=False)
    actions: Mapped[list] = mapped_column(JSON_COMPATIBLE, default=list, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_executions: Mapped[int | None] = mapped_column(Integer)
    execution_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_template: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    template_id: Mapped[str | None] = mapped_column(String(64))
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class AutomationWebhook(Base):
    """Board-owned inbound endpoint that runs a fixed action list."""

    __tablename__ = "automation_webhooks"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    board_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    endpoint: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    secret_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    require_signature: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allowed_ips: Mapped[list | None] = mapped_column(JSON_COMPATIBLE)
    actions: Mapped[list] = mapped_column(JSON_COMPATIBLE, default=list, nullable=False)
    call_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_called_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class AutomationLog(Base):
    """Append-only record of one rule (or webhook) firing."""

    __tablename__ = "automation_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("automation_rules.id", ondelete="CASCADE"), index=True
    )
    webhook_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("automation_webhooks.id", ondelete="CASCADE"), index=True
    )
    board_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    task_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    trigger_event: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_data: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)
    status: Mapped[AutomationLogStatus] = mapped_column(
        Enum(
            AutomationLogStatus,
            name="automation_log_status",
            values_callable=lambda statuses: [status.value for status in statuses],
        ),
        default=AutomationLogStatus.PENDING,
        nullable=False,
    )
    actions_executed: Mapped[list] = mapped_column(JSON_COMPATIBLE, default=list, nullable=False)
    error: Mapped[str | None] = mapped_column(String(500))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
