"""Add automation rules, execution logs, and inbound automation webhooks.

Revision ID: 20250901_000002
Revises: 20250901_000001
Create Date: 2025-09-01 00:00:02
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20250901_000002"
down_revision: Union[str, None] = "20250901_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

log_status_enum = postgresql.ENUM(
    "pending", "running", "success", "failed", "skipped", name="automation_log_status", create_type=False
)


def upgrade() -> None:
    """Create automation_rules, automation_webhooks, and automation_logs."""
    log_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "automation_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("board_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("trigger_type", sa.String(length=64), nullable=False),
        sa.Column("trigger_config", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("conditions", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("actions", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_executions", sa.Integer(), nullable=True),
        sa.Column("execution_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_template", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("template_id", sa.String(length=64), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["board_id"], ["boards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_automation_rules_board_id"), "automation_rules", ["board_id"], unique=False)
    op.create_index(op.f("ix_automation_rules_trigger_type"), "automation_rules", ["trigger_type"], unique=False)

    op.create_table(
        "automation_webhooks",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("board_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("endpoint", sa.String(length=64), nullable=False),
        sa.Column("encrypted_secret", sa.Text(), nullable=False),
        sa.Column("secret_prefix", sa.String(length=20), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("require_signature", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("allowed_ips", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("actions", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("call_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_called_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["board_id"], ["boards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_automation_webhooks_board_id"), "automation_webhooks", ["board_id"], unique=False)
    op.create_index(op.f("ix_automation_webhooks_endpoint"), "automation_webhooks", ["endpoint"], unique=True)

    op.create_table(
        "automation_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("webhook_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("board_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("trigger_event", sa.String(length=64), nullable=False),
        sa.Column("trigger_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", log_status_enum, nullable=False),
        sa.Column("actions_executed", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("error", sa.String(length=500), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["rule_id"], ["automation_rules.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["webhook_id"], ["automation_webhooks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_automation_logs_rule_id"), "automation_logs", ["rule_id"], unique=False)
    op.create_index(op.f("ix_automation_logs_webhook_id"), "automation_logs", ["webhook_id"], unique=False)
    op.create_index(op.f("ix_automation_logs_board_id"), "automation_logs", ["board_id"], unique=False)
    op.create_index(op.f("ix_automation_logs_task_id"), "automation_logs", ["task_id"], unique=False)
    op.create_index(op.f("ix_automation_logs_created_at"), "automation_logs", ["created_at"], unique=False)


def downgrade() -> None:
    """Drop automation tables."""
    op.drop_table("automation_logs")
    op.drop_table("automation_webhooks")
    op.drop_table("automation_rules")
    log_status_enum.drop(op.get_bind(), checkfirst=True)
