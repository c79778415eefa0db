from . import (
    automation_actions,
    automation_conditions,
    automation_context,
    automation_engine,
    automation_log_service,
    automation_service,
    automation_templates,
    automation_triggers,
    board_service,
    user_service,
    webhook_service,
)

__all__ = [
    "automation_actions",
    "automation_conditions",
    "automation_context",
    "automation_engine",
    "automation_log_service",
    "automation_service",
    "automation_templates",
    "automation_triggers",
    "board_service",
    "user_service",
    "webhook_service",
]
"""Service-layer helpers for API operations."""
