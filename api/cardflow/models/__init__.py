from cardflow.models.automation import AutomationLog, AutomationLogStatus, AutomationRule, AutomationWebhook
from cardflow.models.board import (
    Board,
    BoardList,
    BoardMember,
    BoardRole,
    Checklist,
    ChecklistItem,
    Comment,
    Label,
    Notification,
    Task,
    TaskLabel,
)
from cardflow.models.user import User

__all__ = [
    "AutomationLog",
    "AutomationLogStatus",
    "AutomationRule",
    "AutomationWebhook",
    "Board",
    "BoardList",
    "BoardMember",
    "BoardRole",
    "Checklist",
    "ChecklistItem",
    "Comment",
    "Label",
    "Notification",
    "Task",
    "TaskLabel",
    "User",
]
"""SQLAlchemy ORM models for the Cardflow automation API."""
