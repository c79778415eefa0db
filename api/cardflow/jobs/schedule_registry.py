from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from rq_scheduler import Scheduler

from cardflow.core.config import settings
from cardflow.jobs.automations import scan_due_dates_job
from cardflow.jobs.maintenance import prune_automation_logs_job
from cardflow.services.task_queue import task_queue

logger = logging.getLogger("cardflow.jobs.schedule_registry")


def _queue_for(preferred: str) -> str:
    if preferred in task_queue.queue_names:
        return preferred
    return task_queue.queue_names[0] if task_queue.queue_names else "default"


def _schedule_entries() -> list[dict]:
    entries: list[dict] = [
        {
            "id": "automations:scan_due_dates",
            "func": scan_due_dates_job,
            "interval": max(60, settings.due_date_scan_interval_seconds),
            "repeat": None,
            "queue_name": _queue_for("automations"),
        },
    ]
    if settings.automation_log_retention_days > 0:
        entries.append(
            {
                "id": "maintenance:prune_automation_logs",
                "func": prune_automation_logs_job,
                "interval": max(3600, settings.automation_log_retention_days * 86400 // 4),
                "repeat": None,
                "queue_name": _queue_for("maintenance"),
            }
        )
    return entries


def ensure_schedules() -> None:
    """Idempotently register periodic jobs with rq-scheduler."""
    if settings.environment.lower() == "test":
        return
    if not task_queue.connection:
        logger.info("Skipping scheduler bootstrap; queue connection is unavailable")
        return
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])
    for entry in _schedule_entries():
        if entry["id"] in scheduler:
            continue
        scheduler.schedule(
            scheduled_time=datetime.now(timezone.utc),
            func=entry["func"],
            interval=entry["interval"],
            repeat=entry["repeat"],
            id=entry["id"],
            queue_name=entry["queue_name"],
            result_ttl=int(timedelta(hours=1).total_seconds()),
        )
        logger.info("Scheduled job %s every %ss on queue %s", entry["id"], entry["interval"], entry["queue_name"])
