"""Maintenance jobs for automation log retention."""

from __future__ import annotations

import asyncio
import logging

from cardflow.core.config import settings
from cardflow.db.session import async_session
from cardflow.services import automation_log_service

logger = logging.getLogger("cardflow.jobs.maintenance")


def prune_automation_logs_job(retention_days: int | None = None) -> dict[str, int]:
    """Scheduled cleanup for finished automation logs past the retention window."""
    days = retention_days or settings.automation_log_retention_days

    async def _run() -> int:
        async with async_session() as session:
            return await automation_log_service.prune_logs(session, retention_days=days)

    deleted = asyncio.run(_run())
    logger.info("Pruned %d automation logs older than %s days", deleted, days)
    return {"deleted": deleted}
