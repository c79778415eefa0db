"""Worker job entrypoints for automation event processing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from cardflow.db.session import async_session
from cardflow.services import automation_engine

logger = logging.getLogger("cardflow.jobs.automations")


def process_event_job(
    *,
    trigger_type: str,
    board_id: str,
    context: dict[str, Any],
    occurred_at: str | None = None,
) -> dict[str, Any]:
    """Run the automation pipeline for one domain event within a worker."""

    async def _run() -> dict[str, Any]:
        async with async_session() as session:
            event = automation_engine.event_from_job(
                trigger_type=trigger_type, board_id=board_id, context=context, occurred_at=occurred_at
            )
            result = await automation_engine.process_event(session, event)
            return result.model_dump(mode="json")

    result = asyncio.run(_run())
    logger.info(
        "Automation event %s on board %s complete (%s/%s rules executed)",
        trigger_type,
        board_id,
        result.get("rules_executed"),
        result.get("rules_matched"),
    )
    return result


def scan_due_dates_job() -> dict[str, int]:
    """Scheduled scan that fires due_date_approaching / due_date_passed rules."""

    async def _run() -> dict[str, int]:
        async with async_session() as session:
            return await automation_engine.emit_due_date_events(session)

    return asyncio.run(_run())
