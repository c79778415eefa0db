"""FastAPI application entrypoint and health reporting.

Invariants:
- Health detail is only exposed to authenticated users.
"""

from typing import Any

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardflow.api.deps import get_optional_current_user
from cardflow.api.router import api_router
from cardflow.core.config import settings
from cardflow.core.logging import configure_logging
from cardflow.jobs.schedule_registry import ensure_schedules
from cardflow.models.user import User
from cardflow.services.automation_triggers import rule_cache
from cardflow.services.secret_vault import secret_vault
from cardflow.services.task_queue import task_queue

configure_logging()

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def _register_schedules() -> None:
    """Register scheduled jobs on startup."""
    ensure_schedules()


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health(current_user: User | None = Depends(get_optional_current_user)) -> dict[str, Any]:
    """Return health status with queue and vault detail for signed-in users."""
    if not current_user:
        return {"status": "ok"}
    vault = secret_vault.health()
    queue = task_queue.snapshot() if task_queue.enabled else {"status": "inline"}
    degraded = vault["status"] != "online" or queue.get("status") == "degraded"
    return {
        "status": "degraded" if degraded else "ok",
        "environment": settings.environment,
        "vault": vault,
        "queue": queue,
        "rule_cache_boards": rule_cache.size,
    }
