from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.core.settings import get_settings
from mealpass_api.db.session import get_session
from mealpass_api.observability.scheduler import get_job_scheduler_store

router = APIRouter()

ComponentState = Literal["ready", "starting", "disabled", "error", "degraded"]


class ComponentStatus(BaseModel):
    status: ComponentState
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    overall: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        components["database"] = ComponentStatus(status="error", detail=f"Database unreachable ({exc})")
        overall = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if get_settings().job_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        scheduler_status: ComponentState = "ready" if running else "starting"
        detail = None if running else "Job scheduler not running"
        failing = [
            job_id
            for job_id, job in get_job_scheduler_store().snapshot().jobs.items()
            if job.consecutive_failures > 0
        ]
        if failing:
            scheduler_status = "error"
            detail = f"Jobs failing: {', '.join(failing)}"
            overall = "error"
        elif not running and overall == "ready":
            overall = "degraded"
        components["job_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    else:
        components["job_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Job scheduler disabled via settings",
        )

    return ReadinessPayload(status=overall, components=components)
