"""HTTP trigger for the daily credential job."""

from __future__ import annotations

from datetime import date
from typing import Callable

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from mealpass_api.api.dependencies.security import require_cron_secret
from mealpass_api.jobs.daily_credentials import build_orchestrator
from mealpass_api.services.issuance import DailyIssuanceOrchestrator

router = APIRouter(prefix="/jobs", tags=["Jobs"])

OrchestratorFactory = Callable[[], DailyIssuanceOrchestrator]


def get_orchestrator_factory(request: Request) -> OrchestratorFactory:
    session_factory = request.app.state.session_factory

    def _factory() -> DailyIssuanceOrchestrator:
        return build_orchestrator(session_factory=session_factory)

    return _factory


@router.get("/daily-credentials", summary="Describe the daily credential job")
async def describe_daily_credentials() -> dict[str, str]:
    return {
        "endpoint": "/api/v1/jobs/daily-credentials",
        "method": "POST",
        "description": "Issue today's meal credential to every eligible subscriber",
        "authorization": "Cron-Secret header required",
    }


@router.post(
    "/daily-credentials",
    dependencies=[Depends(require_cron_secret)],
    summary="Run daily credential issuance",
)
async def trigger_daily_credentials(
    service_date: date | None = Query(default=None, description="Override the service date (manual re-run)"),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> JSONResponse:
    try:
        orchestrator = orchestrator_factory()
        result = await orchestrator.run(service_date)
    except Exception as exc:
        logger.exception("Daily credential trigger failed", error=str(exc))
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc) or exc.__class__.__name__})

    return JSONResponse(status_code=200, content={"success": True, **result.as_dict()})
