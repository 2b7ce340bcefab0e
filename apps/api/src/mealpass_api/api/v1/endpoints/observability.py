"""Observability snapshots for issuance runs and scheduled jobs."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mealpass_api.api.dependencies.security import require_cron_secret
from mealpass_api.observability.issuance import get_issuance_store
from mealpass_api.observability.scheduler import get_job_scheduler_store

router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_cron_secret)],
)


@router.get("/issuance", summary="Daily issuance metrics snapshot")
async def get_issuance_snapshot() -> dict[str, object]:
    return get_issuance_store().snapshot().as_dict()


@router.get("/scheduler", summary="Scheduled job metrics snapshot")
async def get_scheduler_snapshot() -> dict[str, object]:
    return get_job_scheduler_store().snapshot().as_dict()
