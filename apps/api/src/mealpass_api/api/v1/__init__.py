from fastapi import APIRouter

from .endpoints import health, jobs, observability, service_calendar

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(jobs.router)
router.include_router(service_calendar.router)
router.include_router(observability.router)
