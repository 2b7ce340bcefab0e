from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.core.errors import ServiceDayNotFoundError
from mealpass_api.core.settings import get_settings
from mealpass_api.core.timezone import resolve_zone, today_in
from mealpass_api.db.session import get_session
from mealpass_api.services.calendar import ServiceCalendar, ServiceDayDecision

router = APIRouter(prefix="/service-calendar", tags=["Service calendar"])

MAX_RANGE_DAYS = 62


class ServiceDayResponse(BaseModel):
    date: dt.date
    is_service_day: bool
    source: str
    exception_name: str | None = None
    degraded: bool = False

    @classmethod
    def from_decision(cls, decision: ServiceDayDecision) -> "ServiceDayResponse":
        return cls(
            date=decision.day,
            is_service_day=decision.is_service_day,
            source=decision.source,
            exception_name=decision.exception_name,
            degraded=decision.degraded,
        )


class NextServiceDayResponse(BaseModel):
    after: dt.date
    next_service_day: dt.date


class ServiceDayRangeResponse(BaseModel):
    start: dt.date
    end: dt.date
    days: list[ServiceDayResponse] = Field(default_factory=list)


def _calendar(session: AsyncSession) -> ServiceCalendar:
    settings = get_settings()
    return ServiceCalendar(
        session,
        default_service_days=settings.service_days_default,
        search_days=settings.next_service_day_search_days,
    )


@router.get("/next", response_model=NextServiceDayResponse, summary="Next service day")
async def next_service_day(
    after: dt.date | None = Query(default=None, description="Defaults to today in the service timezone"),
    session: AsyncSession = Depends(get_session),
) -> NextServiceDayResponse:
    anchor = after or today_in(resolve_zone(get_settings().service_timezone))
    try:
        found = await _calendar(session).next_service_day(anchor)
    except ServiceDayNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return NextServiceDayResponse(after=anchor, next_service_day=found)


@router.get("", response_model=ServiceDayRangeResponse, summary="Service days in a date range")
async def list_service_days(
    start: dt.date = Query(...),
    end: dt.date = Query(...),
    session: AsyncSession = Depends(get_session),
) -> ServiceDayRangeResponse:
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    if end - start > dt.timedelta(days=MAX_RANGE_DAYS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"range must not exceed {MAX_RANGE_DAYS} days",
        )
    decisions = await _calendar(session).service_days_between(start, end)
    return ServiceDayRangeResponse(
        start=start,
        end=end,
        days=[ServiceDayResponse.from_decision(decision) for decision in decisions],
    )


@router.get("/{day}", response_model=ServiceDayResponse, summary="Service day decision for one date")
async def get_service_day(day: dt.date, session: AsyncSession = Depends(get_session)) -> ServiceDayResponse:
    decision = await _calendar(session).evaluate(day)
    return ServiceDayResponse.from_decision(decision)
