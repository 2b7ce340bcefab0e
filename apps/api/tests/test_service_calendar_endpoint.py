from __future__ import annotations

from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient

from mealpass_api.models import ServiceException, ServiceExceptionKind, ServicePattern


@pytest.mark.asyncio
async def test_single_day_decision(app_with_db) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        session.add(
            ServiceException(
                date=date(2026, 11, 26),
                kind=ServiceExceptionKind.HOLIDAY,
                name="Thanksgiving",
                is_service_day=False,
            )
        )
        await session.commit()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        holiday = await client.get("/api/v1/service-calendar/2026-11-26")
        plain = await client.get("/api/v1/service-calendar/2026-11-25")

    assert holiday.status_code == 200
    assert holiday.json() == {
        "date": "2026-11-26",
        "is_service_day": False,
        "source": "holiday",
        "exception_name": "Thanksgiving",
        "degraded": False,
    }
    assert plain.json()["is_service_day"] is True
    assert plain.json()["source"] == "pattern"


@pytest.mark.asyncio
async def test_next_service_day(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/service-calendar/next", params={"after": "2026-10-23"})

    assert response.status_code == 200
    assert response.json() == {"after": "2026-10-23", "next_service_day": "2026-10-26"}


@pytest.mark.asyncio
async def test_next_service_day_not_found(app_with_db) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        session.add(ServicePattern(id=1, service_days=[]))
        await session.commit()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/service-calendar/next", params={"after": "2026-10-23"})

    assert response.status_code == 404
    assert "2026-10-23" in response.json()["detail"]


@pytest.mark.asyncio
async def test_range_listing_and_validation(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        week = await client.get("/api/v1/service-calendar", params={"start": "2026-10-18", "end": "2026-10-24"})
        backwards = await client.get("/api/v1/service-calendar", params={"start": "2026-10-24", "end": "2026-10-18"})
        too_long = await client.get("/api/v1/service-calendar", params={"start": "2026-01-01", "end": "2026-12-31"})

    assert week.status_code == 200
    days = week.json()["days"]
    assert [day["is_service_day"] for day in days] == [False, True, True, True, True, True, False]
    assert backwards.status_code == 400
    assert too_long.status_code == 400


@pytest.mark.asyncio
async def test_readiness_reports_database_and_scheduler(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        ready = await client.get("/api/v1/readyz")
        health = await client.get("/healthz")

    assert ready.status_code == 200
    payload = ready.json()
    assert payload["status"] == "ready"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["job_scheduler"]["status"] == "disabled"
    assert health.json()["status"] == "ok"
