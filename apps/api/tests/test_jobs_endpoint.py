from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from httpx import ASGITransport, AsyncClient

from mealpass_api.api.v1.endpoints.jobs import get_orchestrator_factory
from mealpass_api.core.errors import DispatchError
from mealpass_api.core.settings import Settings, get_settings
from mealpass_api.models import Customer, Subscription, SubscriptionStatusEnum
from mealpass_api.observability.issuance import IssuanceObservabilityStore
from mealpass_api.services.issuance import DailyIssuanceOrchestrator
from mealpass_api.services.notifications import (
    CredentialDispatcher,
    InMemoryEmailBackend,
    InMemoryOperatorChannel,
    OperatorAlertNotifier,
)

LA = ZoneInfo("America/Los_Angeles")
CRON_SECRET = "test-cron-secret"
ENDPOINT = "/api/v1/jobs/daily-credentials"


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(get_settings(), "cron_secret", CRON_SECRET)
    return CRON_SECRET


class RejectingBackend(InMemoryEmailBackend):
    async def send_email(self, recipient, subject, body_text, **kwargs) -> None:
        if recipient.startswith("bounce"):
            raise DispatchError("Mailbox unavailable")
        await super().send_email(recipient, subject, body_text, **kwargs)


async def _seed_subscribers(session_factory, *emails: str) -> None:
    now = datetime(2026, 10, 20, 19, 0, tzinfo=timezone.utc)
    async with session_factory() as session:
        for email in emails:
            customer = Customer(email=email, name="Diner")
            session.add(customer)
            await session.flush()
            session.add(
                Subscription(
                    customer_id=customer.id,
                    external_subscription_id=f"sub-{email}",
                    status=SubscriptionStatusEnum.ACTIVE,
                    current_period_start=now - timedelta(days=5),
                    current_period_end=now + timedelta(days=25),
                )
            )
        await session.commit()


def _install_orchestrator(app, session_factory, signing_key, **overrides) -> None:
    values = {"email_backend": "memory", "issuance_concurrency": 1}
    values.update(overrides)
    orchestrator = DailyIssuanceOrchestrator(
        session_factory,
        settings=Settings(**values),
        dispatcher=CredentialDispatcher(RejectingBackend(), timezone=LA),
        notifier=OperatorAlertNotifier([InMemoryOperatorChannel()]),
        signing_key=signing_key,
        store=IssuanceObservabilityStore(),
    )
    app.dependency_overrides[get_orchestrator_factory] = lambda: (lambda: orchestrator)


@pytest.mark.asyncio
async def test_trigger_rejects_wrong_secret(app_with_db, cron_secret) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.post(ENDPOINT)
        wrong = await client.post(ENDPOINT, headers={"Cron-Secret": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json() == {"detail": "Unauthorized"}


@pytest.mark.asyncio
async def test_trigger_rejects_everything_when_secret_unset(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(get_settings(), "cron_secret", "")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(ENDPOINT, headers={"Cron-Secret": ""})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_trigger_reports_partial_success(app_with_db, cron_secret, signing_key) -> None:
    app, session_factory = app_with_db
    await _seed_subscribers(session_factory, "ada@example.com", "bounce@example.com", "grace@example.com")
    _install_orchestrator(app, session_factory, signing_key)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            ENDPOINT,
            params={"service_date": "2026-10-20"},
            headers={"Cron-Secret": cron_secret},
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["status"] == "partial"
    assert payload["service_date"] == "2026-10-20"
    assert payload["issued"] == 2
    assert len(payload["errors"]) == 1
    assert payload["errors"][0]["email"] == "bounce@example.com"
    assert payload["errors"][0]["error"] == "Mailbox unavailable"


@pytest.mark.asyncio
async def test_trigger_reports_skipped_day(app_with_db, cron_secret, signing_key) -> None:
    app, session_factory = app_with_db
    _install_orchestrator(app, session_factory, signing_key)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            ENDPOINT,
            params={"service_date": date(2026, 10, 24).isoformat()},
            headers={"Cron-Secret": cron_secret},
        )

    assert response.status_code == 200
    assert response.json()["status"] == "skipped"
    assert response.json()["issued"] == 0


@pytest.mark.asyncio
async def test_trigger_returns_500_on_fatal_error(app_with_db, cron_secret) -> None:
    app, session_factory = app_with_db
    orchestrator = DailyIssuanceOrchestrator(
        session_factory,
        settings=Settings(email_backend="memory", credential_private_key=None, credential_private_key_base64=None),
        dispatcher=CredentialDispatcher(InMemoryEmailBackend(), timezone=LA),
        notifier=OperatorAlertNotifier([]),
        store=IssuanceObservabilityStore(),
    )
    app.dependency_overrides[get_orchestrator_factory] = lambda: (lambda: orchestrator)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            ENDPOINT,
            params={"service_date": "2026-10-20"},
            headers={"Cron-Secret": cron_secret},
        )

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Credential signing key is not configured"}


@pytest.mark.asyncio
async def test_get_describes_trigger(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(ENDPOINT)

    assert response.status_code == 200
    assert response.json()["method"] == "POST"


@pytest.mark.asyncio
async def test_observability_requires_secret(app_with_db, cron_secret) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        denied = await client.get("/api/v1/observability/issuance")
        allowed = await client.get("/api/v1/observability/issuance", headers={"Cron-Secret": cron_secret})
        scheduler = await client.get("/api/v1/observability/scheduler", headers={"Cron-Secret": cron_secret})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["totals"]["runs"] == 0
    assert scheduler.json()["totals"]["runs"] == 0
