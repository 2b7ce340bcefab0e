from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select

from mealpass_api.core.errors import ConfigurationError, DispatchError, StorageUnavailableError
from mealpass_api.core.settings import Settings
from mealpass_api.models import (
    Credential,
    Customer,
    Entitlement,
    ServiceException,
    ServiceExceptionKind,
    Skip,
    SkipSourceEnum,
    Subscription,
    SubscriptionStatusEnum,
)
from mealpass_api.observability.issuance import IssuanceObservabilityStore
from mealpass_api.services.issuance import DailyIssuanceOrchestrator
from mealpass_api.services.notifications import (
    CredentialDispatcher,
    InMemoryEmailBackend,
    InMemoryOperatorChannel,
    OperatorAlertNotifier,
)

LA = ZoneInfo("America/Los_Angeles")
TUESDAY = date(2026, 10, 20)
SATURDAY = date(2026, 10, 24)


class FlakyEmailBackend(InMemoryEmailBackend):
    """Fails delivery for the listed recipients."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self._failing = failing

    async def send_email(self, recipient, subject, body_text, **kwargs) -> None:
        if recipient in self._failing:
            raise DispatchError(f"Mailbox unavailable for {recipient}")
        await super().send_email(recipient, subject, body_text, **kwargs)


def _settings(**overrides) -> Settings:
    values = {
        "service_timezone": "America/Los_Angeles",
        "email_backend": "memory",
        "issuance_concurrency": 1,
    }
    values.update(overrides)
    return Settings(**values)


def _orchestrator(session_factory, signing_key, *, backend=None, channel=None, store=None, **overrides):
    backend = backend or InMemoryEmailBackend()
    channel = channel or InMemoryOperatorChannel()
    orchestrator = DailyIssuanceOrchestrator(
        session_factory,
        settings=_settings(**overrides),
        dispatcher=CredentialDispatcher(backend, timezone=LA, timeout_seconds=5),
        notifier=OperatorAlertNotifier([channel]),
        signing_key=signing_key,
        store=store or IssuanceObservabilityStore(),
    )
    return orchestrator, backend, channel


async def _subscriber(
    session_factory,
    email: str,
    *,
    status: SubscriptionStatusEnum = SubscriptionStatusEnum.ACTIVE,
    period: tuple[datetime | None, datetime | None] | None = None,
):
    # Billing periods are stored in UTC.
    now = datetime(2026, 10, 20, 19, 0, tzinfo=timezone.utc)
    start, end = period if period is not None else (now - timedelta(days=10), now + timedelta(days=20))
    async with session_factory() as session:
        customer = Customer(email=email, name=email.split("@")[0].title())
        session.add(customer)
        await session.flush()
        session.add(
            Subscription(
                customer_id=customer.id,
                external_subscription_id=f"sub-{email}",
                status=status,
                current_period_start=start,
                current_period_end=end,
            )
        )
        await session.commit()
        return customer.id


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _only_credential(session_factory) -> Credential:
    async with session_factory() as session:
        return (await session.execute(select(Credential))).scalar_one()


@pytest.mark.asyncio
async def test_issues_credentials_to_active_subscribers(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    await _subscriber(session_factory, "grace@example.com")
    await _subscriber(session_factory, "lapsed@example.com", status=SubscriptionStatusEnum.CANCELED)
    await _subscriber(
        session_factory,
        "expired@example.com",
        period=(
            datetime(2026, 9, 1, tzinfo=timezone.utc),
            datetime(2026, 10, 1, tzinfo=timezone.utc),
        ),
    )
    orchestrator, backend, channel = _orchestrator(session_factory, signing_key)

    result = await orchestrator.run(TUESDAY)

    assert result.status == "ok"
    assert result.eligible == 2
    assert result.issued == 2
    assert result.outcomes == {"created": 2}
    assert sorted(message["To"] for message in backend.sent_messages) == ["ada@example.com", "grace@example.com"]
    assert all(key.endswith("/2026-10-20") for key in backend.idempotency_keys)
    assert await _count(session_factory, Credential) == 2
    assert await _count(session_factory, Entitlement) == 2
    assert channel.messages == []


@pytest.mark.asyncio
async def test_dispatch_failure_is_isolated_to_one_customer(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "one@example.com")
    failing_id = await _subscriber(session_factory, "two@example.com")
    await _subscriber(session_factory, "three@example.com")
    backend = FlakyEmailBackend({"two@example.com"})
    orchestrator, _, channel = _orchestrator(session_factory, signing_key, backend=backend)

    result = await orchestrator.run(TUESDAY)

    assert result.status == "partial"
    assert result.issued == 2
    assert len(result.errors) == 1
    assert result.errors[0].customer_id == str(failing_id)
    assert result.errors[0].email == "two@example.com"
    assert "Mailbox unavailable" in result.errors[0].error
    assert len(backend.sent_messages) == 2
    # The credential was minted before delivery failed; a rerun re-dispatches it.
    assert await _count(session_factory, Credential) == 3

    assert len(channel.messages) == 1
    alert = channel.messages[0]
    assert "*Daily Credential Issuance Alert*" in alert
    assert "*Errors*: 1 of 3" in alert
    assert "two@example.com" in alert


@pytest.mark.asyncio
async def test_rerun_is_idempotent(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    orchestrator, backend, _ = _orchestrator(session_factory, signing_key)

    first = await orchestrator.run(TUESDAY)
    first_credential = await _only_credential(session_factory)
    second = await orchestrator.run(TUESDAY)
    second_credential = await _only_credential(session_factory)

    assert first.outcomes == {"created": 1}
    assert second.outcomes == {"existing": 1}
    assert await _count(session_factory, Credential) == 1
    assert await _count(session_factory, Entitlement) == 1
    assert len(backend.idempotency_keys) == 2
    assert backend.idempotency_keys[0] == backend.idempotency_keys[1]
    assert second_credential.token_id == first_credential.token_id
    assert second_credential.short_code == first_credential.short_code
    assert second_credential.signed_token == first_credential.signed_token


@pytest.mark.asyncio
async def test_skip_wins_over_issuance(session_factory, signing_key) -> None:
    customer_id = await _subscriber(session_factory, "skipper@example.com")
    async with session_factory() as session:
        session.add(Skip(customer_id=customer_id, skip_date=TUESDAY, source=SkipSourceEnum.TELEGRAM))
        await session.commit()
    orchestrator, backend, _ = _orchestrator(session_factory, signing_key)

    result = await orchestrator.run(TUESDAY)

    assert result.status == "ok"
    assert result.issued == 0
    assert result.not_allowed == 1
    assert backend.sent_messages == []
    assert await _count(session_factory, Credential) == 0
    async with session_factory() as session:
        entitlement = (await session.execute(select(Entitlement))).scalar_one()
    assert entitlement.meals_allowed == 0
    assert entitlement.meals_redeemed == 0


@pytest.mark.asyncio
async def test_weekend_short_circuits_without_writes(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    store = IssuanceObservabilityStore()
    orchestrator, backend, _ = _orchestrator(session_factory, signing_key, store=store)

    result = await orchestrator.run(SATURDAY)

    assert result.skipped is True
    assert result.status == "skipped"
    assert result.issued == 0
    assert result.errors == []
    assert backend.sent_messages == []
    assert await _count(session_factory, Entitlement) == 0
    assert await _count(session_factory, Credential) == 0
    assert store.snapshot().totals["skipped_runs"] == 1


@pytest.mark.asyncio
async def test_holiday_short_circuits(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    async with session_factory() as session:
        session.add(
            ServiceException(
                date=TUESDAY,
                kind=ServiceExceptionKind.HOLIDAY,
                name="Closed for inventory",
                is_service_day=False,
            )
        )
        await session.commit()
    orchestrator, _, _ = _orchestrator(session_factory, signing_key)

    result = await orchestrator.run(TUESDAY)

    assert result.skipped is True
    assert await _count(session_factory, Entitlement) == 0


@pytest.mark.asyncio
async def test_null_billing_period_is_excluded_and_alerted(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    await _subscriber(session_factory, "missing@example.com", period=(None, None))
    store = IssuanceObservabilityStore()
    orchestrator, backend, channel = _orchestrator(session_factory, signing_key, store=store)

    result = await orchestrator.run(TUESDAY)

    assert result.status == "ok"
    assert result.issued == 1
    assert result.null_period_subscriptions == 1
    assert [message["To"] for message in backend.sent_messages] == ["ada@example.com"]
    assert len(channel.messages) == 1
    assert "CRITICAL: 1 active subscriptions have missing billing period dates" in channel.messages[0]
    assert "missing@example.com" in channel.messages[0]
    assert store.snapshot().totals["null_period_alerts"] == 1


@pytest.mark.asyncio
async def test_null_billing_period_escalation_records_errors(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    await _subscriber(session_factory, "missing@example.com", period=(datetime(2026, 10, 1, tzinfo=timezone.utc), None))
    orchestrator, _, channel = _orchestrator(session_factory, signing_key, null_period_policy="escalate")

    result = await orchestrator.run(TUESDAY)

    assert result.status == "partial"
    assert result.issued == 1
    assert len(result.errors) == 1
    assert result.errors[0].email == "missing@example.com"
    assert "no billing period dates" in result.errors[0].error
    # Null-period alert plus the partial-success alert.
    assert len(channel.messages) == 2
    assert "*Errors*: 1 of 2" in channel.messages[1]


@pytest.mark.asyncio
async def test_slow_run_records_soft_deadline_breach(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    store = IssuanceObservabilityStore()
    orchestrator, _, _ = _orchestrator(
        session_factory,
        signing_key,
        store=store,
        issuance_hard_limit_seconds=0.0,
    )

    result = await orchestrator.run(TUESDAY)

    assert result.issued == 1
    assert store.snapshot().totals["soft_deadline_breaches"] == 1


@pytest.mark.asyncio
async def test_missing_signing_key_is_fatal(session_factory) -> None:
    store = IssuanceObservabilityStore()
    orchestrator = DailyIssuanceOrchestrator(
        session_factory,
        settings=_settings(credential_private_key=None, credential_private_key_base64=None),
        dispatcher=CredentialDispatcher(InMemoryEmailBackend(), timezone=LA),
        notifier=OperatorAlertNotifier([]),
        store=store,
    )

    with pytest.raises(ConfigurationError):
        await orchestrator.run(TUESDAY)

    snapshot = store.snapshot()
    assert snapshot.totals["fatal_runs"] == 1
    assert snapshot.last_fatal_error == "Credential signing key is not configured"


@pytest.mark.asyncio
async def test_unreachable_storage_is_fatal(signing_key) -> None:
    class _DeadSession:
        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc_info):
            return False

        async def execute(self, *args, **kwargs):
            raise OSError("connection refused")

    async def dead_session_factory():
        return _DeadSession()

    orchestrator, backend, _ = _orchestrator(dead_session_factory, signing_key)

    with pytest.raises(StorageUnavailableError):
        await orchestrator.run(TUESDAY)
    assert backend.sent_messages == []


@pytest.mark.asyncio
async def test_run_defaults_to_today_in_service_timezone(session_factory, signing_key) -> None:
    await _subscriber(session_factory, "ada@example.com")
    orchestrator = DailyIssuanceOrchestrator(
        session_factory,
        settings=_settings(),
        dispatcher=CredentialDispatcher(InMemoryEmailBackend(), timezone=LA),
        notifier=OperatorAlertNotifier([InMemoryOperatorChannel()]),
        signing_key=signing_key,
        # 02:00 UTC Wednesday is still Tuesday evening in Los Angeles.
        clock=lambda: datetime(2026, 10, 21, 2, 0, tzinfo=timezone.utc),
        store=IssuanceObservabilityStore(),
    )

    result = await orchestrator.run()

    assert result.service_date == TUESDAY
    assert result.issued == 1


@pytest.mark.asyncio
async def test_rerun_preserves_redemptions(session_factory, signing_key) -> None:
    customer_id = await _subscriber(session_factory, "ada@example.com")
    async with session_factory() as session:
        session.add(
            Entitlement(
                customer_id=customer_id,
                service_date=TUESDAY,
                meals_allowed=1,
                meals_redeemed=1,
            )
        )
        await session.commit()
    orchestrator, _, _ = _orchestrator(session_factory, signing_key)

    result = await orchestrator.run(TUESDAY)

    assert result.issued == 1
    async with session_factory() as session:
        entitlement = (await session.execute(select(Entitlement))).scalar_one()
    assert entitlement.meals_allowed == 1
    assert entitlement.meals_redeemed == 1


class SlowEmailBackend(FlakyEmailBackend):
    """Holds each delivery open briefly and records how many overlap."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__(failing)
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_email(self, recipient, subject, body_text, **kwargs) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.05)
            await super().send_email(recipient, subject, body_text, **kwargs)
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_worker_pool_issues_concurrently_with_isolated_errors(file_session_factory, signing_key) -> None:
    emails = [f"diner{index}@example.com" for index in range(8)]
    customer_ids = [await _subscriber(file_session_factory, email) for email in emails]
    async with file_session_factory() as session:
        session.add(Skip(customer_id=customer_ids[5], skip_date=TUESDAY, source=SkipSourceEnum.TELEGRAM))
        await session.commit()
    backend = SlowEmailBackend({"diner2@example.com"})
    orchestrator, _, channel = _orchestrator(
        file_session_factory, signing_key, backend=backend, issuance_concurrency=4
    )

    result = await orchestrator.run(TUESDAY)

    assert result.status == "partial"
    assert result.eligible == 8
    assert result.issued == 6
    assert result.not_allowed == 1
    assert [error.email for error in result.errors] == ["diner2@example.com"]
    assert 1 < backend.max_in_flight <= 4
    assert len(backend.sent_messages) == 6
    assert await _count(file_session_factory, Entitlement) == 8
    assert await _count(file_session_factory, Credential) == 7
    assert len(channel.messages) == 1


@pytest.mark.asyncio
async def test_concurrent_reruns_keep_one_credential_per_customer(file_session_factory, signing_key) -> None:
    for index in range(5):
        await _subscriber(file_session_factory, f"rerun{index}@example.com")
    first, first_backend, _ = _orchestrator(file_session_factory, signing_key, issuance_concurrency=4)
    second, second_backend, _ = _orchestrator(file_session_factory, signing_key, issuance_concurrency=4)

    results = await asyncio.gather(first.run(TUESDAY), second.run(TUESDAY))

    assert [result.errors for result in results] == [[], []]
    assert [result.issued for result in results] == [5, 5]
    assert await _count(file_session_factory, Credential) == 5
    assert await _count(file_session_factory, Entitlement) == 5
    assert set(first_backend.idempotency_keys) == set(second_backend.idempotency_keys)
