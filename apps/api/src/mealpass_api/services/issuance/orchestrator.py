"""Daily credential issuance run."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable
from uuid import UUID
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy import or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.core.errors import StorageUnavailableError
from mealpass_api.core.settings import Settings
from mealpass_api.core.timezone import end_of_day, resolve_zone, start_of_day, today_in
from mealpass_api.models.customer import Customer
from mealpass_api.models.subscription import Subscription, SubscriptionStatusEnum
from mealpass_api.observability.issuance import IssuanceObservabilityStore, get_issuance_store
from mealpass_api.observability.tracing import get_tracer
from mealpass_api.services.calendar import ServiceCalendar
from mealpass_api.services.credentials.minter import CredentialMinter
from mealpass_api.services.credentials.signing import SigningKey, load_signing_key
from mealpass_api.services.entitlements import EntitlementLedger
from mealpass_api.services.notifications.credential_dispatch import CredentialDispatcher, CredentialRecipient
from mealpass_api.services.notifications.operator_alerts import (
    NullPeriodSubscription,
    OperatorAlertNotifier,
    format_job_error_alert,
    format_null_period_alert,
)

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]
Clock = Callable[[], datetime]

JOB_NAME = "Daily Credential Issuance"
NOT_ALLOWED = "not_allowed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CustomerError:
    customer_id: str
    email: str | None
    error: str

    def as_dict(self) -> dict[str, Any]:
        return {"customer_id": self.customer_id, "email": self.email, "error": self.error}


@dataclass
class IssuanceResult:
    """Structured outcome of one issuance run.

    A non-empty ``errors`` list with the run still returning normally is a
    partial success; fatal problems are raised instead of being recorded here.
    """

    service_date: date
    issued: int = 0
    skipped: bool = False
    errors: list[CustomerError] = field(default_factory=list)
    eligible: int = 0
    not_allowed: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)
    null_period_subscriptions: int = 0
    degraded_calendar: bool = False
    duration_seconds: float = 0.0

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "partial" if self.errors else "ok"

    def as_dict(self) -> dict[str, Any]:
        return {
            "service_date": self.service_date.isoformat(),
            "status": self.status,
            "issued": self.issued,
            "skipped": self.skipped,
            "errors": [error.as_dict() for error in self.errors],
            "eligible": self.eligible,
            "not_allowed": self.not_allowed,
            "outcomes": dict(self.outcomes),
            "null_period_subscriptions": self.null_period_subscriptions,
            "degraded_calendar": self.degraded_calendar,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(slots=True)
class _CustomerOutcome:
    recipient: CredentialRecipient
    outcome: str | None = None
    error: str | None = None


class DailyIssuanceOrchestrator:
    """Issue today's credential to every eligible subscriber.

    Each customer runs in its own session and its own error boundary. The
    per-customer steps (skip check, entitlement, mint, dispatch) are strictly
    sequential, while customers are processed concurrently up to
    ``settings.issuance_concurrency``.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        settings: Settings,
        dispatcher: CredentialDispatcher,
        notifier: OperatorAlertNotifier,
        signing_key: SigningKey | None = None,
        clock: Clock | None = None,
        store: IssuanceObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._signing_key = signing_key
        self._clock = clock or _utcnow
        self._store = store or get_issuance_store()

    async def run(self, service_date: date | None = None) -> IssuanceResult:
        try:
            return await self._run(service_date)
        except Exception as exc:
            self._store.record_fatal(str(exc))
            logger.exception("Daily issuance aborted", error=str(exc))
            raise

    async def _run(self, service_date: date | None) -> IssuanceResult:
        started = time.monotonic()
        tz = resolve_zone(self._settings.service_timezone)
        signing_key = self._signing_key or self._load_signing_key()
        target = service_date or today_in(tz, self._clock())
        result = IssuanceResult(service_date=target)

        with get_tracer().start_as_current_span("daily_issuance.run") as span:
            span.set_attribute("mealpass.service_date", target.isoformat())

            async with self._session_scope() as session:
                await self._check_storage(session)

                calendar = ServiceCalendar(
                    session,
                    default_service_days=self._settings.service_days_default,
                    search_days=self._settings.next_service_day_search_days,
                )
                decision = await calendar.evaluate(target)
                result.degraded_calendar = decision.degraded
                if not decision.is_service_day:
                    result.skipped = True
                    result.duration_seconds = time.monotonic() - started
                    logger.info(
                        "Not a service day; skipping issuance",
                        service_date=target.isoformat(),
                        source=decision.source,
                        exception_name=decision.exception_name,
                    )
                    self._store.record_run(result.as_dict())
                    span.set_attribute("mealpass.skipped", True)
                    return result

                null_period = await self._scan_null_periods(session)
                recipients = await self._eligible_recipients(session, target, tz)

            if null_period:
                await self._handle_null_periods(null_period, result)

            result.eligible = len(recipients)
            logger.info(
                "Issuing daily credentials",
                service_date=target.isoformat(),
                eligible=result.eligible,
                concurrency=self._settings.issuance_concurrency,
            )

            semaphore = asyncio.Semaphore(max(self._settings.issuance_concurrency, 1))
            outcomes = await asyncio.gather(
                *(self._process_customer(recipient, target, signing_key, tz, semaphore) for recipient in recipients)
            )
            for item in outcomes:
                if item.error is not None:
                    result.errors.append(
                        CustomerError(
                            customer_id=str(item.recipient.customer_id),
                            email=item.recipient.email,
                            error=item.error,
                        )
                    )
                elif item.outcome == NOT_ALLOWED:
                    result.not_allowed += 1
                elif item.outcome is not None:
                    result.issued += 1
                    result.outcomes[item.outcome] = result.outcomes.get(item.outcome, 0) + 1

            result.duration_seconds = time.monotonic() - started
            span.set_attribute("mealpass.issued", result.issued)
            span.set_attribute("mealpass.errors", len(result.errors))

        self._check_deadline(result)
        logger.bind(summary=result.as_dict()).info(
            "Daily issuance complete",
            service_date=target.isoformat(),
            issued=result.issued,
            errors=len(result.errors),
            duration_seconds=round(result.duration_seconds, 3),
        )

        if result.errors:
            alert = format_job_error_alert(
                job_name=JOB_NAME,
                service_date=target,
                total_processed=result.eligible + result.null_period_subscriptions,
                errors=[error.as_dict() for error in result.errors],
            )
            await self._notifier.send(alert)

        self._store.record_run(result.as_dict())
        return result

    async def _process_customer(
        self,
        recipient: CredentialRecipient,
        service_date: date,
        signing_key: SigningKey,
        tz: ZoneInfo,
        semaphore: asyncio.Semaphore,
    ) -> _CustomerOutcome:
        async with semaphore:
            with get_tracer().start_as_current_span("daily_issuance.customer") as span:
                span.set_attribute("mealpass.customer_id", str(recipient.customer_id))
                try:
                    outcome = await self._issue_for(recipient, service_date, signing_key, tz)
                except Exception as exc:
                    logger.exception(
                        "Credential issuance failed for customer",
                        customer_id=str(recipient.customer_id),
                        service_date=service_date.isoformat(),
                        error=str(exc),
                    )
                    span.record_exception(exc)
                    return _CustomerOutcome(recipient=recipient, error=str(exc) or exc.__class__.__name__)
                span.set_attribute("mealpass.outcome", outcome)
                return _CustomerOutcome(recipient=recipient, outcome=outcome)

    async def _issue_for(
        self,
        recipient: CredentialRecipient,
        service_date: date,
        signing_key: SigningKey,
        tz: ZoneInfo,
    ) -> str:
        customer_id = recipient.customer_id
        async with self._session_scope() as session:
            ledger = EntitlementLedger(session)
            has_skip = await ledger.has_skip(customer_id, service_date)
            meals_allowed = await ledger.upsert_entitlement(customer_id, service_date, has_skip=has_skip)
            # The entitlement must survive a rollback in the minter's race path.
            await session.commit()

            if meals_allowed == 0:
                logger.info(
                    "Customer skipped service date; no credential issued",
                    customer_id=str(customer_id),
                    service_date=service_date.isoformat(),
                )
                self._store.record_not_allowed()
                return NOT_ALLOWED

            minter = CredentialMinter(
                session,
                signing_key,
                issuer=self._settings.credential_issuer,
                timezone=tz,
                short_code_length=self._settings.short_code_length,
                clock=self._clock,
            )
            minted = await minter.mint_or_fetch(customer_id, service_date)
            await session.commit()
            await session.refresh(minted.credential)
            self._store.record_mint_outcome(minted.outcome.value)

            await self._dispatcher.dispatch(recipient, minted.credential)
            return minted.outcome.value

    async def _check_storage(self, session: AsyncSession) -> None:
        try:
            await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailableError(f"Database unreachable: {exc}") from exc

    async def _scan_null_periods(self, session: AsyncSession) -> list[NullPeriodSubscription]:
        stmt = (
            select(
                Subscription.id,
                Subscription.customer_id,
                Subscription.external_subscription_id,
                Customer.email,
            )
            .join(Customer, Customer.id == Subscription.customer_id)
            .where(
                Subscription.status == SubscriptionStatusEnum.ACTIVE,
                or_(
                    Subscription.current_period_start.is_(None),
                    Subscription.current_period_end.is_(None),
                ),
            )
        )
        try:
            rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            logger.exception("Null billing period scan failed", error=str(exc))
            await session.rollback()
            return []
        return [
            NullPeriodSubscription(
                subscription_id=str(row.id),
                customer_id=str(row.customer_id),
                email=row.email,
                external_subscription_id=row.external_subscription_id,
            )
            for row in rows
        ]

    async def _handle_null_periods(self, entries: list[NullPeriodSubscription], result: IssuanceResult) -> None:
        escalate = self._settings.null_period_policy == "escalate"
        result.null_period_subscriptions = len(entries)
        alert = format_null_period_alert(entries, excluded=not escalate)
        logger.error(
            "Active subscriptions missing billing period dates",
            count=len(entries),
            policy=self._settings.null_period_policy,
            subscriptions=[entry.subscription_id for entry in entries],
        )
        self._store.record_null_period_alert()
        await self._notifier.send(alert)

        if escalate:
            for entry in entries:
                reference = entry.external_subscription_id or entry.subscription_id
                result.errors.append(
                    CustomerError(
                        customer_id=entry.customer_id,
                        email=entry.email,
                        error=f"Subscription {reference} has no billing period dates",
                    )
                )

    async def _eligible_recipients(
        self,
        session: AsyncSession,
        service_date: date,
        tz: ZoneInfo,
    ) -> list[CredentialRecipient]:
        day_start = start_of_day(service_date, tz)
        day_end = end_of_day(service_date, tz)
        stmt = (
            select(Subscription.customer_id, Customer.email, Customer.name)
            .join(Customer, Customer.id == Subscription.customer_id)
            .where(
                Subscription.status == SubscriptionStatusEnum.ACTIVE,
                Subscription.current_period_start <= day_end,
                Subscription.current_period_end >= day_start,
            )
            .order_by(Customer.created_at, Subscription.customer_id)
        )
        rows = (await session.execute(stmt)).all()

        recipients: list[CredentialRecipient] = []
        seen: set[UUID] = set()
        for row in rows:
            if row.customer_id in seen:
                continue
            seen.add(row.customer_id)
            recipients.append(CredentialRecipient(customer_id=row.customer_id, email=row.email, name=row.name))
        return recipients

    def _check_deadline(self, result: IssuanceResult) -> None:
        soft_limit = self._settings.issuance_soft_limit_seconds
        if result.duration_seconds <= soft_limit:
            return
        self._store.record_soft_deadline_breach()
        logger.warning(
            "Issuance run is approaching the execution time limit",
            duration_seconds=round(result.duration_seconds, 3),
            soft_limit_seconds=round(soft_limit, 3),
            hard_limit_seconds=self._settings.issuance_hard_limit_seconds,
        )

    def _load_signing_key(self) -> SigningKey:
        material = self._settings.credential_private_key or self._settings.credential_private_key_base64
        return load_signing_key(material)

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[AsyncSession]:
        maybe_session = self._session_factory()
        session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session
        async with session as managed_session:
            yield managed_session


__all__ = [
    "CustomerError",
    "DailyIssuanceOrchestrator",
    "IssuanceResult",
    "JOB_NAME",
]
