"""Service calendar resolution: weekly pattern plus dated overrides."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Literal, Sequence

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.core.errors import ServiceDayNotFoundError
from mealpass_api.core.timezone import weekday_index
from mealpass_api.models.service_calendar import (
    ServiceException,
    ServiceExceptionKind,
    ServicePattern,
    ServiceRecurrence,
)
from mealpass_api.observability.issuance import get_issuance_store

from .recurrence import RecurrenceRuleError, exception_applies_on, is_literal_match

DecisionSource = Literal["special_event", "holiday", "pattern"]

DEFAULT_SEARCH_DAYS = 7


@dataclass(slots=True)
class ServiceDayDecision:
    """Outcome of a calendar query, including which rule decided it."""

    day: date
    is_service_day: bool
    source: DecisionSource
    exception_name: str | None = None
    degraded: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "date": self.day.isoformat(),
            "is_service_day": self.is_service_day,
            "source": self.source,
            "exception_name": self.exception_name,
            "degraded": self.degraded,
        }


class ServiceCalendar:
    """Decide whether a date is a service day.

    Precedence, highest first: a ``special_event`` exception (its value wins
    outright), a closing ``holiday`` exception, then weekday membership in the
    ``ServicePattern``. When storage cannot be read, the query falls back to the
    weekday-only rule instead of raising.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        default_service_days: Iterable[int] = (1, 2, 3, 4, 5),
        search_days: int = DEFAULT_SEARCH_DAYS,
    ) -> None:
        self._db = session
        self._default_service_days = frozenset(default_service_days)
        self._search_days = max(int(search_days), 1)
        self._last_known_days: frozenset[int] | None = None

    @property
    def search_days(self) -> int:
        return self._search_days

    async def is_service_day(self, day: date) -> bool:
        decision = await self.evaluate(day)
        return decision.is_service_day

    async def evaluate(self, day: date) -> ServiceDayDecision:
        try:
            exceptions = await self._load_exceptions(day)
            service_days = await self._load_service_days()
        except (SQLAlchemyError, OSError) as exc:
            return await self._degraded_decision(day, exc)

        special = _pick(exceptions, day, ServiceExceptionKind.SPECIAL_EVENT)
        if special is not None:
            return ServiceDayDecision(
                day=day,
                is_service_day=bool(special.is_service_day),
                source="special_event",
                exception_name=special.name,
            )

        holiday = _pick(exceptions, day, ServiceExceptionKind.HOLIDAY)
        if holiday is not None and not holiday.is_service_day:
            return ServiceDayDecision(
                day=day,
                is_service_day=False,
                source="holiday",
                exception_name=holiday.name,
            )

        return ServiceDayDecision(
            day=day,
            is_service_day=weekday_index(day) in service_days,
            source="pattern",
        )

    async def next_service_day(self, after: date, *, max_days: int | None = None) -> date:
        """First service day strictly after ``after`` within the search bound."""

        bound = self._search_days if max_days is None else max(int(max_days), 1)
        for offset in range(1, bound + 1):
            candidate = after + timedelta(days=offset)
            if await self.is_service_day(candidate):
                return candidate
        raise ServiceDayNotFoundError(after, bound)

    async def service_days_between(self, start: date, end: date) -> list[ServiceDayDecision]:
        """Decisions for every date in ``[start, end]``."""

        decisions: list[ServiceDayDecision] = []
        current = start
        while current <= end:
            decisions.append(await self.evaluate(current))
            current += timedelta(days=1)
        return decisions

    async def _load_service_days(self) -> frozenset[int]:
        result = await self._db.execute(select(ServicePattern).order_by(ServicePattern.id).limit(1))
        pattern = result.scalar_one_or_none()
        if pattern is None or pattern.service_days is None:
            days = self._default_service_days
        else:
            days = frozenset(int(value) for value in pattern.service_days)
        self._last_known_days = days
        return days

    async def _load_exceptions(self, day: date) -> list[ServiceException]:
        stmt = select(ServiceException).where(
            or_(
                ServiceException.date == day,
                ServiceException.recurrence != ServiceRecurrence.ONE_TIME,
            )
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _degraded_decision(self, day: date, exc: BaseException) -> ServiceDayDecision:
        try:
            await self._db.rollback()
        except (SQLAlchemyError, OSError) as rollback_exc:
            logger.debug("Calendar session rollback failed", error=str(rollback_exc))
        get_issuance_store().record_degraded_calendar_read()
        days = self._last_known_days if self._last_known_days is not None else self._default_service_days
        is_open = weekday_index(day) in days
        logger.warning(
            "Service calendar degraded; using weekday pattern only",
            service_date=day.isoformat(),
            is_service_day=is_open,
            error=str(exc),
        )
        return ServiceDayDecision(day=day, is_service_day=is_open, source="pattern", degraded=True)


def _pick(
    exceptions: Sequence[ServiceException],
    day: date,
    kind: ServiceExceptionKind,
) -> ServiceException | None:
    literal: ServiceException | None = None
    recurring: ServiceException | None = None
    for exception in exceptions:
        if exception.kind != kind:
            continue
        try:
            applies = exception_applies_on(exception, day)
        except RecurrenceRuleError as exc:
            logger.warning(
                "Ignoring service exception with invalid recurrence rule",
                exception_id=str(exception.id),
                rule=exception.recurrence_rule,
                error=str(exc),
            )
            continue
        if not applies:
            continue
        if is_literal_match(exception, day):
            literal = literal or exception
        else:
            recurring = recurring or exception
    return literal or recurring


__all__ = ["DecisionSource", "ServiceCalendar", "ServiceDayDecision"]
