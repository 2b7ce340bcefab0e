"""Expansion of recurring calendar exceptions into concrete dates."""

from __future__ import annotations

import calendar
import json
import re
from dataclasses import dataclass
from datetime import date, timedelta

from mealpass_api.core.timezone import weekday_index
from mealpass_api.models.service_calendar import ServiceException, ServiceRecurrence

_WEEKDAYS = {name.lower(): (index + 1) % 7 for index, name in enumerate(calendar.day_name)}
_MONTHS = {name.lower(): index for index, name in enumerate(calendar.month_name) if name}
_ORDINALS = {
    "1st": 1,
    "first": 1,
    "2nd": 2,
    "second": 2,
    "3rd": 3,
    "third": 3,
    "4th": 4,
    "fourth": 4,
    "5th": 5,
    "fifth": 5,
    "last": -1,
}
_TEXT_RULE = re.compile(
    r"^\s*(?P<ordinal>\w+)\s+(?P<weekday>[a-z]+)\s+(?:of|in)\s+(?P<month>[a-z]+)\s*$",
    re.IGNORECASE,
)


class RecurrenceRuleError(ValueError):
    """Raised when a floating recurrence rule cannot be parsed."""


@dataclass(frozen=True, slots=True)
class FloatingRule:
    """N-th weekday of a month; ``occurrence`` -1 means the last one."""

    month: int
    day_of_week: int
    occurrence: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise RecurrenceRuleError(f"month out of range: {self.month}")
        if not 0 <= self.day_of_week <= 6:
            raise RecurrenceRuleError(f"day_of_week out of range: {self.day_of_week}")
        if self.occurrence not in (-1, 1, 2, 3, 4, 5):
            raise RecurrenceRuleError(f"occurrence out of range: {self.occurrence}")


def parse_recurrence_rule(raw: str) -> FloatingRule:
    """Parse either the stored JSON form or a phrase like ``4th Thursday of November``."""

    text = (raw or "").strip()
    if not text:
        raise RecurrenceRuleError("empty recurrence rule")

    if text.startswith("{"):
        try:
            payload = json.loads(text)
            return FloatingRule(
                month=int(payload["month"]),
                day_of_week=int(payload["day_of_week"]),
                occurrence=int(payload["occurrence"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise RecurrenceRuleError(f"invalid recurrence rule: {text}") from exc

    match = _TEXT_RULE.match(text)
    if not match:
        raise RecurrenceRuleError(f"invalid recurrence rule: {text}")
    ordinal = _ORDINALS.get(match.group("ordinal").lower())
    weekday = _WEEKDAYS.get(match.group("weekday").lower())
    month = _MONTHS.get(match.group("month").lower())
    if ordinal is None or weekday is None or month is None:
        raise RecurrenceRuleError(f"invalid recurrence rule: {text}")
    return FloatingRule(month=month, day_of_week=weekday, occurrence=ordinal)


def resolve_floating_date(rule: FloatingRule, year: int) -> date | None:
    """Concrete date of ``rule`` in ``year``; None when that occurrence does not exist."""

    if rule.occurrence == -1:
        last = date(year, rule.month, calendar.monthrange(year, rule.month)[1])
        offset = (weekday_index(last) - rule.day_of_week) % 7
        return last - timedelta(days=offset)

    first = date(year, rule.month, 1)
    offset = (rule.day_of_week - weekday_index(first)) % 7
    candidate = first + timedelta(days=offset + 7 * (rule.occurrence - 1))
    if candidate.month != rule.month:
        return None
    return candidate


def exception_applies_on(exception: ServiceException, day: date) -> bool:
    """Whether ``exception`` resolves to ``day``."""

    recurrence = exception.recurrence or ServiceRecurrence.ONE_TIME
    anchor: date = exception.date

    if recurrence == ServiceRecurrence.ONE_TIME:
        return anchor == day
    if recurrence == ServiceRecurrence.ANNUAL:
        # Feb 29 anchors only match in leap years.
        return (anchor.month, anchor.day) == (day.month, day.day)
    if recurrence == ServiceRecurrence.FLOATING:
        if not exception.recurrence_rule:
            return anchor == day
        rule = parse_recurrence_rule(exception.recurrence_rule)
        return resolve_floating_date(rule, day.year) == day
    return False


def is_literal_match(exception: ServiceException, day: date) -> bool:
    return exception.date == day


__all__ = [
    "FloatingRule",
    "RecurrenceRuleError",
    "exception_applies_on",
    "is_literal_match",
    "parse_recurrence_rule",
    "resolve_floating_date",
]
