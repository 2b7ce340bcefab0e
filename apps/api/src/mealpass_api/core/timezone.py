"""Home-timezone date helpers for the issuance job."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigurationError


def resolve_zone(name: str) -> ZoneInfo:
    """Return the ``ZoneInfo`` for ``name`` or raise a configuration error."""

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown service timezone: {name}") from exc


def today_in(tz: ZoneInfo, now: datetime | None = None) -> date:
    """Current calendar date in ``tz`` (not the host's local date)."""

    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(tz).date()


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    """Local midnight of ``day`` expressed as a UTC instant."""

    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def end_of_day(day: date, tz: ZoneInfo) -> datetime:
    """Last representable local instant of ``day`` expressed in UTC.

    Computed from the next local midnight so that 23- and 25-hour days around
    daylight-saving transitions resolve correctly.
    """

    next_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return next_midnight.astimezone(timezone.utc) - timedelta(microseconds=1)


def weekday_index(day: date) -> int:
    """Weekday index with 0 = Sunday ... 6 = Saturday."""

    return day.isoweekday() % 7


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = ["end_of_day", "ensure_utc", "resolve_zone", "start_of_day", "today_in", "weekday_index"]
