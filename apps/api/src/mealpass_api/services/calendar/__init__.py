"""Service calendar resolution."""

from .recurrence import FloatingRule, RecurrenceRuleError, parse_recurrence_rule, resolve_floating_date
from .resolver import ServiceCalendar, ServiceDayDecision

__all__ = [
    "FloatingRule",
    "RecurrenceRuleError",
    "ServiceCalendar",
    "ServiceDayDecision",
    "parse_recurrence_rule",
    "resolve_floating_date",
]
