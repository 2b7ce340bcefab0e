"""Exception hierarchy shared by the calendar, ledger, minter and issuance job."""

from __future__ import annotations

from datetime import date


class MealpassError(Exception):
    """Base class for domain errors raised by the service."""


class ConfigurationError(MealpassError):
    """Raised when the job cannot start because configuration is missing or invalid."""


class StorageUnavailableError(MealpassError):
    """Raised when the relational store cannot be reached at the start of a run."""


class ServiceDayNotFoundError(MealpassError):
    """Raised when no service day exists inside the configured search window."""

    def __init__(self, after: date, search_days: int) -> None:
        super().__init__(f"Could not find next service date within {search_days} days after {after.isoformat()}")
        self.after = after
        self.search_days = search_days


class CredentialRaceError(MealpassError):
    """Raised when an insert lost the race but the winning credential cannot be read back."""


class DispatchError(MealpassError):
    """Raised when a credential could not be delivered to the customer."""


class DispatchTimeoutError(DispatchError):
    """Raised when credential delivery exceeded its time budget."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Credential dispatch timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


__all__ = [
    "ConfigurationError",
    "CredentialRaceError",
    "DispatchError",
    "DispatchTimeoutError",
    "MealpassError",
    "ServiceDayNotFoundError",
    "StorageUnavailableError",
]
