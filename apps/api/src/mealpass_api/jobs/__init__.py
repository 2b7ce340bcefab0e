"""Recurring job entrypoints."""

__all__ = ["daily_credentials"]
