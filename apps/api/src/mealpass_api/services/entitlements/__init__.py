"""Entitlement ledger service."""

from .ledger import EntitlementLedger

__all__ = ["EntitlementLedger"]
