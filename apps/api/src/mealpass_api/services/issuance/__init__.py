"""Daily credential issuance."""

from .orchestrator import CustomerError, DailyIssuanceOrchestrator, IssuanceResult

__all__ = ["CustomerError", "DailyIssuanceOrchestrator", "IssuanceResult"]
