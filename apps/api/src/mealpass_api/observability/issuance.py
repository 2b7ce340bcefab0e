"""In-process counters for daily credential issuance runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IssuanceSnapshot:
    totals: Dict[str, int]
    last_run: Dict[str, Any] | None
    last_run_at: datetime | None
    last_fatal_error: str | None
    last_fatal_error_at: datetime | None
    degraded_calendar_reads: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "last_run": self.last_run,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_fatal_error": self.last_fatal_error,
            "last_fatal_error_at": self.last_fatal_error_at.isoformat() if self.last_fatal_error_at else None,
            "degraded_calendar_reads": self.degraded_calendar_reads,
        }


@dataclass
class _IssuanceState:
    totals: Dict[str, int] = field(
        default_factory=lambda: {
            "runs": 0,
            "skipped_runs": 0,
            "partial_runs": 0,
            "fatal_runs": 0,
            "eligible": 0,
            "issued": 0,
            "not_allowed": 0,
            "created": 0,
            "existing": 0,
            "repaired": 0,
            "race_lost": 0,
            "errors": 0,
            "null_period_alerts": 0,
            "soft_deadline_breaches": 0,
        }
    )
    last_run: Dict[str, Any] | None = None
    last_run_at: datetime | None = None
    last_fatal_error: str | None = None
    last_fatal_error_at: datetime | None = None
    degraded_calendar_reads: int = 0


class IssuanceObservabilityStore:
    """Aggregates issuance outcomes for the observability endpoint."""

    def __init__(self) -> None:
        self._lock: Lock = Lock()
        self._state = _IssuanceState()

    def reset(self) -> None:
        with self._lock:
            self._state = _IssuanceState()

    def record_mint_outcome(self, outcome: str) -> None:
        with self._lock:
            if outcome in self._state.totals:
                self._state.totals[outcome] += 1

    def record_not_allowed(self) -> None:
        with self._lock:
            self._state.totals["not_allowed"] += 1

    def record_null_period_alert(self) -> None:
        with self._lock:
            self._state.totals["null_period_alerts"] += 1

    def record_soft_deadline_breach(self) -> None:
        with self._lock:
            self._state.totals["soft_deadline_breaches"] += 1

    def record_degraded_calendar_read(self) -> None:
        with self._lock:
            self._state.degraded_calendar_reads += 1

    def record_run(self, summary: Dict[str, Any]) -> None:
        with self._lock:
            totals = self._state.totals
            totals["runs"] += 1
            if summary.get("skipped"):
                totals["skipped_runs"] += 1
            errors = summary.get("errors") or []
            if errors:
                totals["partial_runs"] += 1
            totals["eligible"] += int(summary.get("eligible", 0))
            totals["issued"] += int(summary.get("issued", 0))
            totals["errors"] += len(errors)
            self._state.last_run = dict(summary)
            self._state.last_run_at = _utcnow()

    def record_fatal(self, error: str) -> None:
        with self._lock:
            self._state.totals["fatal_runs"] += 1
            self._state.last_fatal_error = error
            self._state.last_fatal_error_at = _utcnow()

    def snapshot(self) -> IssuanceSnapshot:
        with self._lock:
            state = self._state
            return IssuanceSnapshot(
                totals=dict(state.totals),
                last_run=dict(state.last_run) if state.last_run is not None else None,
                last_run_at=state.last_run_at,
                last_fatal_error=state.last_fatal_error,
                last_fatal_error_at=state.last_fatal_error_at,
                degraded_calendar_reads=state.degraded_calendar_reads,
            )


_ISSUANCE_STORE = IssuanceObservabilityStore()


def get_issuance_store() -> IssuanceObservabilityStore:
    return _ISSUANCE_STORE


__all__ = ["IssuanceObservabilityStore", "IssuanceSnapshot", "get_issuance_store"]
