"""Scheduled entrypoint for the daily credential issuance run."""

from __future__ import annotations

from datetime import date
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.core.settings import Settings, get_settings
from mealpass_api.core.timezone import resolve_zone
from mealpass_api.services.issuance import DailyIssuanceOrchestrator
from mealpass_api.services.notifications import (
    CredentialDispatcher,
    EmailBackend,
    OperatorAlertNotifier,
    build_email_backend,
    build_operator_notifier,
)

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


def build_orchestrator(
    *,
    session_factory: SessionFactory,
    settings: Settings | None = None,
    email_backend: EmailBackend | None = None,
    notifier: OperatorAlertNotifier | None = None,
) -> DailyIssuanceOrchestrator:
    """Wire the orchestrator from settings; collaborators may be overridden."""

    resolved = settings or get_settings()
    dispatcher = CredentialDispatcher(
        email_backend or build_email_backend(resolved),
        timezone=resolve_zone(resolved.service_timezone),
        timeout_seconds=resolved.dispatch_timeout_seconds,
    )
    return DailyIssuanceOrchestrator(
        session_factory,
        settings=resolved,
        dispatcher=dispatcher,
        notifier=notifier or build_operator_notifier(resolved),
    )


async def issue_daily_credentials(
    *,
    session_factory: SessionFactory,
    service_date: date | str | None = None,
) -> Dict[str, Any]:
    """Run one issuance pass and return its summary.

    Configuration and storage failures propagate so the scheduler records the
    run as failed; per-customer failures are reported in ``errors``.
    """

    if isinstance(service_date, str):
        service_date = date.fromisoformat(service_date)

    orchestrator = build_orchestrator(session_factory=session_factory)
    result = await orchestrator.run(service_date)
    summary = result.as_dict()
    logger.bind(summary=summary).info("Daily credential job finished", status=result.status)
    return summary


__all__ = ["build_orchestrator", "issue_daily_credentials"]
