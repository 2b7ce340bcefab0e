#!/usr/bin/env python3
"""Run the daily credential issuance pass once, outside the scheduler.

Intended usage: manual reruns after an incident, or a cron host without the API.

Example:
    python tooling/scripts/run_daily_issuance.py --date 2026-10-19

Use `--dry-run` to mint credentials and render emails without delivering them
(messages are captured by the in-memory backend). Credentials and entitlements
are still written, so a later real run re-dispatches the same codes.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Issue daily meal credentials")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Service date (YYYY-MM-DD). Defaults to today in the service time zone.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory email backend instead of real delivery.",
    )
    return parser.parse_args()


async def _run(service_date: date | None, dry_run: bool) -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from mealpass_api.db.session import async_session  # type: ignore import-position
    from mealpass_api.jobs.daily_credentials import build_orchestrator  # type: ignore import-position
    from mealpass_api.services.notifications import InMemoryEmailBackend  # type: ignore import-position

    email_backend = InMemoryEmailBackend() if dry_run else None
    orchestrator = build_orchestrator(session_factory=async_session, email_backend=email_backend)
    result = await orchestrator.run(service_date)
    if email_backend is not None:
        for message in email_backend.sent_messages:
            logger.info("Captured email", recipient=message["To"], subject=message["Subject"])
    return result.as_dict()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.date, args.dry_run))
    logger.bind(summary=summary).success(
        "Daily issuance run completed",
        status=summary["status"],
        issued=summary["issued"],
        errors=len(summary["errors"]),
        dry_run=args.dry_run,
    )
    return 1 if summary["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
