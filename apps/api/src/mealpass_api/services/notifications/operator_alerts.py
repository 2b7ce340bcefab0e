"""Out-of-band alerts for the people operating the issuance job."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Protocol, Sequence

import httpx
from loguru import logger

from mealpass_api.core.settings import Settings

ERROR_MESSAGE_LIMIT = 100
_MARKDOWN_SPECIALS = re.compile(r"([_*\[\]`])")


class OperatorChannel(Protocol):
    name: str

    async def post(self, text: str) -> None:
        ...


class TelegramOperatorChannel:
    """Posts alerts through the Telegram Bot API ``sendMessage`` method."""

    name = "telegram"

    def __init__(
        self,
        *,
        bot_token: str,
        chat_id: str,
        api_base_url: str = "https://api.telegram.org",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._url = f"{api_base_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    async def post(self, text: str) -> None:
        payload = {"chat_id": self._chat_id, "text": text, "parse_mode": "Markdown"}
        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            close_client = True
        try:
            response = await client.post(self._url, json=payload)
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


class SlackWebhookOperatorChannel:
    name = "slack"

    def __init__(
        self,
        *,
        webhook_url: str,
        channel: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    async def post(self, text: str) -> None:
        payload: dict[str, Any] = {"text": text}
        if self._channel:
            payload["channel"] = self._channel
        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            close_client = True
        try:
            response = await client.post(self._webhook_url, json=payload)
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


@dataclass
class InMemoryOperatorChannel:
    """Test channel recording every alert text."""

    name: str = "memory"
    messages: list[str] = field(default_factory=list)

    async def post(self, text: str) -> None:
        self.messages.append(text)


class OperatorAlertNotifier:
    """Fan an alert out to every configured operator channel.

    Alerting is best effort: channel failures are logged and never raised, so a
    broken notification path cannot change the outcome the job reports.
    """

    def __init__(self, channels: Sequence[OperatorChannel] | None = None) -> None:
        self._channels = list(channels or [])

    @property
    def channels(self) -> list[OperatorChannel]:
        return list(self._channels)

    async def send(self, text: str) -> bool:
        if not self._channels:
            logger.warning("Operator alert dropped; no channels configured", alert=text[:200])
            return False

        delivered = False
        for channel in self._channels:
            try:
                await channel.post(text)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Operator alert dispatch failed", channel=channel.name, error=str(exc))
                continue
            delivered = True
        return delivered


def build_operator_notifier(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> OperatorAlertNotifier:
    channels: list[OperatorChannel] = []
    if settings.telegram_bot_token and settings.telegram_admin_chat_id:
        channels.append(
            TelegramOperatorChannel(
                bot_token=settings.telegram_bot_token,
                chat_id=settings.telegram_admin_chat_id,
                api_base_url=settings.telegram_api_base_url,
                http_client=http_client,
                timeout_seconds=settings.operator_alert_timeout_seconds,
            )
        )
    if settings.operator_slack_webhook_url:
        channels.append(
            SlackWebhookOperatorChannel(
                webhook_url=settings.operator_slack_webhook_url,
                channel=settings.operator_slack_channel,
                http_client=http_client,
                timeout_seconds=settings.operator_alert_timeout_seconds,
            )
        )
    return OperatorAlertNotifier(channels)


def _escape_markdown(value: str) -> str:
    return _MARKDOWN_SPECIALS.sub(r"\\\1", value)


def format_job_error_alert(
    *,
    job_name: str,
    service_date: date,
    total_processed: int,
    errors: Sequence[Mapping[str, Any]],
    max_errors_to_show: int = 5,
) -> str:
    """Summarise per-customer failures for the operator channel."""

    lines = [
        f"🚨 *{job_name} Alert*",
        "",
        f"*Date*: {service_date.isoformat()}",
        f"*Errors*: {len(errors)} of {total_processed}",
    ]
    if errors:
        lines.append("")
        lines.append("*Affected customers*:")
        for entry in errors[:max_errors_to_show]:
            identifier = entry.get("email") or entry.get("customer_id") or "Unknown"
            message = str(entry.get("error") or "Unknown error")[:ERROR_MESSAGE_LIMIT]
            lines.append(f"• {_escape_markdown(str(identifier))}: {_escape_markdown(message)}")
        hidden = len(errors) - max_errors_to_show
        if hidden > 0:
            lines.append("")
            lines.append(f"_+{hidden} more_")

    lines.append("")
    lines.append("_Job completed with partial success_")
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class NullPeriodSubscription:
    subscription_id: str
    customer_id: str
    email: str | None
    external_subscription_id: str | None


def format_null_period_alert(subscriptions: Iterable[NullPeriodSubscription], *, excluded: bool = True) -> str:
    entries = list(subscriptions)
    consequence = (
        "These customers will NOT receive meal codes:"
        if excluded
        else "These customers were recorded as errors and need manual review:"
    )
    lines = [
        f"🚨 CRITICAL: {len(entries)} active subscriptions have missing billing period dates!",
        "",
        consequence,
    ]
    for entry in entries:
        identifier = entry.email or entry.customer_id
        reference = entry.external_subscription_id or entry.subscription_id
        lines.append(f"- {_escape_markdown(identifier)} ({_escape_markdown(reference)})")
    return "\n".join(lines)


__all__ = [
    "InMemoryOperatorChannel",
    "NullPeriodSubscription",
    "OperatorAlertNotifier",
    "OperatorChannel",
    "SlackWebhookOperatorChannel",
    "TelegramOperatorChannel",
    "build_operator_notifier",
    "format_job_error_alert",
    "format_null_period_alert",
]
