from __future__ import annotations

import json
from datetime import date

import httpx
import pytest

from mealpass_api.core.settings import Settings
from mealpass_api.services.notifications import (
    InMemoryOperatorChannel,
    NullPeriodSubscription,
    OperatorAlertNotifier,
    SlackWebhookOperatorChannel,
    TelegramOperatorChannel,
    build_operator_notifier,
    format_job_error_alert,
    format_null_period_alert,
)

SERVICE_DATE = date(2026, 10, 20)


def test_job_error_alert_lists_first_five_failures() -> None:
    errors = [
        {"customer_id": f"cust-{index}", "email": f"diner{index}@example.com", "error": "Mailbox unavailable"}
        for index in range(7)
    ]

    alert = format_job_error_alert(
        job_name="Daily Credential Issuance",
        service_date=SERVICE_DATE,
        total_processed=40,
        errors=errors,
    )
    lines = alert.splitlines()

    assert lines[0] == "🚨 *Daily Credential Issuance Alert*"
    assert "*Date*: 2026-10-20" in lines
    assert "*Errors*: 7 of 40" in lines
    assert "*Affected customers*:" in lines
    bullets = [line for line in lines if line.startswith("• ")]
    assert bullets == [f"• diner{index}@example.com: Mailbox unavailable" for index in range(5)]
    assert "_+2 more_" in lines
    assert lines[-1] == "_Job completed with partial success_"


def test_job_error_alert_truncates_and_escapes() -> None:
    alert = format_job_error_alert(
        job_name="Daily Credential Issuance",
        service_date=SERVICE_DATE,
        total_processed=1,
        errors=[{"customer_id": "cust_1", "email": None, "error": "x" * 150}],
    )

    bullet = next(line for line in alert.splitlines() if line.startswith("• "))
    assert bullet == "• cust\\_1: " + "x" * 100
    assert "more_" not in alert


def test_null_period_alert_names_each_subscription() -> None:
    entries = [
        NullPeriodSubscription(
            subscription_id="sub-1",
            customer_id="cust-1",
            email="ada@example.com",
            external_subscription_id="ext-1",
        ),
        NullPeriodSubscription(
            subscription_id="sub-2",
            customer_id="cust-2",
            email=None,
            external_subscription_id=None,
        ),
    ]

    excluded = format_null_period_alert(entries)
    escalated = format_null_period_alert(entries, excluded=False)

    assert excluded.startswith("🚨 CRITICAL: 2 active subscriptions have missing billing period dates!")
    assert "will NOT receive meal codes" in excluded
    assert "- ada@example.com (ext-1)" in excluded
    assert "- cust-2 (sub-2)" in excluded
    assert "need manual review" in escalated


@pytest.mark.asyncio
async def test_notifier_survives_failing_channel() -> None:
    class BrokenChannel:
        name = "broken"

        async def post(self, text: str) -> None:
            raise RuntimeError("channel down")

    healthy = InMemoryOperatorChannel()
    notifier = OperatorAlertNotifier([BrokenChannel(), healthy])

    delivered = await notifier.send("hello operators")

    assert delivered is True
    assert healthy.messages == ["hello operators"]


@pytest.mark.asyncio
async def test_notifier_without_channels_reports_undelivered() -> None:
    assert await OperatorAlertNotifier([]).send("nobody listens") is False


@pytest.mark.asyncio
async def test_telegram_channel_posts_markdown_message() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"ok": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = TelegramOperatorChannel(bot_token="123:abc", chat_id="-100", http_client=client)
        await channel.post("*alert*")

    request = captured[0]
    assert str(request.url) == "https://api.telegram.org/bot123:abc/sendMessage"
    assert json.loads(request.content) == {"chat_id": "-100", "text": "*alert*", "parse_mode": "Markdown"}


@pytest.mark.asyncio
async def test_slack_channel_errors_surface_to_notifier() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = SlackWebhookOperatorChannel(webhook_url="https://hooks.slack.test/abc", http_client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await channel.post("alert")
        assert await OperatorAlertNotifier([channel]).send("alert") is False


def test_notifier_channels_follow_settings() -> None:
    none_configured = build_operator_notifier(Settings(telegram_bot_token=None, operator_slack_webhook_url=None))
    both = build_operator_notifier(
        Settings(
            telegram_bot_token="123:abc",
            telegram_admin_chat_id="-100",
            operator_slack_webhook_url="https://hooks.slack.test/abc",
        )
    )

    assert none_configured.channels == []
    assert [channel.name for channel in both.channels] == ["telegram", "slack"]
