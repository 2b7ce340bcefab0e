"""Notification templates for the daily meal credential."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from mealpass_api.core.timezone import ensure_utc
from mealpass_api.services.credentials.short_code import format_short_code


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def _clean_name(value: str | None) -> str:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return "there"


def _format_expiry(expires_at: datetime, tz: ZoneInfo) -> str:
    local = ensure_utc(expires_at).astimezone(tz)
    # %-I is not portable; strip the leading zero manually.
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{hour}:{local.strftime('%M %p')} {local.tzname()}"


def render_daily_credential(
    *,
    customer_name: str | None,
    service_date: date,
    short_code: str,
    expires_at: datetime,
    timezone: ZoneInfo,
) -> RenderedTemplate:
    weekday = service_date.strftime("%A")
    long_date = f"{service_date.strftime('%B')} {service_date.day}, {service_date.year}"
    display_code = format_short_code(short_code)
    expiry_label = _format_expiry(expires_at, timezone)
    name = _clean_name(customer_name)

    subject = f"Your meal code for {weekday}"

    text_lines = [
        f"Hi {name}!",
        "",
        f"Here is your meal code for {weekday}, {long_date}.",
        "Scan the attached QR image at any kiosk, or type the code below.",
        "",
        f"Code: {display_code}",
        f"Expires: tonight at {expiry_label}",
        "",
        "Need to skip a day? Use /skip in Telegram before the cutoff.",
    ]

    escaped_name = html.escape(name)
    html_body = f"""
<html>
  <body style="font-family: Arial, sans-serif; color: #1f2937; max-width: 600px; margin: 0 auto;">
    <h2 style="margin-bottom: 4px;">Your meal code for {html.escape(weekday)}</h2>
    <p style="margin-top: 0; color: #6b7280;">{html.escape(long_date)}</p>
    <p>Hi {escaped_name}!</p>
    <p>Scan the attached QR image at any kiosk, or type the code below.</p>
    <p style="font-size: 28px; font-weight: bold; letter-spacing: 4px;">{html.escape(display_code)}</p>
    <p style="background: #fef3c7; padding: 12px; border-left: 4px solid #f59e0b;">
      <strong>Expires:</strong> tonight at {html.escape(expiry_label)}
    </p>
    <p style="color: #6b7280;">Need to skip a day? Use <code>/skip</code> in Telegram before the cutoff.</p>
  </body>
</html>
""".strip()

    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)


__all__ = ["RenderedTemplate", "render_daily_credential"]
