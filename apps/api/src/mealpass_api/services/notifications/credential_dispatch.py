"""Deliver minted credentials to customers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date
from io import BytesIO
from uuid import UUID
from zoneinfo import ZoneInfo

import qrcode
from loguru import logger

from mealpass_api.core.errors import DispatchError, DispatchTimeoutError
from mealpass_api.models.credential import Credential

from .backend import EmailAttachment, EmailBackend
from .templates import render_daily_credential

QR_ATTACHMENT_NAME = "meal-code.png"


@dataclass(frozen=True, slots=True)
class CredentialRecipient:
    customer_id: UUID
    email: str
    name: str | None = None


def idempotency_key_for(customer_id: UUID, service_date: date) -> str:
    return f"daily-credential/{customer_id}/{service_date.isoformat()}"


def render_qr_png(data: str) -> bytes:
    """Encode ``data`` as a PNG QR image sized for phone screens and kiosk scanners."""

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=12,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class CredentialDispatcher:
    """Render and send the daily credential email under a bounded timeout."""

    def __init__(
        self,
        backend: EmailBackend,
        *,
        timezone: ZoneInfo,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._backend = backend
        self._tz = timezone
        self._timeout_seconds = timeout_seconds

    async def dispatch(self, recipient: CredentialRecipient, credential: Credential) -> None:
        if not recipient.email:
            raise DispatchError(f"Customer {recipient.customer_id} has no email address")
        if not credential.short_code:
            raise DispatchError(f"Credential {credential.token_id} has no short code")

        rendered = render_daily_credential(
            customer_name=recipient.name,
            service_date=credential.service_date,
            short_code=credential.short_code,
            expires_at=credential.expires_at,
            timezone=self._tz,
        )
        # The QR carries the short code, not the JWT, so it stays low-density.
        attachment = EmailAttachment(
            filename=QR_ATTACHMENT_NAME,
            content_type="image/png",
            payload=render_qr_png(credential.short_code),
        )
        key = idempotency_key_for(recipient.customer_id, credential.service_date)

        try:
            await asyncio.wait_for(
                self._backend.send_email(
                    recipient.email,
                    rendered.subject,
                    rendered.text_body,
                    body_html=rendered.html_body,
                    attachments=[attachment],
                    idempotency_key=key,
                ),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise DispatchTimeoutError(self._timeout_seconds) from exc

        logger.info(
            "Dispatched daily credential",
            customer_id=str(recipient.customer_id),
            service_date=credential.service_date.isoformat(),
            idempotency_key=key,
        )


__all__ = [
    "CredentialDispatcher",
    "CredentialRecipient",
    "QR_ATTACHMENT_NAME",
    "idempotency_key_for",
    "render_qr_png",
]
