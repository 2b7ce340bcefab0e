"""Email backend implementations for credential delivery."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import List, Optional, Protocol, Sequence

import httpx

from mealpass_api.core.errors import ConfigurationError, DispatchError
from mealpass_api.core.settings import Settings


@dataclass(slots=True)
class EmailAttachment:
    """Binary attachment payload for transactional emails."""

    filename: str
    content_type: str
    payload: bytes


class EmailBackend(Protocol):
    """Minimal protocol for sending transactional emails."""

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        attachments: Sequence[EmailAttachment] | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        ...


class ResendEmailBackend:
    """Backend posting to the Resend HTTP API.

    The idempotency key travels as the ``Idempotency-Key`` header so a
    transport-level retry is collapsed by the provider instead of delivered twice.
    """

    def __init__(
        self,
        *,
        api_key: str,
        sender_email: str,
        api_url: str = "https://api.resend.com/emails",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._sender_email = sender_email
        self._api_url = api_url
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        attachments: Sequence[EmailAttachment] | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        payload: dict[str, object] = {
            "from": self._sender_email,
            "to": [recipient],
            "subject": subject,
            "text": body_text,
        }
        if body_html:
            payload["html"] = body_html
        if attachments:
            payload["attachments"] = [
                {
                    "filename": attachment.filename,
                    "content": base64.b64encode(attachment.payload).decode("ascii"),
                    "content_type": attachment.content_type,
                }
                for attachment in attachments
            ]

        headers = {"Authorization": f"Bearer {self._api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            close_client = True

        try:
            response = await client.post(self._api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:200] if exc.response is not None else ""
            raise DispatchError(f"Email provider rejected message ({exc.response.status_code}): {detail}") from exc
        except httpx.HTTPError as exc:
            raise DispatchError(f"Email provider unreachable: {exc}") from exc
        finally:
            if close_client:
                await client.aclose()


class SMTPEmailBackend:
    """SMTP-powered backend that sends emails via standard library."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        sender_email: str,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._sender_email = sender_email

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        attachments: Sequence[EmailAttachment] | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        """Send email asynchronously by offloading the blocking SMTP session."""

        message = _build_message(recipient, subject, body_text, body_html, attachments)
        message["From"] = self._sender_email
        message["Message-ID"] = message_id_for(idempotency_key, self._sender_email)

        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DispatchError(f"SMTP delivery failed: {exc}") from exc

    def _send(self, message: EmailMessage) -> None:
        smtp = smtplib.SMTP(self._host, self._port, timeout=10)
        try:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
        finally:
            smtp.quit()


@dataclass
class InMemoryEmailBackend:
    """Test backend storing outbound messages in memory."""

    sent_messages: List[EmailMessage]
    idempotency_keys: List[str | None]

    def __init__(self) -> None:
        self.sent_messages = []
        self.idempotency_keys = []

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        attachments: Sequence[EmailAttachment] | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        message = _build_message(recipient, subject, body_text, body_html, attachments)
        self.sent_messages.append(message)
        self.idempotency_keys.append(idempotency_key)


def build_email_backend(settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> EmailBackend:
    """Select the email transport named by ``settings.email_backend``."""

    if settings.email_backend == "memory":
        return InMemoryEmailBackend()
    if not settings.email_sender:
        raise ConfigurationError("EMAIL_SENDER must be configured for outbound email")
    if settings.email_backend == "smtp":
        if not settings.smtp_host:
            raise ConfigurationError("SMTP_HOST must be configured when EMAIL_BACKEND=smtp")
        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.email_sender,
        )
    if not settings.resend_api_key:
        raise ConfigurationError("RESEND_API_KEY must be configured when EMAIL_BACKEND=resend")
    return ResendEmailBackend(
        api_key=settings.resend_api_key,
        sender_email=settings.email_sender,
        api_url=settings.resend_api_url,
        http_client=http_client,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )


def message_id_for(idempotency_key: str | None, sender_email: str) -> str:
    """Stable ``Message-ID`` so MTAs can deduplicate retried sends."""

    domain = sender_email.rsplit("@", 1)[-1].strip("> ") or "localhost"
    if not idempotency_key:
        return make_msgid(domain=domain)
    digest = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()[:32]
    return f"<{digest}@{domain}>"


def _build_message(
    recipient: str,
    subject: str,
    body_text: str,
    body_html: str | None,
    attachments: Sequence[EmailAttachment] | None,
) -> EmailMessage:
    message = EmailMessage()
    message["To"] = recipient
    message["Subject"] = subject
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    _attach_files(message, attachments)
    return message


def _attach_files(message: EmailMessage, attachments: Sequence[EmailAttachment] | None) -> None:
    if not attachments:
        return
    for attachment in attachments:
        content_type = attachment.content_type or "application/octet-stream"
        if "/" in content_type:
            maintype, subtype = content_type.split("/", 1)
        else:
            maintype, subtype = "application", "octet-stream"
        message.add_attachment(
            attachment.payload,
            maintype=maintype,
            subtype=subtype,
            filename=attachment.filename,
        )


__all__ = [
    "EmailAttachment",
    "EmailBackend",
    "InMemoryEmailBackend",
    "ResendEmailBackend",
    "SMTPEmailBackend",
    "build_email_backend",
    "message_id_for",
]
