"""Credential delivery and operator alerting."""

from .backend import (
    EmailAttachment,
    EmailBackend,
    InMemoryEmailBackend,
    ResendEmailBackend,
    SMTPEmailBackend,
    build_email_backend,
)
from .credential_dispatch import CredentialDispatcher, CredentialRecipient, idempotency_key_for
from .operator_alerts import (
    InMemoryOperatorChannel,
    NullPeriodSubscription,
    OperatorAlertNotifier,
    SlackWebhookOperatorChannel,
    TelegramOperatorChannel,
    build_operator_notifier,
    format_job_error_alert,
    format_null_period_alert,
)
from .templates import RenderedTemplate, render_daily_credential

__all__ = [
    "CredentialDispatcher",
    "CredentialRecipient",
    "EmailAttachment",
    "EmailBackend",
    "InMemoryEmailBackend",
    "InMemoryOperatorChannel",
    "NullPeriodSubscription",
    "OperatorAlertNotifier",
    "RenderedTemplate",
    "ResendEmailBackend",
    "SMTPEmailBackend",
    "SlackWebhookOperatorChannel",
    "TelegramOperatorChannel",
    "build_email_backend",
    "build_operator_notifier",
    "format_job_error_alert",
    "format_null_period_alert",
    "idempotency_key_for",
    "render_daily_credential",
]
