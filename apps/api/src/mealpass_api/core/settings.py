import json
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./mealpass.db"

    # Service calendar
    service_timezone: str = "America/Los_Angeles"
    # Accepts "1,2,3,4,5" or "[1, 2, 3, 4, 5]" from the environment.
    service_days_default: Annotated[list[int], NoDecode] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    next_service_day_search_days: int = 7

    @field_validator("service_days_default", mode="before")
    @classmethod
    def _parse_service_days(cls, value: object) -> list[int]:
        if value is None:
            return []
        if isinstance(value, str) and value.strip().startswith("["):
            value = json.loads(value)
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",") if item.strip()]
        elif isinstance(value, (list, tuple, set)):
            items = list(value)
        else:
            return []
        days = sorted({int(item) for item in items})
        for day in days:
            if day < 0 or day > 6:
                raise ValueError(f"weekday index out of range: {day}")
        return days

    # Credential signing
    credential_private_key: str | None = None
    credential_private_key_base64: str | None = None
    credential_issuer: str = "mealpass-kiosk"
    short_code_length: int = 10

    # Issuance job
    issuance_concurrency: int = 4
    dispatch_timeout_seconds: float = 10.0
    issuance_hard_limit_seconds: float = 30.0
    issuance_soft_limit_ratio: float = 2 / 3
    null_period_policy: Literal["exclude", "escalate"] = "exclude"

    # Email delivery
    email_backend: Literal["resend", "smtp", "memory"] = "resend"
    resend_api_key: str | None = None
    resend_api_url: str = "https://api.resend.com/emails"
    email_sender: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True

    # Operator alerts
    telegram_bot_token: str | None = None
    telegram_admin_chat_id: str | None = None
    telegram_api_base_url: str = "https://api.telegram.org"
    operator_slack_webhook_url: str | None = None
    operator_slack_channel: str | None = None
    operator_alert_timeout_seconds: float = 10.0

    # Job scheduler
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    # Internal API security
    cron_secret: str = ""

    @property
    def issuance_soft_limit_seconds(self) -> float:
        return self.issuance_hard_limit_seconds * self.issuance_soft_limit_ratio


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
