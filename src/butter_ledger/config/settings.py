"""Configuration settings for the Butter ledger automation core."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EMAIL_TEMPLATE = (
    "Dear [Contact Name],\n\n"
    "Please find attached invoice [Invoice Number] for [Total].\n\n"
    "We appreciate your business.\n\n"
    "Best regards,\n"
    "Butter Invoicing Team"
)


class LedgerSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger store (Supabase / PostgREST)
    store_url: str = Field(
        default="http://localhost:54321", validation_alias="LEDGER_STORE_URL"
    )
    store_key: SecretStr = Field(
        default=SecretStr(""), validation_alias="LEDGER_STORE_KEY"
    )
    store_timeout: float = Field(default=30.0, validation_alias="LEDGER_STORE_TIMEOUT")
    store_max_retries: int = Field(default=3, validation_alias="LEDGER_STORE_MAX_RETRIES")

    # Wise bank feed
    wise_api_url: str = Field(default="https://api.wise.com", validation_alias="WISE_API_URL")
    wise_api_key: SecretStr | None = Field(default=None, validation_alias="WISE_API_KEY")
    wise_lookback_days: int = Field(default=90, validation_alias="WISE_LOOKBACK_DAYS")
    wise_transfer_limit: int = Field(default=100, validation_alias="WISE_TRANSFER_LIMIT")

    # Invoice delivery (webhook, e.g. a Google Apps Script mailer)
    delivery_webhook_url: str | None = Field(
        default=None, validation_alias="DELIVERY_WEBHOOK_URL"
    )
    delivery_timeout: float = Field(default=10.0, validation_alias="DELIVERY_TIMEOUT")
    email_template: str = Field(
        default=DEFAULT_EMAIL_TEMPLATE, validation_alias="EMAIL_TEMPLATE"
    )

    # Recurring invoices
    default_payment_terms: int = Field(
        default=14, gt=0, validation_alias="DEFAULT_PAYMENT_TERMS"
    )
    scheduler_run_hour: int = Field(
        default=6, ge=0, le=23, validation_alias="SCHEDULER_RUN_HOUR"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> LedgerSettings:
    """Get cached settings instance."""
    return LedgerSettings()
