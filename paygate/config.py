"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("PAYGATE_ENV", "dev").lower()


class Settings(BaseSettings):
    """Environment configuration for the payment integration layer."""

    app_env: str = Field(default=ENV, validation_alias=AliasChoices("PAYGATE_ENV", "APP_ENV"))
    database_url: str = "sqlite:///paygate.db"
    ALLOW_DB_CREATE_ALL: bool = False

    # Public base URLs substituted into callback/redirect URLs sent to providers.
    BACKEND_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"

    # --- Provider endpoints ----------------------------------------------
    RAZORPAY_API_URL: str = "https://api.razorpay.com"
    PHONEPE_API_URL: str = "https://api.phonepe.com/apis/hermes"
    PAYTM_API_URL: str = "https://securegw.paytm.in"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # --- Webhooks --------------------------------------------------------
    WEBHOOK_DEDUP_RETENTION_DAYS: int = 14

    # --- Observability ---------------------------------------------------
    METRICS_ENABLED: bool = True
    PROMETHEUS_ENABLED: bool = True
    SENTRY_DSN: str | None = None
    LOG_LEVEL: str = "INFO"

    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", populate_by_name=True
    )

    @field_validator("BACKEND_URL", "FRONTEND_URL", "RAZORPAY_API_URL", "PHONEPE_API_URL", "PAYTM_API_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        """Normalise base URLs so path joins never produce ``//``."""

        return value.strip().rstrip("/")

    @field_validator("SENTRY_DSN")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("PROVIDER_TIMEOUT_SECONDS")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("PROVIDER_TIMEOUT_SECONDS must be positive")
        return value


class AppInfo(BaseModel):
    name: str = "paygate"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = [
    "ENV",
    "Settings",
    "AppInfo",
    "get_settings",
]
