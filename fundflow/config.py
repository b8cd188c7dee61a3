"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("FUNDFLOW_ENV", "dev").lower()

# Continental bounding box accepted for validator GPS fixes.
GPS_LAT_MIN = -35.0
GPS_LAT_MAX = 37.0
GPS_LNG_MIN = -18.0
GPS_LNG_MAX = 52.0


class Settings(BaseSettings):
    """Environment configuration for the FundFlow backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///fundflow.db"
    ALLOW_DB_CREATE_ALL: bool = False
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://fundflow.africa",
        "https://app.fundflow.africa",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"

    # --- Consensus -------------------------------------------------------
    CONSENSUS_REQUIRED_VALIDATIONS: int = Field(default=3, ge=1)
    CONSENSUS_RATING_THRESHOLD: Decimal = Decimal("4.0")
    ALLOW_DUPLICATE_VALIDATOR_VOTES: bool = True
    AUTO_REJECT_LOW_CONSENSUS: bool = False

    # --- Fund release ----------------------------------------------------
    FUND_RELEASE_URL: str | None = None
    FUND_RELEASE_API_KEY: str | None = None
    FUND_RELEASE_TIMEOUT_SECONDS: float = 10.0
    # A pending release claim older than this is treated as abandoned.
    FUND_RELEASE_CLAIM_TTL_SECONDS: int = Field(default=300, ge=1)

    # --- Impact metrics --------------------------------------------------
    IMPACT_METRICS_MAX_RETRIES: int = Field(default=5, ge=1)
    IMPACT_ON_MILESTONE_COMPLETION: bool = False

    # --- Side calls ------------------------------------------------------
    PHOTO_CHECK_ENABLED: bool = True
    PHOTO_CHECK_TIMEOUT_SECONDS: float = 5.0
    SMS_PROVIDER_API: str | None = None
    SMS_PROVIDER_AUTH_TOKEN: str | None = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0
    CURRENCY_API_URL: str = "https://api.exchangerate-api.com/v4/latest"
    CURRENCY_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CURRENCY_API_KEY", "AFRICAN_CURRENCIES_API"),
    )
    CURRENCY_API_TIMEOUT_SECONDS: float = 5.0

    # --- Payment providers ----------------------------------------------
    STRIPE_ENABLED: bool = True
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    mobile_money_webhook_secret: str | None = None
    mobile_money_webhook_secret_next: str | None = None
    webhook_max_drift_seconds: int = 300

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator(
        "mobile_money_webhook_secret",
        "mobile_money_webhook_secret_next",
        "STRIPE_WEBHOOK_SECRET",
    )
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty webhook secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "fundflow-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "GPS_LAT_MIN",
    "GPS_LAT_MAX",
    "GPS_LNG_MIN",
    "GPS_LNG_MAX",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
