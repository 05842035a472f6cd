"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("SETTLEMENT_ENV", "dev").lower()


class Settings(BaseSettings):
    """Environment configuration for the settlement backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///settlement.db"
    SECRET_KEY: str = "change-me"
    ALLOW_DB_CREATE_ALL: bool = False

    # --- PSP webhooks ----------------------------------------------------
    psp_webhook_secret: str | None = None
    psp_webhook_secret_next: str | None = None
    psp_webhook_max_drift_seconds: int = 180

    # --- Stripe ----------------------------------------------------------
    STRIPE_ENABLED: bool = False
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_CURRENCY: str = "jpy"

    # --- Lessons & settlement -------------------------------------------
    # Local time zone used for cancellation deadlines and monthly windows.
    LESSON_TIMEZONE: str = "Asia/Tokyo"

    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("psp_webhook_secret", "psp_webhook_secret_next")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty webhook secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "lesson-settlement-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
