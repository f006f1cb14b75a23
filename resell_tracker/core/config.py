from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Iterable

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AppSettings(BaseSettings):
    """Environment-driven application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Resell Tracker"
    APP_URL: str = "http://localhost:8089"
    BASE_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parent.parent.parent)
    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parent.parent.parent / "data")
    LOG_LEVEL: str = "INFO"
    # Read raw so a comma separated value is not mistaken for JSON.
    ALLOWED_ORIGINS: Annotated[list[str], NoDecode] = Field(default_factory=list)

    DB_URL: str = Field(default="", validation_alias=AliasChoices("DATABASE_URL", "DB_URL"))

    IDENTITY_JWT_SECRET: str = "change-me"
    IDENTITY_JWT_ISSUER: str = "resell-tracker-identity"
    IDENTITY_JWT_AUDIENCE: str = "resell-tracker"
    IDENTITY_JWT_ALGORITHM: str = "HS256"
    SESSION_COOKIE_NAME: str = "__session"
    SIGN_IN_PATH: str = "/login"
    PRICING_PATH: str = "/pricing"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_PRICE_TRIAL: str = "price_trial"
    STRIPE_PRICE_MONTHLY: str = "price_monthly"
    STRIPE_PRICE_YEARLY: str = "price_yearly"
    BILLING_TIMEOUT_SECONDS: float = 15.0
    TRIAL_DAYS: int = 14
    TRIAL_WARNING_DAYS: int = 3

    FX_PROVIDER_URL: str = "https://open.er-api.com/v6/latest/USD"
    FX_CACHE_TTL_HOURS: float = 12.0
    FX_TIMEOUT_SECONDS: float = 10.0

    LISTING_IMPORT_TIMEOUT_SECONDS: float = 10.0
    LISTING_IMPORT_MAX_REDIRECTS: int = 5

    HOST: str = "0.0.0.0"
    PORT: int = 8089

    @property
    def database_url(self) -> str:
        return self.DB_URL or f"sqlite:///{self.DATA_DIR / 'data.db'}"

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                value = json.loads(text)
            else:
                return [item.strip() for item in text.split(",") if item.strip()]
        if isinstance(value, Iterable):
            return [str(item).strip() for item in value if str(item).strip()]
        raise TypeError("ALLOWED_ORIGINS must be a comma separated string or list")


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    settings = AppSettings()
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    return settings


settings = get_settings()
