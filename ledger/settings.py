"""
Runtime settings for the ledger and commission services.

Values come from ``LEDGER_*`` environment variables or an optional ``.env``
file, e.g. ``LEDGER_DEFAULT_COMMISSION_RATE=0.12``.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LEDGER_", env_file=".env", extra="ignore")

    default_commission_rate: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    currency: str = "USD"
    attribution_window_months: int = Field(default=12, ge=1)

    api_title: str = "Commission Ledger API"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    seed_demo_data: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
