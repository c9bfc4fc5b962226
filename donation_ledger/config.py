"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite:///./donation_ledger.db"

    # Stripe webhook verification
    stripe_webhook_secret: Optional[str] = None
    stripe_webhook_tolerance: int = Field(default=300, ge=0)

    # Reconciliation policy
    sponsorship_split_policy: Literal["full", "proportional"] = "full"
    unmapped_title_max_length: int = Field(default=100, ge=1)
    merge_chain_max_depth: int = Field(default=32, ge=1)

    # Application
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
