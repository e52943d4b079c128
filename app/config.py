"""
Invoicemonk - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "Invoicemonk"
    app_env: str = "development"
    debug: bool = False
    api_version: str = "v1"
    base_url: str = "http://localhost:8000"  # Used for public verification links

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str = "sqlite+aiosqlite:///./invoicemonk.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ===========================================
    # JWT AUTHENTICATION
    # ===========================================
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # ===========================================
    # REDIS / CELERY CONFIGURATION
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"
    reconciliation_interval_minutes: int = 60

    # ===========================================
    # SUBSCRIPTION WEBHOOKS
    # ===========================================
    webhook_secret: str = "change-me-in-production"

    # ===========================================
    # COMPLIANCE / INTEGRITY
    # ===========================================
    # Strict mode commits the audit entry atomically with the transition.
    # When disabled, audit failures are logged at CRITICAL and do not
    # roll back the transition.
    audit_strict_mode: bool = True
    default_retention_years: int = 7
    void_reason_min_length: int = 10
    payment_max_amount: Decimal = Decimal("999999999.99")

    # ===========================================
    # CORS
    # ===========================================
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def is_sqlite(self) -> bool:
        """SQLite is used for local development and the test suite."""
        return self.database_url_async.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
