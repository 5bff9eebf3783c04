from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "test", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:3001"
    DEFAULT_CURRENCY: str = "USD"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Background jobs
    REDIS_URL: str = "redis://localhost:6379/0"

    # Auth
    # Placeholder keeps local/test runs working; real deployments override via env.
    AUTH_JWT_SECRET: str = "test-jwt-secret"

    # Hosted checkout (Stripe). Empty key disables the provider.
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Marketplace (Shopify)
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_API_VERSION: str = "2026-01"
    SHOPIFY_TIMEOUT: float = 30.0

    # Payment links
    PAYMENT_LINK_TTL_HOURS: int = 24

    # Collaborating services
    MESSAGING_SERVICE_URL: str = "http://messaging-service:8010"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def hosted_checkout_enabled(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
