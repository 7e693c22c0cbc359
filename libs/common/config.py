from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    SERVICE_NAME: str = "commerce_service"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Auth
    # Placeholder keeps local/test runs working; real deployments override via env.
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Checkout
    CHECKOUT_SESSION_TTL_MINUTES: int = 10
    COD_MAX_AMOUNT: Decimal = Decimal("500.00")
    ONLINE_PAYMENT_MIN_AMOUNT: Decimal = Decimal("10.00")
    CHECKOUT_CURRENCY: str = "myr"
    CHECKOUT_TAX_RATE: Decimal = Decimal("0")

    # Payment gateway
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    PAYMENT_WEBHOOK_SECRET: str = ""

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Microservices URLs
    CATALOG_SERVICE_URL: str = "http://catalog-service:8011"
    MEMBERS_SERVICE_URL: str = "http://members-service:8001"
    COMMUNICATIONS_SERVICE_URL: str = "http://communications-service:8004"
    PAYMENTS_SERVICE_URL: str = "http://payments-service:8005"

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


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
