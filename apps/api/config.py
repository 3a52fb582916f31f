"""
Application configuration using Pydantic Settings.
"""

from decimal import Decimal
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service
    SERVICE_NAME: str = "Subscription Key Service"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = ""
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./credentials.db"
    AUTO_CREATE_DB_SCHEMA: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Identity tokens
    JWT_SECRET_CLOUD: str = ""
    JWT_ALGORITHM: str = "HS256"

    # Upstream key provider
    PROVISIONING_API_KEY: str = ""
    PROVIDER_KEYS_URL: str = "https://openrouter.ai/api/v1/keys"
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # Credit policy
    INITIAL_CREDITS: Decimal = Decimal("10.0")
    KEY_DAILY_LIMIT: Decimal = Decimal("1.0")
    CREDIT_RESET_THRESHOLD: Decimal = Decimal("0.1")
    KEY_ROTATION_THRESHOLD: Decimal = Decimal("0.5")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def missing_required_settings() -> List[str]:
    """Return the names of secrets that must be set before keys can be served."""
    missing = []
    if not (settings.JWT_SECRET_CLOUD or "").strip():
        missing.append("JWT_SECRET_CLOUD")
    if not (settings.PROVISIONING_API_KEY or "").strip():
        missing.append("PROVISIONING_API_KEY")
    return missing
