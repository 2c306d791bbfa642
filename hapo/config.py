"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. The .env file is gitignored.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from hapo.config import settings
    print(settings.SECRET_KEY)
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Hapo API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT access tokens
      - CODE_ENCRYPTION_KEY: Fernet key for encrypting pending verification codes at rest
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Hapo API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # The SQLite file is the local fallback store; point this at a hosted
    # PostgreSQL instance (postgresql+asyncpg://...) for the shared backend.
    DATABASE_URL: str = "sqlite+aiosqlite:///./hapo.db"

    # --- Authentication ---
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # --- Verification codes ---
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    CODE_ENCRYPTION_KEY: str
    EMAIL_CODE_EXPIRE_MINUTES: int = 10
    MFA_CODE_EXPIRE_MINUTES: int = 5

    # --- Code delivery ---
    DELIVERY_BACKEND: Literal["log", "smtp"] = "log"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_SENDER: str = "no-reply@hapo.app"
    SMTP_USE_TLS: bool = True
    DELIVERY_RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 0.2

    # --- Dashboard balance refresh ---
    # Exactly one channel feeds the live balance view per deployment.
    BALANCE_UPDATE_CHANNEL: Literal["poll", "push"] = "poll"
    BALANCE_POLL_SECONDS: float = 10.0
    BALANCE_POLL_RETRY_ATTEMPTS: int = 3

    # --- Child account defaults (cents) ---
    DEFAULT_WEEKLY_LIMIT_CENTS: int = 5000
    DEFAULT_DAILY_LIMIT_CENTS: int = 1000

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
