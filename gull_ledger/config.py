"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "GULL Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = _env_bool("DEBUG", "false")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./gull_ledger.db"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Ledger behaviour
    # When the store reports a transient failure, keep the write in the
    # pending cache and reconcile later instead of failing the entry.
    OFFLINE_FALLBACK: bool = _env_bool("OFFLINE_FALLBACK", "true")
    HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "100"))
    DEFAULT_OWNER_SCOPE: str = os.getenv("DEFAULT_OWNER_SCOPE", "user-scope")


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls.
    """
    return Settings()
