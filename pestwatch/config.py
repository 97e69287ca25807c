"""
Configuration Management

Centralized configuration from environment variables with sensible defaults.
"""

import os
import secrets


class Config:
    """Application configuration."""

    # Environment
    ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

    # JWT verification (tokens are issued by the external identity provider)
    JWT_SECRET_KEY = os.environ.get(
        "JWT_SECRET_KEY",
        secrets.token_urlsafe(32) if ENVIRONMENT == "development" else None
    )
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

    # CORS
    ALLOWED_ORIGINS = os.environ.get(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")

    # Trusted hosts (production only)
    ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "").split(",") if ENVIRONMENT == "production" else []

    # Document store
    STORE_BACKEND = os.environ.get("STORE_BACKEND", "sql")
    DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./data/pestwatch.db")
    DATA_FILE = os.environ.get("DATA_FILE", "")

    # Aggregation cache
    CACHE_TTL_MINUTES = float(os.environ.get("CACHE_TTL_MINUTES", "5"))

    # Server
    HOST = os.environ.get("HOST", "0.0.0.0")
    PORT = int(os.environ.get("PORT", "8000"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "info")
    LOG_JSON = os.environ.get("LOG_JSON", "false").lower() == "true"

    @classmethod
    def validate(cls):
        """Validate configuration and raise errors for missing required values."""
        if cls.ENVIRONMENT == "production" and not cls.JWT_SECRET_KEY:
            raise ValueError(
                "JWT_SECRET_KEY environment variable must be set in production. "
                "It must match the key used by the identity provider."
            )
        if cls.STORE_BACKEND not in ("json", "sql"):
            raise ValueError(
                f"STORE_BACKEND must be 'json' or 'sql', got {cls.STORE_BACKEND!r}"
            )
        if cls.CACHE_TTL_MINUTES < 0:
            raise ValueError("CACHE_TTL_MINUTES must not be negative")

    @classmethod
    def store_config(cls) -> dict:
        """Backend-specific settings for ``create_store``."""
        if cls.STORE_BACKEND == "json":
            return {"state_file": cls.DATA_FILE or None}
        return {"database_url": cls.DATABASE_URL}


def get_config() -> Config:
    """Get validated configuration."""
    Config.validate()
    return Config
