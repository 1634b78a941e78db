"""
AssetDesk configuration. All environment variables in one place.

Read from environment at runtime. Never hardcode secrets.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = int(os.environ.get("DB_POOL_MIN_SIZE", "2"))
    DB_POOL_MAX_SIZE: int = int(os.environ.get("DB_POOL_MAX_SIZE", "20"))

    # API (used by the client-side ApiStore)
    API_URL: str = os.environ.get("ASSETDESK_API_URL", "http://localhost:8000")
    API_TIMEOUT_SECONDS: float = float(os.environ.get("API_TIMEOUT_SECONDS", "30"))

    # Optimistic commits
    COMMIT_TIMEOUT_SECONDS: float = float(os.environ.get("COMMIT_TIMEOUT_SECONDS", "15"))
    AUDIT_RETRY_ATTEMPTS: int = int(os.environ.get("AUDIT_RETRY_ATTEMPTS", "3"))
    AUDIT_RETRY_DELAY_SECONDS: float = float(os.environ.get("AUDIT_RETRY_DELAY_SECONDS", "1.0"))

    # Inventory
    LOW_STOCK_ALERT_LIMIT: int = int(os.environ.get("LOW_STOCK_ALERT_LIMIT", "50"))

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")


# Singleton instance
settings = Settings()

# Validate required settings (skip in test mode)
_testing = os.environ.get("TESTING", "").lower() == "true"

if not _testing:
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL environment variable is required")
