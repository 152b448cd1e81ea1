"""
Application configuration module.
Loads environment variables and provides application-wide settings.

Runtime knobs (drift threshold, low-balance threshold, ...) have their
defaults here; a deployment can override them in the system_configurations
table, see backend.app.services.system_config.
"""
import os
from decimal import Decimal
from pathlib import Path

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

# Get project root (two levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Global flag to indicate test mode (set via --test flag or CUSTODYFOLIO_TEST_MODE env var)
_test_mode = os.environ.get("CUSTODYFOLIO_TEST_MODE", "").lower() in ("1", "true", "yes")


def set_test_mode(enabled: bool = True):
    """
    Enable/disable test mode globally.
    When enabled, DATABASE_URL will automatically use TEST_DATABASE_URL.

    Args:
        enabled: True to enable test mode, False to disable
    """
    global _test_mode
    _test_mode = enabled
    os.environ["CUSTODYFOLIO_TEST_MODE"] = "1" if enabled else "0"


def is_test_mode() -> bool:
    """Check if test mode is enabled."""
    return _test_mode


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables or .env file.
    (Note: Environment variables take precedence over .env file)
    """
    # Database
    DATABASE_URL: str = "sqlite:///./backend/data/sqlite/app.db"
    TEST_DATABASE_URL: str = "sqlite:///./backend/data/sqlite/test_app.db"
    # Non-SQLite backends only; SQLite transactions always start with BEGIN IMMEDIATE
    DB_ISOLATION_LEVEL: str = "SERIALIZABLE"

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "CustodyFolio"
    VERSION: str = "0.1.0"

    # Server
    PORT: int = 8000
    TEST_PORT: int = 8001

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True

    # Portfolio
    REPORTING_CURRENCY: str = "USD"  # every value_usd column is expressed in this currency

    # Alerting defaults (overridable through system_configurations)
    DRIFT_THRESHOLD_PCT: Decimal = Decimal("10")
    LOW_BALANCE_THRESHOLD_USD: Decimal = Decimal("1000")
    SYNC_STALE_HOURS: int = 24
    PERCENTAGE_WARNING_PCT: Decimal = Decimal("90")
    LARGE_TRANSACTION_THRESHOLD_USD: Decimal = Decimal("10000")
    PRICE_CHANGE_THRESHOLD_PCT: Decimal = Decimal("20")

    # CORS (for frontend development)
    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        case_sensitive=True,
        env_file_encoding='utf-8',
        extra="ignore",
        )


def get_settings() -> Settings:
    """
    Get settings instance.

    In test mode, DATABASE_URL is automatically overridden with TEST_DATABASE_URL.

    Returns:
        Settings: Application settings
    """
    settings = Settings()

    # Override DATABASE_URL if in test mode
    if is_test_mode():
        settings.DATABASE_URL = settings.TEST_DATABASE_URL

    return settings
