"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from decimal import Decimal
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Cemetery Purchases & Payments API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'cemetery.db'}"

    # --- Paynow Gateway ---
    PAYNOW_INTEGRATION_ID: str = ""
    PAYNOW_INTEGRATION_KEY: str = ""
    PAYNOW_RETURN_URL: str = ""
    PAYNOW_RESULT_URL: str = ""
    PAYNOW_WEB_ENDPOINT: str = "https://www.paynow.co.zw/interface/initiatetransaction"
    PAYNOW_MOBILE_ENDPOINT: str = "https://www.paynow.co.zw/interface/remotetransaction"
    PAYNOW_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_DESCRIPTION: str = "Cemetery Payment"

    # --- EcoCash limits (USD per transaction) ---
    ECOCASH_MIN_AMOUNT: Decimal = Decimal("1")
    ECOCASH_MAX_AMOUNT: Decimal = Decimal("500")

    # --- Checkout sessions & background jobs ---
    CHECKOUT_SESSION_TTL_HOURS: int = 24
    CLEANUP_INTERVAL_MINUTES: int = 60
    RECONCILE_INTERVAL_MINUTES: int = 10
    RECONCILE_MIN_AGE_MINUTES: int = 2
    SCHEDULER_ENABLED: bool = True

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
