"""
Application settings, read from the environment and an optional .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"  # development, staging, production, test

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./shortlet.db"
    DATABASE_ECHO: bool = False
    CREATE_TABLES_ON_STARTUP: bool = True

    # Redis (booking locks); a process-local lock registry is used when unset
    REDIS_URL: Optional[str] = None
    BOOKING_LOCK_TIMEOUT_SECONDS: int = 60
    BOOKING_LOCK_WAIT_SECONDS: int = 5

    # Paystack
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_PUBLIC_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYMENT_CURRENCY: str = "NGN"
    PAYMENT_CHANNELS: list[str] = ["card", "bank", "ussd", "qr", "mobile_money", "bank_transfer"]
    GATEWAY_TIMEOUT_SECONDS: float = 30.0

    # Frontend / property
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    PROPERTY_TIMEZONE: str = "Africa/Lagos"

    # Email
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None
    SMTP_SENDER: str = "no-reply@saphireapartments.com"
    ADMIN_EMAIL: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None  # defaults to JSON in production

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def payment_callback_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/payment/callback"


@lru_cache
def get_settings() -> Settings:
    return Settings()
