from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    ADMIN_EMAIL: str = "admin@otters.co.ke"
    TIMEZONE: str = "Africa/Nairobi"
    FRONTEND_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Auth (Supabase-issued JWTs)
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Background worker
    REDIS_URL: str = "redis://localhost:6379/0"

    # Registration billing
    BILLING_CURRENCY: str = "KES"
    REGISTRATION_FEE_KES: float = 3500.0
    INVOICE_DUE_DAYS: int = 7
    # Max difference (in KES) tolerated between a provider's reported amount
    # and the recorded payment amount.
    PAYMENT_AMOUNT_TOLERANCE: float = 1.0
    STALE_PAYMENT_MINUTES: int = 10
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # Paystack (hosted gateway)
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_API_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CALLBACK_URL: Optional[str] = None

    # M-Pesa (STK push)
    MPESA_ENVIRONMENT: Literal["sandbox", "production"] = "sandbox"
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_CALLBACK_URL: str = ""
    MPESA_CALLBACK_TOKEN: str = ""

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
