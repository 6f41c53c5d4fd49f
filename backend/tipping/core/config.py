"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. This ensures:
1. Type validation at startup
2. Centralized configuration
3. Documentation of available settings
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database
    database_url: str = "sqlite:///./data/tipping.db"

    # Security
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Payout policy
    # ==========================================================================
    currency: str = "KES"
    default_commission_rate: Decimal = Decimal("10.00")
    max_commission_rate: Decimal = Decimal("50.00")
    minimum_payout_threshold: Decimal = Decimal("100.00")
    max_tip_amount: Decimal = Decimal("1000000.00")
    default_payout_day: int = 28
    default_notification_days: int = 3

    # Comma-separated, tried in order
    payout_provider_order: str = "pesawise,mpesa"

    # ==========================================================================
    # PesaWise direct payments
    # ==========================================================================
    pesawise_api_key: str = ""
    pesawise_secret_key: str = ""
    pesawise_balance_id: str = ""
    pesawise_environment: Literal["sandbox", "production"] = "sandbox"
    pesawise_api_url: str = "https://api.pesawise.com"
    pesawise_timeout_seconds: float = 30.0
    # Bank transfers for group accounts reuse the PesaWise credentials
    bank_transfer_callback_url: str = ""

    # ==========================================================================
    # M-Pesa Daraja B2C
    # ==========================================================================
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_business_short_code: str = ""
    mpesa_initiator_name: str = ""
    mpesa_security_credential: str = ""
    mpesa_environment: Literal["sandbox", "production"] = "sandbox"
    mpesa_b2c_result_url: str = ""
    mpesa_b2c_timeout_url: str = ""
    mpesa_timeout_seconds: float = 30.0

    # ==========================================================================
    # Notifications
    # ==========================================================================
    sms_provider: Literal["africastalking", "twilio", "mock"] = "mock"
    sms_api_key: str = ""
    sms_api_secret: str = ""
    sms_username: str = ""
    sms_sender_id: Optional[str] = None

    email_provider: Literal["sendgrid", "mock"] = "mock"
    email_api_key: str = ""
    smtp_from_email: str = "payouts@example.com"
    smtp_from_name: str = "Tip Payouts"

    @field_validator("payout_provider_order")
    @classmethod
    def validate_provider_order(cls, v: str) -> str:
        known = {"pesawise", "mpesa"}
        names = [n.strip().lower() for n in v.split(",") if n.strip()]
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ValueError(f"Unknown payout providers: {unknown}")
        return ",".join(names)

    @field_validator("default_payout_day")
    @classmethod
    def validate_payout_day(cls, v: int) -> int:
        if not 1 <= v <= 28:
            raise ValueError("default_payout_day must be between 1 and 28")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to start in production mode with an insecure secret key."""
        if not self.debug:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def provider_order_list(self) -> List[str]:
        return [n for n in self.payout_provider_order.split(",") if n]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
