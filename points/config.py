"""
Application settings.

Loads the points constants and collaborator credentials from environment
variables using pydantic-settings.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    environment: str = "development"
    log_level: str = "INFO"
    org_prefix: str = "FWF"

    # Point value: 1 point = ₹10
    point_value: Decimal = Field(default=Decimal("10"), gt=0)
    donation_points_percent: Decimal = Field(default=Decimal("10"), ge=0)
    referral_points_percent: Decimal = Field(default=Decimal("50"), ge=0)
    quiz_ticket_points_percent: Decimal = Field(default=Decimal("10"), ge=0)
    quiz_ticket_price: Decimal = Field(default=Decimal("100"), gt=0)
    # Standard joining fee; referral activation falls back to it
    membership_fee: Decimal = Field(default=Decimal("500"), gt=0)

    # Donations at or above this amount need OTP verification (KYC)
    high_value_donation_threshold: Decimal = Field(default=Decimal("50000"), gt=0)

    otp_length: int = 6
    otp_ttl_minutes: int = 10
    otp_max_attempts: int = 5
    otp_rate_limit: int = 3
    otp_rate_window_minutes: int = 10
    verified_token_ttl_minutes: int = 30

    # Payment gateway; signature checks are skipped while unset
    razorpay_key_secret: Optional[str] = None

    # Outbound collaborators
    sms_api_url: Optional[str] = None
    sms_auth_key: Optional[str] = None
    notify_webhook_url: Optional[str] = None
    admin_email: Optional[str] = None

    # First admin, seeded at startup when the store has none
    admin_user: str = "admin@fwf"
    admin_name: str = "FWF Admin"
    admin_session_token: Optional[str] = None
    http_timeout_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
