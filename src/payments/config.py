"""Application configuration using pydantic-settings."""
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from payments.models.payment import PaymentMethod


class FeeRate(BaseModel):
    """Gateway fee for one payment method: a percentage rate plus a fixed amount."""

    percentage: Decimal = Field(..., ge=0, description="Rate applied to the gross amount (0.029 = 2.9%)")
    fixed: Decimal = Field(default=Decimal("0"), ge=0, description="Fixed fee in major currency units")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # Database service (persistence is delegated over HTTP)
    database_service_url: str = Field(
        default="http://localhost:3005",
        description="Base URL of the database microservice",
    )
    database_service_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for calls to the database microservice",
    )

    # Downstream services notified of payment status changes
    reservation_service_url: str = Field(default="http://localhost:3001", description="Reservation service base URL")
    notification_service_url: str = Field(default="http://localhost:3004", description="Notification service base URL")
    notifications_enabled: bool = Field(default=True, description="Notify downstream services on status changes")

    # Stripe Configuration
    stripe_secret_key: str = Field(
        default="",
        description="Stripe secret key for API authentication",
    )
    stripe_webhook_secret: str = Field(
        default="",
        description="Stripe webhook signature verification secret",
    )
    stripe_simulation_mode: bool = Field(
        default=False,
        description="Fake Stripe checkout locally instead of calling the API",
    )
    stripe_simulation_outcome: Optional[Literal["open", "complete", "expired"]] = Field(
        default=None,
        description="Force the status reported for simulated sessions (random when unset)",
    )
    checkout_session_ttl_hours: int = Field(default=24, description="Lifetime of a checkout session")
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used to build checkout success/cancel redirects",
    )

    # Payment rules
    refund_window_days: int = Field(default=30, description="Days after payment during which refunds are accepted")
    fee_overrides: dict[PaymentMethod, FeeRate] = Field(
        default_factory=dict,
        description='Per-method fee overrides, e.g. {"card": {"percentage": "0.025", "fixed": "0.25"}}',
    )
    legacy_card_details_enabled: bool = Field(
        default=False,
        description="Require raw card details on card payments (legacy direct-capture flow)",
    )

    # Application Configuration
    app_env: str = Field(default="development", description="Application environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=True, description="Enable debug mode")

    # JWT Configuration
    jwt_secret_key: str = Field(
        default="change-this-jwt-secret-in-production",
        description="JWT signing key shared with the auth service",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )


# Global settings instance
settings = Settings()
