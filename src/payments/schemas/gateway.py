"""Schemas exchanged with the payment gateway adapter."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class CheckoutSessionRequest(BaseModel):
    """Input for creating a hosted checkout session."""

    payment_id: str
    reservation_id: str
    amount: Decimal = Field(..., gt=0, description="Amount in major currency units")
    currency: str = "EUR"
    description: Optional[str] = None
    success_url: str
    cancel_url: str
    customer_email: Optional[str] = None


class CheckoutSession(BaseModel):
    """Checkout session created by the gateway."""

    session_id: str
    url: str
    status: str = "open"
    amount_total: Optional[int] = Field(None, description="Amount in minor units")
    currency: Optional[str] = None
    expires_at: datetime
    metadata: dict[str, str] = Field(default_factory=dict)


class SessionStatus(BaseModel):
    """Current state of a checkout session."""

    id: str
    status: str
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    payment_intent: Optional[str] = None
    simulated: bool = False


class GatewayRefund(BaseModel):
    """Refund record returned by the gateway."""

    id: str
    amount: Optional[int] = Field(None, description="Refunded amount in minor units")
    currency: Optional[str] = None
    status: str
    reason: Optional[str] = None
    payment_intent: Optional[str] = None
    created: Optional[int] = None
    simulated: bool = False


class GatewayEvent(BaseModel):
    """Verified webhook event."""

    id: str
    type: str
    created: Optional[int] = None
    data_object: dict[str, Any] = Field(default_factory=dict)
    simulated: bool = False

    @property
    def metadata(self) -> dict[str, Any]:
        return self.data_object.get("metadata") or {}


class GatewayConfigStatus(BaseModel):
    """Diagnostics for the gateway configuration."""

    has_secret_key: bool
    has_webhook_secret: bool
    simulation_mode: bool
    is_valid: bool
    warnings: list[str] = Field(default_factory=list)
