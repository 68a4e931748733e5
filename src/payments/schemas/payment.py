"""Pydantic schemas for payment entities.

Payments travel as camelCase JSON (the database service and API clients both
use it) and are handled as snake_case attributes in Python.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from payments.models.payment import PaymentMethod, PaymentStatus


def _to_decimal(value: Any) -> Any:
    # float -> str first so 59.7 stays Decimal("59.7")
    if isinstance(value, float):
        return Decimal(str(value))
    return value


Money = Annotated[
    Decimal,
    BeforeValidator(_to_decimal),
    PlainSerializer(float, return_type=float, when_used="json"),
]


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BillingAddress(CamelModel):
    """Billing address stored as-is, with light format checks."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class Payment(CamelModel):
    """Payment record as returned by the database service."""

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    reservation_id: str = Field(..., validation_alias=AliasChoices("reservationId", "reservation_id", "reservation"))
    amount: Money
    currency: str = "EUR"
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    billing_address: Optional[dict[str, Any]] = None
    description: Optional[str] = None
    notes: Optional[str] = None

    checkout_session_id: Optional[str] = None
    checkout_url: Optional[str] = None
    checkout_created_at: Optional[datetime] = None

    payment_date: Optional[datetime] = None
    fees: Optional[Money] = None
    net_amount: Optional[Money] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None

    refund_amount: Money = Decimal("0")
    refund_date: Optional[datetime] = None
    refund_reason: Optional[str] = None
    refund_transaction_id: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("reservation_id", mode="before")
    @classmethod
    def _unwrap_reservation(cls, value: Any) -> Any:
        # The database service may populate the reference into a full object
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id")
        return str(value) if value is not None else value

    @field_validator("refund_amount", mode="before")
    @classmethod
    def _default_refund_amount(cls, value: Any) -> Any:
        return Decimal("0") if value is None else value

    @property
    def remaining_refundable(self) -> Decimal:
        return self.amount - self.refund_amount


class PaymentCreate(CamelModel):
    """Schema for creating a payment.

    Unknown keys (notably ``paymentDetails``) are dropped, so raw card data
    never reaches the database service.
    """

    reservation_id: str = Field(..., validation_alias=AliasChoices("reservationId", "reservation_id", "reservation"))
    amount: Money = Field(..., gt=0, description="Amount in major currency units")
    currency: str = Field("EUR", pattern=r"^[A-Za-z]{3}$")
    payment_method: PaymentMethod
    billing_address: Optional[BillingAddress] = None
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class PaymentStatusUpdate(CamelModel):
    """Schema for a manual status update."""

    status: PaymentStatus
    transaction_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)


class RefundRequest(CamelModel):
    """Schema for a refund request."""

    amount: Money = Field(..., gt=0, decimal_places=2, description="Amount to refund in major currency units")
    reason: str = Field(..., min_length=5, max_length=500)


class CheckoutRequest(CamelModel):
    """Optional redirect overrides for a checkout link."""

    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutLinkResponse(CamelModel):
    """Checkout link created for a payment."""

    payment: Payment
    session_id: str
    checkout_url: str
    expires_at: datetime


class Pagination(CamelModel):
    """Pagination envelope returned with payment lists."""

    page: int = 1
    limit: int = 10
    total: int = 0
    pages: int = 0


class PaymentPage(CamelModel):
    """One page of payments. Serialized as ``{"data": [...], "pagination": {...}}``."""

    items: List[Payment] = Field(default_factory=list, alias="data")
    pagination: Pagination = Field(default_factory=Pagination)


class PaymentFilters(CamelModel):
    """Filters accepted by the list endpoint and forwarded to the database service."""

    status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    transaction_id: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)

    def to_query(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FeeBreakdown(CamelModel):
    """Gateway fees for a gross amount."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    amount: Money
    percentage_fee: Money
    fixed_fee: Money
    total_fees: Money
    net_amount: Money


class RefundEligibility(CamelModel):
    """Outcome of the refund eligibility rules."""

    eligible: bool
    reason: Optional[str] = None
    max_refundable: Optional[Money] = None


class Reservation(CamelModel):
    """Reservation owned by the reservation service (read-only here)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    status: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value
