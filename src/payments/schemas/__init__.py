"""Pydantic schemas for API request/response validation."""

from payments.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from payments.schemas.gateway import (
    CheckoutSession,
    CheckoutSessionRequest,
    GatewayConfigStatus,
    GatewayEvent,
    GatewayRefund,
    SessionStatus,
)
from payments.schemas.payment import (
    BillingAddress,
    CheckoutLinkResponse,
    CheckoutRequest,
    FeeBreakdown,
    Pagination,
    Payment,
    PaymentCreate,
    PaymentFilters,
    PaymentPage,
    PaymentStatusUpdate,
    RefundEligibility,
    RefundRequest,
    Reservation,
)

__all__ = [
    # Error schemas
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    # Gateway schemas
    "CheckoutSession",
    "CheckoutSessionRequest",
    "GatewayConfigStatus",
    "GatewayEvent",
    "GatewayRefund",
    "SessionStatus",
    # Payment schemas
    "BillingAddress",
    "CheckoutLinkResponse",
    "CheckoutRequest",
    "FeeBreakdown",
    "Pagination",
    "Payment",
    "PaymentCreate",
    "PaymentFilters",
    "PaymentPage",
    "PaymentStatusUpdate",
    "RefundEligibility",
    "RefundRequest",
    "Reservation",
]
