"""Structured error response schemas."""
from datetime import datetime, timezone
from typing import Any
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    Every error leaving the service uses this envelope:
    - error type and machine-readable codes
    - human-readable message and remediation hint
    - request id for tracing
    - stack trace outside production
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "InvalidTransition",
                "message": "Cannot move payment from 'completed' to 'cancelled'. Use the refund operation instead.",
                "details": [
                    {
                        "code": "invalid_state_transition",
                        "message": "Cannot move payment from 'completed' to 'cancelled'.",
                    }
                ],
                "remediation": "Check the payment status before calling this operation.",
                "request_id": "req_1234567890ab",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }
    )

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound', 'InvalidState')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp")
    stack_trace: str | None = Field(default=None, description="Stack trace (non-production only)")


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    VALIDATION_FAILED = "validation_failed"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_CURRENCY = "invalid_currency"
    INVALID_PAYMENT_METHOD = "invalid_payment_method"
    MISSING_REQUIRED_FIELD = "missing_required_field"

    # Business logic errors (400)
    INVALID_STATE = "invalid_state"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    REFUND_NOT_ELIGIBLE = "refund_not_eligible"
    INVALID_WEBHOOK_SIGNATURE = "invalid_webhook_signature"

    # Authentication errors (401)
    UNAUTHORIZED = "unauthorized"

    # Not found errors (404)
    PAYMENT_NOT_FOUND = "payment_not_found"
    RESERVATION_NOT_FOUND = "reservation_not_found"

    # External service errors (502, 503, 504)
    STRIPE_API_ERROR = "stripe_api_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    EXTERNAL_SERVICE_TIMEOUT = "external_service_timeout"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.VALIDATION_FAILED: "Check the request body against the API documentation at /docs",
    ErrorCode.INVALID_STATE: "Check the payment status before calling this operation.",
    ErrorCode.INVALID_STATE_TRANSITION: "Completed payments can only be refunded. Use the refund operation instead.",
    ErrorCode.REFUND_NOT_ELIGIBLE: "Only completed payments within the refund window can be refunded, up to the remaining balance.",
    ErrorCode.INVALID_PAYMENT_METHOD: "Checkout links are only available for card payments.",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify the webhook signing secret configured for this endpoint.",
    ErrorCode.UNAUTHORIZED: "Provide a valid bearer token in the Authorization header.",
    ErrorCode.PAYMENT_NOT_FOUND: "Verify the payment ID is correct and the payment exists",
    ErrorCode.RESERVATION_NOT_FOUND: "Verify the reservation ID is correct and the reservation exists",
    ErrorCode.STRIPE_API_ERROR: "Stripe payment processing is temporarily unavailable. Please try again later.",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "The database service rejected the request or is unavailable.",
    ErrorCode.EXTERNAL_SERVICE_TIMEOUT: "The database service did not answer in time. The request can be retried.",
}
