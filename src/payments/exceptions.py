"""Domain exceptions for the payment service.

Every error carries the HTTP status and envelope fields it is rendered with,
so the exception handler in ``payments.main`` stays a single function.
"""
from typing import Any

from payments.schemas.error import ErrorCode


class PaymentServiceError(Exception):
    """Base exception for all payment service errors."""

    status_code: int = 500
    error: str = "InternalServerError"
    code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class PaymentValidationError(PaymentServiceError):
    """Raised when a payment payload fails validation."""

    status_code = 400
    error = "ValidationError"
    code = ErrorCode.VALIDATION_FAILED

    @classmethod
    def from_messages(cls, messages: list[str]) -> "PaymentValidationError":
        return cls(
            "; ".join(messages),
            details=[{"code": cls.code, "message": message} for message in messages],
        )


class NotFoundError(PaymentServiceError):
    """Raised when a referenced payment or reservation does not exist."""

    status_code = 404
    error = "NotFound"
    code = ErrorCode.PAYMENT_NOT_FOUND

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id
        if resource == "Reservation":
            self.code = ErrorCode.RESERVATION_NOT_FOUND


class InvalidStateError(PaymentServiceError):
    """Raised when an operation is not allowed for the payment's current status."""

    status_code = 400
    error = "InvalidState"
    code = ErrorCode.INVALID_STATE


class InvalidTransitionError(InvalidStateError):
    """Raised when a requested status transition is forbidden."""

    error = "InvalidTransition"
    code = ErrorCode.INVALID_STATE_TRANSITION

    def __init__(self, current: str, target: str, hint: str | None = None) -> None:
        message = f"Cannot move payment from '{current}' to '{target}'"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
        self.current = current
        self.target = target


class RefundNotEligibleError(InvalidStateError):
    """Raised when a refund request fails the eligibility rules."""

    code = ErrorCode.REFUND_NOT_ELIGIBLE


class InvalidMethodError(PaymentServiceError):
    """Raised when an operation does not apply to the payment method."""

    status_code = 400
    error = "InvalidMethod"
    code = ErrorCode.INVALID_PAYMENT_METHOD


class GatewayError(PaymentServiceError):
    """Raised when a payment gateway call fails."""

    status_code = 502
    error = "GatewayError"
    code = ErrorCode.STRIPE_API_ERROR

    def __init__(self, message: str, status_code: int | None = None, gateway_code: str | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.gateway_code = gateway_code


class InvalidSignatureError(PaymentServiceError):
    """Raised when a webhook payload cannot be verified."""

    status_code = 400
    error = "InvalidSignature"
    code = ErrorCode.INVALID_WEBHOOK_SIGNATURE


class UpstreamError(PaymentServiceError):
    """Raised when the database service answers with an error or is unreachable."""

    status_code = 502
    error = "UpstreamError"
    code = ErrorCode.EXTERNAL_SERVICE_ERROR
    retryable = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.upstream_status = status_code


class UpstreamTimeoutError(UpstreamError):
    """Raised when the database service does not answer in time."""

    status_code = 504
    code = ErrorCode.EXTERNAL_SERVICE_TIMEOUT
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=504)


class UnauthorizedError(PaymentServiceError):
    """Raised when the bearer credential is missing or invalid."""

    status_code = 401
    error = "Unauthorized"
    code = ErrorCode.UNAUTHORIZED
