"""Validation of incoming payment payloads."""
from decimal import Decimal, InvalidOperation
from typing import Any

from payments.models.payment import PaymentMethod

VALID_METHODS = [method.value for method in PaymentMethod]

# Raw card fields accepted only by the legacy direct-capture flow
CARD_DETAIL_FIELDS = {
    "cardNumber": "Card number is required",
    "expiryDate": "Card expiry date is required",
    "cvv": "Card security code (CVV) is required",
}

SENSITIVE_FIELDS = ("paymentDetails", "payment_details", "cardNumber", "expiryDate", "cvv")


def _parse_amount(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def validate_payment_data(payload: dict[str, Any], require_card_details: bool = False) -> list[str]:
    """
    Check a proposed payment payload.

    Args:
        payload: Raw request body (camelCase keys)
        require_card_details: Enforce raw card fields for card payments
            (legacy direct-capture flow only)

    Returns:
        Human-readable errors, empty when the payload is valid
    """
    errors: list[str] = []

    if not (payload.get("reservationId") or payload.get("reservation")):
        errors.append("Reservation ID is required")

    amount = payload.get("amount")
    if amount is None or amount == "":
        errors.append("Amount is required")
    else:
        parsed = _parse_amount(amount)
        if parsed is None or not parsed.is_finite():
            errors.append("Amount must be numeric")
        elif parsed <= 0:
            errors.append("Amount must be greater than 0")

    method = payload.get("paymentMethod")
    if not method:
        errors.append("Payment method is required")
    elif method not in VALID_METHODS:
        errors.append(f"Invalid payment method. Allowed: {', '.join(VALID_METHODS)}")

    if require_card_details and method == PaymentMethod.CARD.value:
        details = payload.get("paymentDetails") or {}
        for field, message in CARD_DETAIL_FIELDS.items():
            if not details.get(field):
                errors.append(message)

    return errors


def strip_sensitive_fields(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the payload without raw card data."""
    return {key: value for key, value in payload.items() if key not in SENSITIVE_FIELDS}
