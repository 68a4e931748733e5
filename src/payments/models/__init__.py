"""Payment domain enums and the status state machine."""

from payments.models.payment import (
    ALLOWED_TRANSITIONS,
    CHECKOUT_STATUSES,
    TERMINAL_STATUSES,
    PaymentMethod,
    PaymentStatus,
    can_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CHECKOUT_STATUSES",
    "TERMINAL_STATUSES",
    "PaymentMethod",
    "PaymentStatus",
    "can_transition",
]
