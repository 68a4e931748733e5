"""Payment status and method enums and the status transition table."""
import enum


class PaymentStatus(str, enum.Enum):
    """Payment lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    """Supported payment methods."""

    CARD = "card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OTHER = "other"


# pending -> completed/failed covers manual settlement of offline methods
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED})

# Statuses from which a checkout session may (re)start
CHECKOUT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Return True when the transition table allows ``current -> target``."""
    return target in ALLOWED_TRANSITIONS[current]
