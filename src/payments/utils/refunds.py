"""Refund eligibility rules."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from payments.models.payment import PaymentStatus
from payments.schemas.payment import Payment, RefundEligibility
from payments.utils.currency import format_amount

DEFAULT_REFUND_WINDOW_DAYS = 30


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_refund_eligibility(
    payment: Payment,
    requested: Decimal,
    now: datetime | None = None,
    window_days: int = DEFAULT_REFUND_WINDOW_DAYS,
) -> RefundEligibility:
    """
    Decide whether ``requested`` may be refunded on ``payment``.

    Rules are checked in a fixed order and the first failure is returned:
    status must be completed, the amount must fit in the remaining balance,
    and the request must fall within the refund window.

    Args:
        payment: Payment record
        requested: Amount to refund in major units
        now: Current time (defaults to utcnow)
        window_days: Length of the refund window

    Returns:
        RefundEligibility with a reason when not eligible
    """
    remaining = payment.remaining_refundable

    if payment.status != PaymentStatus.COMPLETED:
        return RefundEligibility(eligible=False, reason="Only completed payments may be refunded.")

    if Decimal(requested) > remaining:
        return RefundEligibility(
            eligible=False,
            reason=f"Maximum refundable amount: {format_amount(remaining, payment.currency)}.",
            max_refundable=remaining,
        )

    paid_at = payment.payment_date or payment.created_at
    if paid_at is not None:
        current = _as_utc(now or datetime.now(timezone.utc))
        if current > _as_utc(paid_at) + timedelta(days=window_days):
            return RefundEligibility(
                eligible=False,
                reason=f"Refund window ({window_days} days) has passed.",
                max_refundable=remaining,
            )

    return RefundEligibility(eligible=True, max_refundable=remaining)
