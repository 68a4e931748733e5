"""Gateway fee calculation."""
from decimal import Decimal
from typing import Mapping

from payments.config import FeeRate
from payments.models.payment import PaymentMethod
from payments.schemas.payment import FeeBreakdown
from payments.utils.currency import round_money

# (percentage rate, fixed fee in major units) per payment method
DEFAULT_FEE_SCHEDULE: dict[PaymentMethod, FeeRate] = {
    PaymentMethod.CARD: FeeRate(percentage=Decimal("0.029"), fixed=Decimal("0.30")),
    PaymentMethod.PAYPAL: FeeRate(percentage=Decimal("0.034"), fixed=Decimal("0.35")),
    PaymentMethod.BANK_TRANSFER: FeeRate(percentage=Decimal("0.005"), fixed=Decimal("0")),
    PaymentMethod.CASH: FeeRate(percentage=Decimal("0"), fixed=Decimal("0")),
    PaymentMethod.OTHER: FeeRate(percentage=Decimal("0"), fixed=Decimal("0")),
}

NO_FEE = FeeRate(percentage=Decimal("0"), fixed=Decimal("0"))


def build_fee_schedule(overrides: Mapping[str, FeeRate] | None = None) -> dict[PaymentMethod, FeeRate]:
    """
    Merge configured overrides into the default schedule.

    Args:
        overrides: Fee rates keyed by payment method value (e.g. ``"card"``)

    Returns:
        Complete schedule keyed by PaymentMethod

    Raises:
        ValueError: If an override names an unknown payment method
    """
    schedule = dict(DEFAULT_FEE_SCHEDULE)
    for method, rate in (overrides or {}).items():
        schedule[PaymentMethod(method)] = rate
    return schedule


def calculate_fees(
    amount: Decimal,
    payment_method: PaymentMethod | str,
    schedule: Mapping[PaymentMethod, FeeRate] | None = None,
) -> FeeBreakdown:
    """
    Compute gateway fees and the net amount for a gross amount.

    Every figure is rounded half-up to the cent. The net amount is not
    clamped, so amounts below the fixed fee yield a negative net.

    Args:
        amount: Gross amount in major units
        payment_method: Method the fee schedule is looked up for
        schedule: Fee schedule (defaults to DEFAULT_FEE_SCHEDULE)

    Returns:
        FeeBreakdown with percentage_fee, fixed_fee, total_fees and net_amount

    Example:
        >>> calculate_fees(Decimal("100"), "card").total_fees
        Decimal('3.20')
    """
    rates = schedule or DEFAULT_FEE_SCHEDULE
    rate = rates.get(PaymentMethod(payment_method), NO_FEE)
    gross = Decimal(amount)

    percentage_fee = round_money(gross * rate.percentage)
    fixed_fee = round_money(rate.fixed)
    total_fees = round_money(percentage_fee + fixed_fee)

    return FeeBreakdown(
        amount=round_money(gross),
        percentage_fee=percentage_fee,
        fixed_fee=fixed_fee,
        total_fees=total_fees,
        net_amount=round_money(gross - total_fees),
    )
