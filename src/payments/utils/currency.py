"""Currency helpers for converting between stored amounts and gateway amounts.

Payments store amounts in major units (euros). Stripe expects the smallest
currency unit (cents), except for zero-decimal currencies.
"""
from decimal import ROUND_HALF_UP, Decimal

# Currencies that don't use decimal places (smallest unit is whole currency)
zero_decimal_currencies = [
    "JPY",  # Japanese Yen
    "KRW",  # South Korean Won
    "VND",  # Vietnamese Đồng
    "CLP",  # Chilean Peso
    "ISK",  # Icelandic Króna
    "TWD",  # Taiwan Dollar
]

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    """
    Round an amount to the cent, half-up.

    Example:
        >>> round_money(Decimal("3.205"))
        Decimal('3.21')
    """
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def get_currency_decimal_places(currency: str) -> int:
    """
    Get the number of decimal places for a currency.

    Example:
        >>> get_currency_decimal_places("EUR")
        2
        >>> get_currency_decimal_places("JPY")
        0
    """
    if currency.upper() in zero_decimal_currencies:
        return 0
    return 2


def convert_to_smallest_unit(amount: Decimal, currency: str) -> int:
    """
    Convert a major-unit amount to the smallest currency unit.

    Args:
        amount: Amount in major currency units (e.g., Decimal("50.00") euros)
        currency: ISO 4217 currency code

    Returns:
        Amount in smallest unit (cents for EUR, whole yen for JPY)

    Examples:
        >>> convert_to_smallest_unit(Decimal("50.00"), "EUR")
        5000
        >>> convert_to_smallest_unit(Decimal("1000"), "JPY")
        1000
    """
    factor = Decimal(10) ** get_currency_decimal_places(currency)
    return int((Decimal(amount) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_from_smallest_unit(amount: int, currency: str) -> Decimal:
    """
    Convert from the smallest currency unit to a major-unit amount.

    Examples:
        >>> convert_from_smallest_unit(5000, "EUR")
        Decimal('50.00')
        >>> convert_from_smallest_unit(1000, "JPY")
        Decimal('1000')
    """
    places = get_currency_decimal_places(currency)
    return Decimal(int(amount)).scaleb(-places)


def format_amount(amount: Decimal, currency: str) -> str:
    """
    Format a major-unit amount for messages.

    Example:
        >>> format_amount(Decimal("60"), "EUR")
        '60.00 EUR'
    """
    currency_upper = currency.upper()
    places = get_currency_decimal_places(currency_upper)
    return f"{Decimal(amount):,.{places}f} {currency_upper}"
