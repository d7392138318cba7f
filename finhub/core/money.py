"""
Money Primitives

Currency amounts are Decimals carried at full precision through every
calculation and rounded to cents only when displayed or sent to the API.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
    'INR': '₹',
    'AUD': 'A$',
    'CAD': 'C$',
    'CHF': 'Fr',
    'ZAR': 'R',
    'NGN': '₦',
}


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Parse untyped input into a Decimal, falling back to default when it is not a finite number."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        if isinstance(value, str):
            value = value.strip().replace(",", "")
            if value == "":
                return default
        try:
            # str() keeps floats from leaking binary noise into the Decimal
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return default
    if not result.is_finite():
        return default
    return result


def to_non_negative(value: Any) -> Decimal:
    """Parse a quantity or unit price; negative, missing or malformed input counts as zero."""
    result = to_decimal(value)
    return result if result > ZERO else ZERO


def quantize_money(value: Any) -> Decimal:
    """Round to cents for display or persistence"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Any) -> Decimal:
    return amount * to_decimal(rate) / HUNDRED


def sum_money(values: Iterable[Any]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


def currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get((code or "").upper(), code or "")


def format_money(value: Any, symbol: str = "$") -> str:
    """Format as currency, e.g. $1,234.50 or -$5.00"""
    amount = quantize_money(value)
    sign = "-" if amount < ZERO else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def as_api_amount(value: Any) -> str:
    """Serialize an amount for a JSON request body"""
    return str(quantize_money(value))
