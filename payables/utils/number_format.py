"""Number parsing and formatting utilities for money amounts."""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')
AMOUNT_PATTERN = re.compile(r"^-?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?$")


def to_decimal(value) -> Decimal:
    """
    Convert a request value (str, int, float, Decimal) to Decimal.

    Strings may use a comma thousands separator (1,234.56). Floats go through
    str() so 0.1 stays 0.1.

    Raises:
        ValueError: if the value is empty or not a number.
    """
    if value is None:
        raise ValueError('A number is required')
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError('Invalid number')
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        cleaned = str(value).strip()
        if not cleaned or not AMOUNT_PATTERN.match(cleaned):
            raise ValueError('Invalid number. Use 1234.56')
        try:
            result = Decimal(cleaned.replace(',', ''))
        except (InvalidOperation, ValueError):
            raise ValueError('Invalid number. Use 1234.56')
    if not result.is_finite():
        raise ValueError('Invalid number')
    return result


def decimal_places(value: Decimal) -> int:
    """Number of significant decimal places (1.50 -> 1, 2 -> 0)."""
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent)


def quantize_money(value) -> Decimal:
    """Round to the currency cent, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money(value) -> str:
    """
    Format an amount for messages: thousands separator, two decimals.

    Examples:
        money(1500) -> "1,500.00"
        money(Decimal('899.5')) -> "899.50"
    """
    if value is None:
        return '-'
    return f'{quantize_money(value):,.2f}'
