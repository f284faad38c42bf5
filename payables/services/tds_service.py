"""
Withholding tax (TDS) calculator.

Pure functions, no database access. Amounts are Decimal throughout.

Two rounding modes:
- exact: the tax is gross * percentage / 100, kept to the cent (half-up)
- rounded: the tax is rounded UP to the next whole currency unit

Net payable is always re-derived from the caller's current mode, never cached,
because the mode can be flipped per payment.
"""
from decimal import Decimal, ROUND_CEILING
from payables.exceptions import ValidationError
from payables.utils.number_format import quantize_money

ZERO = Decimal('0')
HUNDRED = Decimal('100')


def validate_tds_percentage(percentage) -> Decimal:
    """Return the percentage as Decimal or raise ValidationError if outside 0..100."""
    if percentage is None:
        raise ValidationError({'tds_percentage': 'TDS percentage is required when TDS is applicable'})
    pct = Decimal(str(percentage))
    if pct < 0 or pct > HUNDRED:
        raise ValidationError({'tds_percentage': 'TDS percentage must be between 0 and 100'})
    return pct


def exact_tax(gross, percentage) -> Decimal:
    """Unrounded tax, e.g. 333 at 10.5% -> 34.965."""
    gross = Decimal(str(gross))
    if gross < 0:
        raise ValidationError({'invoice_amount': 'Amount cannot be negative'})
    pct = validate_tds_percentage(percentage)
    return gross * pct / HUNDRED


def withholding(gross, percentage, rounded: bool = False):
    """
    Compute the withheld tax and the net payable.

    Args:
        gross: Gross invoice amount
        percentage: Plain percentage, 0..100
        rounded: True for ceiling mode

    Returns:
        (tax, net_payable) tuple of Decimal
    """
    gross = Decimal(str(gross))
    raw = exact_tax(gross, percentage)
    if raw == ZERO:
        return ZERO, gross

    if rounded:
        tax = raw.quantize(Decimal('1'), rounding=ROUND_CEILING)
    else:
        tax = quantize_money(raw)
    return tax, gross - tax


def invoice_withholding(invoice, rounded=None):
    """
    Tax and net payable for an invoice.

    `rounded` overrides the invoice's stored preference when given.
    Invoices without TDS skip the calculator entirely.
    """
    gross = Decimal(invoice.invoice_amount)
    if not invoice.tds_applicable or invoice.tds_percentage is None:
        return ZERO, gross
    mode = invoice.tds_rounded if rounded is None else rounded
    return withholding(gross, invoice.tds_percentage, bool(mode))


def tds_breakdown(gross, percentage, rounded: bool = False) -> dict:
    """Display breakdown: exact and active tax, and the resulting net payable."""
    tax, net_payable = withholding(gross, percentage, rounded)
    return {
        'gross': Decimal(str(gross)),
        'percentage': Decimal(str(percentage)),
        'exact_tax': exact_tax(gross, percentage),
        'tax': tax,
        'net_payable': net_payable,
        'is_rounded': bool(rounded),
    }


def rounding_difference(gross, percentage) -> Decimal:
    """How much more the ceiling mode withholds than the exact value."""
    raw = exact_tax(gross, percentage)
    return raw.quantize(Decimal('1'), rounding=ROUND_CEILING) - raw
