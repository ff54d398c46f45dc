"""
Money helpers.

Ledger arithmetic runs on Decimal at storage precision; rounding to cents
happens only when a value is shown or sent to Shopify.
"""
from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN

MONEY_PRECISION = Decimal('0.000001')
CENTS = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value) -> Decimal:
    """Coerce a str/int/float/Decimal/None into a storage-precision Decimal."""
    if value is None or value == '':
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def to_display(value) -> float:
    """Two-decimal float for API responses."""
    return float(to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))


def round_down_cents(value) -> Decimal:
    """Cents amount that never exceeds what the ledger recorded."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_DOWN)


def format_amount(value) -> str:
    """Amount string for the Shopify API (exactly 2 decimal places)."""
    return f'{round_down_cents(value):.2f}'
