"""
Money Helpers

Decimal coercion and rounding for ledger amounts. NEVER uses float for
monetary arithmetic; floats arriving from callers are converted through str.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')
CENT = Decimal('0.01')


def to_decimal(value: Any) -> Decimal:
    """Convert a stored or user-supplied amount to Decimal (None becomes zero)"""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid monetary amount: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid monetary amount: {value!r}")


def round_money(amount: Decimal, precision: int = 2) -> Decimal:
    """Round to currency precision using half-up rounding"""
    return to_decimal(amount).quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)


def within_tolerance(left: Decimal, right: Decimal, tolerance: Decimal = CENT) -> bool:
    """Check that two amounts agree to within the given tolerance"""
    return abs(to_decimal(left) - to_decimal(right)) <= to_decimal(tolerance)


def format_amount(amount: Decimal, precision: int = 2) -> str:
    """Format for display"""
    return f"{round_money(amount, precision):,.{precision}f}"
