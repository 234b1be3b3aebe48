"""
Decimal precision policy shared by every money and ratio computation.
"""

from decimal import (
    MAX_PREC,
    ROUND_HALF_EVEN,
    Context,
    Decimal,
    DivisionByZero,
    Inexact,
    InvalidOperation,
    Overflow,
    localcontext,
)

# Context for P&L, ratios and statistics; never mutate the thread-global one.
DECIMAL_CONTEXT = Context(prec=28, rounding=ROUND_HALF_EVEN)

# Lot quantities are only ever added and subtracted, which is exact given
# enough digits. Inexact is trapped so any rounding fails loudly.
QUANTITY_CONTEXT = Context(
    prec=MAX_PREC,
    rounding=ROUND_HALF_EVEN,
    traps=[InvalidOperation, DivisionByZero, Overflow, Inexact],
)

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def decimal_context():
    """Context manager applying the engine's decimal context."""
    return localcontext(DECIMAL_CONTEXT)


def quantity_context():
    """Context manager for exact quantity bookkeeping (sums and differences only)."""
    return localcontext(QUANTITY_CONTEXT)


def decimal_sqrt(value: Decimal) -> Decimal:
    """Square root under the engine context."""
    return value.sqrt(context=DECIMAL_CONTEXT)


def decimal_to_str(value):
    """Serialize a Decimal for storage without losing digits (None passes through)."""
    if value is None:
        return None
    return format(value, 'f')
