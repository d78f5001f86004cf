"""
Module: inventory_kernel.db.types
Responsibility: Decimal coercion and the rounding helpers used for
    quantities, unit costs and COGS amounts.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the ledger.  Quantities, unit costs and amounts
      are Decimal with 9 stored decimal places.
    - round_money() is the only sanctioned rounding for reported COGS totals;
      stored allocation amounts keep full stored precision.

Failure modes:
    - decimal.InvalidOperation on non-numeric input to to_decimal().

Audit relevance:
    Every quantity and money column uses the same Numeric(38, 9) definition,
    so signed sums over allocation rows are exact.
"""

from decimal import ROUND_HALF_UP, Decimal

STORED_DECIMAL_PLACES = 9
REPORT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Decimal | int | str | float) -> Decimal:
    """Coerce a numeric input to Decimal, going through str for floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_stored(value: Decimal) -> Decimal:
    """Quantize to the precision the ledger columns store."""
    return value.quantize(
        Decimal(1).scaleb(-STORED_DECIMAL_PLACES), rounding=DEFAULT_ROUNDING
    )


def round_money(
    value: Decimal,
    decimal_places: int = REPORT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value for reporting.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def round_units(value: Decimal) -> Decimal:
    """Round a quantity to whole units (half up)."""
    return value.quantize(Decimal(1), rounding=DEFAULT_ROUNDING)
