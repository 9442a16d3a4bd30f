"""
BILLING LEDGER ENGINE - DECIMAL PRECISION & MONEY UTILITIES

Amounts are stored as floats on records and converted to Decimal
(2 places, ROUND_HALF_UP) whenever they are compared or combined.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union
import logging

from ledger_core.errors import ValidationError

logger = logging.getLogger(__name__)

DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')

Amount = Union[float, int, str, Decimal]


def to_decimal(value: Amount) -> Decimal:
    """
    Convert a numeric value to Decimal without rounding.
    Floats go through str() to avoid binary precision noise.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError("amount", f"Cannot use boolean as an amount: {value}")
    try:
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        if isinstance(value, str):
            return Decimal(value)
    except InvalidOperation:
        raise ValidationError("amount", f"Not a valid amount: {value!r}")
    raise ValidationError("amount", f"Cannot convert {type(value).__name__} to Decimal")


def round_financial(value: Amount) -> Decimal:
    """Round to 2 decimal places, half up."""
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_float(value: Amount) -> float:
    """Round and convert back to float for storage."""
    return float(round_financial(value))


def validate_positive(value: Optional[Amount], field_name: str) -> Decimal:
    """
    Validate that an amount is present and strictly positive.
    Returns the rounded Decimal.
    """
    if value is None:
        raise ValidationError(field_name, f"'{field_name}' is required")
    decimal_value = round_financial(value)
    if decimal_value <= Decimal('0'):
        raise ValidationError(
            field_name,
            f"'{field_name}' must be positive: {value}"
        )
    return decimal_value


def outstanding_balance(amount: Amount, paid_amount: Optional[Amount]) -> Decimal:
    """Remaining open balance of an installment after a partial capture."""
    paid = round_financial(paid_amount) if paid_amount is not None else Decimal('0')
    return round_financial(amount) - paid


def amounts_match(a: Amount, b: Amount) -> bool:
    """Compare two amounts at cent precision."""
    return round_financial(a) == round_financial(b)
