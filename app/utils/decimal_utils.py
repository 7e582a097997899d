"""Decimal helpers for money arithmetic.

All amounts in the billing engine are `Decimal` quantized to cents with
ROUND_HALF_UP. Floats never enter ledger math.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Union

from app.utils.logger import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")

Number = Union[str, int, float, Decimal]


def parse_decimal(value: Optional[Number], precision: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Parse a value to Decimal, optionally quantizing it.

    Returns None for empty or unparseable input instead of raising, so callers
    reading external files can count the failure and move on.

    Example:
        >>> parse_decimal("123.456", precision=CENTS)
        Decimal('123.46')
        >>> parse_decimal("$1,200.50")
        Decimal('1200.50')
    """
    if value is None:
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        logger.warning("Refusing to parse boolean as decimal", value=value)
        return None
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "")
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            logger.warning("Failed to parse decimal string", value=value)
            return None
    else:
        logger.warning("Unsupported type for decimal parsing", type=type(value).__name__)
        return None

    if not result.is_finite():
        return None

    if precision is not None:
        try:
            result = result.quantize(precision, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            logger.warning("Decimal out of range for precision", value=str(value))
            return None
    return result


def parse_financial_amount(value: Optional[Number]) -> Optional[Decimal]:
    """Parse an amount rounded to cents, or None if it cannot be read or stored."""
    result = parse_decimal(value, precision=CENTS)
    if result is not None and abs(result) > MAX_AMOUNT:
        logger.warning("Amount exceeds storable range", value=str(value))
        return None
    return result


def to_money(value: Optional[Number]) -> Decimal:
    """Coerce a stored or computed amount to cents, treating None as zero."""
    parsed = parse_financial_amount(value)
    return parsed if parsed is not None else ZERO


def sum_money(values: Iterable[Optional[Number]]) -> Decimal:
    """Sum amounts exactly in Decimal."""
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def money_str(value: Optional[Number]) -> Optional[str]:
    """Render an amount as a fixed two-place string for JSON responses."""
    if value is None:
        return None
    return str(to_money(value))
