"""
Money and stay-length helpers.

Amounts travel through the API in major units (naira) and are stored as
integer minor units (kobo). Rounding happens only at that boundary.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

MINOR_UNITS_PER_MAJOR = 100

Amount = Union[Decimal, int, float, str]


def to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def to_minor_units(amount: Amount) -> int:
    """Convert a major-unit amount to integer minor units, rounding half-up."""
    value = to_decimal(amount) * MINOR_UNITS_PER_MAJOR
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def count_nights(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days
