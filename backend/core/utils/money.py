"""
Money helpers. All amounts are Decimal with two places, rounded half-up.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Union

from pydantic import PlainSerializer

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise into the amount
    return Decimal(str(value))


def round_money(value: Number) -> Decimal:
    """Round to two decimals, half-up (1.005 -> 1.01)."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_money(value: Number, symbol: str = "₹") -> str:
    return f"{symbol}{round_money(value):,.2f}"


# Decimal in Python, JSON number on the wire.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]
