"""Conversions between major currency units (pesos) and minor units (cents).

Conekta takes every amount in cents. Rounding is ROUND_HALF_UP applied to the
decimal string form of the amount, so ``99.995`` becomes ``10000`` rather than
whatever the binary float happens to hold.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple, Union

Number = Union[int, float, Decimal, str]

CENTS = Decimal(100)


def _to_decimal(amount: Number) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def to_minor_units(amount: Number) -> int:
    cents = _to_decimal(amount) * CENTS
    return int(cents.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_units(cents: int) -> float:
    return float(Decimal(int(cents)) / CENTS)


def sum_major_units(lines: Iterable[Tuple[Number, int]]) -> float:
    """Exact sum of ``price * quantity`` pairs, in major units."""
    total = sum((_to_decimal(price) * quantity for price, quantity in lines), Decimal(0))
    return float(total)
