"""Decimal money helpers shared by initiation and settlement"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from ..config import PLATFORM_FEE_RATE

TWO_PLACES = Decimal("0.01")
MINOR_UNITS = Decimal(100)

Number = Union[int, float, str, Decimal]


def to_decimal(value: Number) -> Decimal:
    """Decimal from user or provider input; floats go through str to avoid binary noise"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_minor_units(amount: Number) -> int:
    """Major currency units to the provider's minor units (x100)"""
    return int((to_decimal(amount) * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Number) -> Decimal:
    return (to_decimal(amount) / MINOR_UNITS).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeSplit:
    amount: Decimal
    platform_fee: Decimal
    business_amount: Decimal


def compute_fee_split(amount: Number, rate: Number = PLATFORM_FEE_RATE) -> FeeSplit:
    """
    Split a client payment between platform and business.

    The fee is rounded to cents and the business gets the remainder, so
    platform_fee + business_amount always equals amount exactly.
    """
    total = to_decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    fee = (total * to_decimal(rate)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return FeeSplit(amount=total, platform_fee=fee, business_amount=total - fee)
