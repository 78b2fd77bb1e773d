from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

SCALE = 10
EPSILON = Decimal(1).scaleb(-SCALE)
ZERO = Decimal(0)
ONE = Decimal(1)
HALF = Decimal("0.5")

SIGNUM_BUY = 1
SIGNUM_SELL = -1


def divide(numerator: Decimal, denominator: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    return (numerator / denominator).quantize(EPSILON, rounding=rounding)


def round_to_increment(value: Decimal, increment: Decimal | None, rounding: str) -> Decimal | None:
    """
    Round to a whole multiple of the venue increment (tick or lot):
      round_to_increment(101.37, 0.5, ROUND_DOWN) == 101.0
    """
    if increment is None or increment <= 0:
        return None
    units = (value / increment).to_integral_value(rounding=rounding)
    return units * increment
