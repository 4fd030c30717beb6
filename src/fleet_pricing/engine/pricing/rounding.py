from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

from fleet_pricing.engine.canonical.models import RoundingPolicy

_INCREMENTS = {
    RoundingPolicy.NEAREST_10: Decimal("10"),
    RoundingPolicy.NEAREST_50: Decimal("50"),
}
_HUNDRED = Decimal("100")
_NINETY_NINE = Decimal("99")


def _round_to_increment(value: Decimal, increment: Decimal) -> Decimal:
    increments = (value / increment).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return increments * increment


def round_price(value: Decimal, policy: RoundingPolicy | None) -> Decimal:
    """Apply a markup rule's rounding policy.

    NEAREST_99 floors to the hundred and adds 99, so 1999.5 becomes 1999 and
    5401 becomes 5499. Every policy is idempotent.
    """
    if policy is None or policy == RoundingPolicy.NONE:
        return value
    if policy == RoundingPolicy.NEAREST_99:
        base = (value / _HUNDRED).to_integral_value(rounding=ROUND_FLOOR) * _HUNDRED
        return base + _NINETY_NINE
    return _round_to_increment(value, _INCREMENTS[policy])


def round_up_to_ten(value: Decimal) -> Decimal:
    tens = (value / Decimal("10")).to_integral_value(rounding=ROUND_CEILING)
    return tens * Decimal("10")
