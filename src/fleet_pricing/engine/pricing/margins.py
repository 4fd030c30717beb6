from __future__ import annotations

from decimal import Decimal
from enum import Enum

ZERO = Decimal("0")


class MarginStatus(str, Enum):
    OK = "OK"
    LOW = "LOW"
    CRITICAL = "CRITICAL"


def margin_on_price(price: Decimal, cost: Decimal) -> Decimal:
    # Margin is measured on price; a zero price has no margin to report.
    if price <= 0:
        return ZERO
    return (price - cost) / price


def classify_margin(margin: Decimal, *, floor: Decimal, target: Decimal) -> MarginStatus:
    if margin >= target:
        return MarginStatus.OK
    if margin >= floor:
        return MarginStatus.LOW
    return MarginStatus.CRITICAL


def price_for_margin(cost: Decimal, margin: Decimal) -> Decimal:
    return cost / (Decimal("1") - margin)
