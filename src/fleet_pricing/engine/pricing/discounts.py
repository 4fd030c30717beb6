from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from fleet_pricing.engine.canonical.models import ConditionKind, DiscountKind, DiscountRule
from fleet_pricing.util.errors import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass
class DiscountContext:
    plan_tier: Optional[str] = None
    tenure_months: int = 0
    quantity: int = 1
    category: Optional[str] = None


@dataclass
class AppliedDiscount:
    rule_id: str
    name: str
    kind: DiscountKind
    value: Decimal
    amount: Decimal
    price_after: Decimal


@dataclass
class StackedPrice:
    base_price: Decimal
    final_price: Decimal
    applied: List[AppliedDiscount] = field(default_factory=list)
    global_discount_amount: Decimal = ZERO

    @property
    def cumulative_discount_pct(self) -> Decimal:
        if self.base_price <= 0:
            return ZERO
        return (self.base_price - self.final_price) / self.base_price


def rule_matches(rule: DiscountRule, context: DiscountContext) -> bool:
    if rule.condition == ConditionKind.ALWAYS:
        return True
    if rule.condition == ConditionKind.PLAN_TIER:
        return context.plan_tier is not None and context.plan_tier == rule.plan_tier
    if rule.condition == ConditionKind.TENURE:
        return context.tenure_months >= rule.min_tenure_months
    if rule.condition == ConditionKind.QUANTITY:
        return context.quantity >= rule.min_quantity
    if rule.condition == ConditionKind.CATEGORY:
        return context.category == rule.category
    return False


def apply_discount(price: Decimal, rule: DiscountRule) -> Decimal:
    if rule.kind == DiscountKind.PERCENTAGE:
        return price * (ONE - rule.value)
    return max(ZERO, price - rule.value)


def _rule_order(rule: DiscountRule) -> tuple[int, str]:
    return (-rule.priority, rule.rule_id)


def stack_discounts(
    base_price: Decimal,
    rules: Iterable[DiscountRule],
    context: DiscountContext,
    *,
    at: datetime,
    global_discount: Optional[Decimal] = None,
) -> StackedPrice:
    """Apply matching discount rules to a resolved base price.

    At most one non-accumulable rule (highest priority) applies first. Every
    matching accumulable rule then applies in priority order against the
    running price, so 5% then 10% leaves 0.95 x 0.90 of the base, not 0.85.
    A price list's flat discount comes last.
    """
    if base_price < 0:
        raise ValidationError("base price must be >= 0")
    if context.quantity <= 0:
        raise ValidationError("order quantity must be > 0")

    matching = [rule for rule in rules if rule.in_effect(at) and rule_matches(rule, context)]
    exclusive = sorted((rule for rule in matching if not rule.accumulable), key=_rule_order)
    stackable = sorted((rule for rule in matching if rule.accumulable), key=_rule_order)

    running = base_price
    applied: List[AppliedDiscount] = []
    for rule in exclusive[:1] + stackable:
        discounted = apply_discount(running, rule)
        applied.append(
            AppliedDiscount(
                rule_id=rule.rule_id,
                name=rule.name,
                kind=rule.kind,
                value=rule.value,
                amount=running - discounted,
                price_after=discounted,
            )
        )
        running = discounted

    global_amount = ZERO
    if global_discount:
        discounted = running * (ONE - global_discount)
        global_amount = running - discounted
        running = discounted

    return StackedPrice(
        base_price=base_price,
        final_price=running,
        applied=applied,
        global_discount_amount=global_amount,
    )
