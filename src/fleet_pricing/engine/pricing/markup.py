from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from fleet_pricing.app.models.config import EngineConfig
from fleet_pricing.engine.canonical.models import (
    BatchKind,
    ItemCostBasis,
    MarkupRule,
    PriceChangeBatch,
    ProposedChange,
    RoundingPolicy,
)
from fleet_pricing.engine.pricing.margins import margin_on_price
from fleet_pricing.engine.pricing.rounding import round_price
from fleet_pricing.util.errors import ValidationError

ZERO = Decimal("0")


@dataclass
class MarkupResolution:
    item_id: str
    name: str
    category: Optional[str]
    cost: Decimal
    multiplier: Decimal
    rule_id: Optional[str]
    rule_name: str
    rounding: RoundingPolicy
    candidate_price: Decimal
    margin: Decimal
    current_price: Decimal
    current_margin: Decimal
    delta_pct: Optional[Decimal]


@dataclass
class RecalculationPreview:
    items: List[MarkupResolution] = field(default_factory=list)
    going_up: int = 0
    going_down: int = 0
    unchanged: int = 0
    average_current_margin: Decimal = ZERO
    average_new_margin: Decimal = ZERO

    def to_batch(
        self,
        *,
        price_list: str,
        actor: str,
        now: datetime,
        description: str = "Automatic retail recalculation",
        parameters: Optional[dict] = None,
    ) -> PriceChangeBatch:
        return PriceChangeBatch(
            batch_id=uuid.uuid4().hex,
            description=description,
            kind=BatchKind.RECALCULATION,
            price_list=price_list,
            parameters=parameters or {},
            changes=[
                ProposedChange(
                    item_id=resolution.item_id,
                    new_price=resolution.candidate_price,
                    current_price=resolution.current_price,
                    rule_name=resolution.rule_name,
                )
                for resolution in self.items
            ],
            actor=actor,
            created_at=now,
        )


def select_markup_rule(
    rules: Iterable[MarkupRule],
    *,
    cost: Decimal,
    category: Optional[str],
    is_oem: bool,
) -> Optional[MarkupRule]:
    """Pick the best matching rule, or None.

    Category-specific rules beat generic ones, then higher priority wins;
    equal priorities fall back to the lowest rule_id so the choice never
    depends on the order the rules were loaded in.
    """
    matches = [rule for rule in rules if rule.matches(cost=cost, category=category, is_oem=is_oem)]
    if not matches:
        return None
    return min(matches, key=lambda rule: (rule.category is None, -rule.priority, rule.rule_id))


def resolve_markup(
    item: ItemCostBasis,
    rules: Sequence[MarkupRule],
    config: EngineConfig,
    *,
    cost: Optional[Decimal] = None,
) -> MarkupResolution:
    cost = item.average_cost_local if cost is None else cost
    if cost < 0:
        raise ValidationError(f"cost for item {item.item_id} must be >= 0")

    rule = select_markup_rule(rules, cost=cost, category=item.category, is_oem=item.is_oem)
    if rule is not None:
        multiplier = rule.multiplier
        rounding = rule.rounding
        rule_id: Optional[str] = rule.rule_id
        rule_name = rule.name
    else:
        multiplier = config.multiplier(item.category)
        rounding = config.default_rounding
        rule_id = None
        rule_name = f"default markup ({multiplier}x)"

    if cost == 0:
        candidate = ZERO
        rule_name = "no cost"
    else:
        candidate = round_price(cost * multiplier, rounding)

    current = item.list_price
    delta_pct = (candidate - current) / current * 100 if current > 0 else None
    return MarkupResolution(
        item_id=item.item_id,
        name=item.name,
        category=item.category,
        cost=cost,
        multiplier=multiplier,
        rule_id=rule_id,
        rule_name=rule_name,
        rounding=rounding,
        candidate_price=candidate,
        margin=margin_on_price(candidate, cost),
        current_price=current,
        current_margin=margin_on_price(current, cost),
        delta_pct=delta_pct,
    )


def preview_recalculation(
    items: Iterable[ItemCostBasis],
    rules: Sequence[MarkupRule],
    config: EngineConfig,
    *,
    item_ids: Optional[Sequence[str]] = None,
    categories: Optional[Sequence[str]] = None,
    only_without_price: bool = False,
) -> RecalculationPreview:
    preview = RecalculationPreview()
    current_total = ZERO
    new_total = ZERO
    for item in items:
        if item_ids and item.item_id not in item_ids:
            continue
        if categories and item.category not in categories:
            continue
        if only_without_price and item.list_price != 0:
            continue
        if item.average_cost_local == 0:
            continue
        resolution = resolve_markup(item, rules, config)
        if resolution.candidate_price > resolution.current_price:
            preview.going_up += 1
        elif resolution.candidate_price < resolution.current_price:
            preview.going_down += 1
        else:
            preview.unchanged += 1
        current_total += resolution.current_margin
        new_total += resolution.margin
        preview.items.append(resolution)

    if preview.items:
        preview.average_current_margin = current_total / len(preview.items)
        preview.average_new_margin = new_total / len(preview.items)
    return preview
