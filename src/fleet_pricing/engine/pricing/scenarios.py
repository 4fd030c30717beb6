from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from fleet_pricing.app.models.config import EngineConfig
from fleet_pricing.engine.canonical.models import ItemCostBasis
from fleet_pricing.engine.pricing.margins import MarginStatus, classify_margin, margin_on_price
from fleet_pricing.util.errors import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")
# Rough shares of an average landed cost, used when only the average is known.
FREIGHT_COST_SHARE = Decimal("0.15")
FOB_COST_SHARE = Decimal("0.60")
MOST_AFFECTED_LIMIT = 10


class ScenarioKind(str, Enum):
    EXCHANGE_RATE = "EXCHANGE_RATE"
    FREIGHT = "FREIGHT"
    DUTY = "DUTY"
    MARKUP = "MARKUP"


@dataclass
class ScenarioLine:
    item_id: str
    name: str
    category: Optional[str]
    current_cost: Decimal
    simulated_cost: Decimal
    current_price: Decimal
    simulated_price: Decimal
    current_margin: Decimal
    simulated_margin: Decimal
    min_margin: Decimal
    status: MarginStatus

    @property
    def margin_change(self) -> Decimal:
        return self.simulated_margin - self.current_margin


@dataclass
class ScenarioImpact:
    scenario: ScenarioKind
    variation: Decimal
    lines: List[ScenarioLine] = field(default_factory=list)
    average_current_cost: Decimal = ZERO
    average_simulated_cost: Decimal = ZERO
    average_current_margin: Decimal = ZERO
    average_simulated_margin: Decimal = ZERO
    below_minimum_before: int = 0
    below_minimum_after: int = 0
    required_adjustment_pct: Decimal = ZERO

    @property
    def affected(self) -> int:
        return len(self.lines)

    def most_affected(self, limit: int = MOST_AFFECTED_LIMIT) -> List[ScenarioLine]:
        return sorted(self.lines, key=lambda line: line.margin_change)[:limit]


def parse_scenario(value: ScenarioKind | str) -> ScenarioKind:
    if isinstance(value, ScenarioKind):
        return value
    try:
        return ScenarioKind(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"unknown scenario '{value}'") from exc


def simulated_cost(item: ItemCostBasis, scenario: ScenarioKind, variation: Decimal, config: EngineConfig) -> Decimal:
    cost = item.average_cost_local
    if scenario == ScenarioKind.EXCHANGE_RATE:
        return cost * (ONE + variation)
    if scenario == ScenarioKind.FREIGHT:
        return cost * (ONE + variation * FREIGHT_COST_SHARE)
    if scenario == ScenarioKind.DUTY:
        # variation is the new duty rate; the category rate is swapped out on the FOB share.
        fob = cost * FOB_COST_SHARE
        return cost - fob * config.duty_rate(item.category) + fob * variation
    return cost


def simulate_scenario(
    items: Iterable[ItemCostBasis],
    config: EngineConfig,
    scenario: ScenarioKind | str,
    variation: Decimal,
    *,
    categories: Optional[Sequence[str]] = None,
) -> ScenarioImpact:
    """Re-margin every priced item under a cost or price shock.

    ``variation`` is a fraction: the relative change of the exchange rate,
    freight or general markup, or the new absolute duty rate for DUTY.
    Only the item's price moves under MARKUP; every other scenario moves
    its cost. Pure: nothing is written.
    """
    kind = parse_scenario(scenario)
    if kind == ScenarioKind.DUTY and variation < 0:
        raise ValidationError("duty rate must be >= 0")
    if kind != ScenarioKind.DUTY and variation <= -1:
        raise ValidationError("variation must be > -100%")

    impact = ScenarioImpact(scenario=kind, variation=variation)
    for item in items:
        if item.list_price <= 0:
            continue
        if categories and item.category not in categories:
            continue
        price = item.list_price
        new_price = price * (ONE + variation) if kind == ScenarioKind.MARKUP else price
        new_cost = simulated_cost(item, kind, variation, config)
        new_margin = margin_on_price(new_price, new_cost)
        min_margin = config.min_margin(item.category)
        impact.lines.append(
            ScenarioLine(
                item_id=item.item_id,
                name=item.name,
                category=item.category,
                current_cost=item.average_cost_local,
                simulated_cost=new_cost,
                current_price=price,
                simulated_price=new_price,
                current_margin=margin_on_price(price, item.average_cost_local),
                simulated_margin=new_margin,
                min_margin=min_margin,
                status=classify_margin(new_margin, floor=config.margins.critical, target=min_margin),
            )
        )

    if not impact.lines:
        return impact

    count = Decimal(len(impact.lines))
    impact.average_current_cost = sum((line.current_cost for line in impact.lines), ZERO) / count
    impact.average_simulated_cost = sum((line.simulated_cost for line in impact.lines), ZERO) / count
    impact.average_current_margin = sum((line.current_margin for line in impact.lines), ZERO) / count
    impact.average_simulated_margin = sum((line.simulated_margin for line in impact.lines), ZERO) / count
    impact.below_minimum_before = sum(1 for line in impact.lines if line.current_margin < line.min_margin)
    impact.below_minimum_after = sum(1 for line in impact.lines if line.simulated_margin < line.min_margin)

    # Price increase, as a share of the average price, that absorbs the extra cost.
    if impact.average_simulated_margin < impact.average_current_margin:
        average_price = sum((line.current_price for line in impact.lines), ZERO) / count
        impact.required_adjustment_pct = (
            impact.average_simulated_cost - impact.average_current_cost
        ) / average_price
    return impact
