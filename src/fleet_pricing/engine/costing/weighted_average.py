from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from fleet_pricing.engine.canonical.models import ItemCostBasis
from fleet_pricing.util.errors import ValidationError


@dataclass
class CostMerge:
    cost_before_local: Decimal
    cost_after_local: Decimal
    cost_before_foreign: Decimal
    cost_after_foreign: Decimal
    quantity_before: int
    quantity_after: int


def weighted_average(
    old_stock: int,
    old_cost: Decimal,
    incoming_quantity: int,
    incoming_cost: Decimal,
) -> Decimal:
    if old_stock < 0:
        raise ValidationError("current stock must be >= 0")
    if incoming_quantity <= 0:
        raise ValidationError("incoming quantity must be > 0")
    if old_cost < 0 or incoming_cost < 0:
        raise ValidationError("costs must be >= 0")
    if old_stock == 0:
        return incoming_cost
    total_quantity = old_stock + incoming_quantity
    return (old_stock * old_cost + incoming_quantity * incoming_cost) / total_quantity


def merge_cost_basis(
    item: ItemCostBasis,
    *,
    incoming_quantity: int,
    incoming_cost_local: Decimal,
    incoming_cost_foreign: Decimal,
) -> CostMerge:
    # quantity_after is the weighting quantity; stock itself moves through receiving.
    return CostMerge(
        cost_before_local=item.average_cost_local,
        cost_after_local=weighted_average(
            item.stock, item.average_cost_local, incoming_quantity, incoming_cost_local
        ),
        cost_before_foreign=item.average_cost_foreign,
        cost_after_foreign=weighted_average(
            item.stock, item.average_cost_foreign, incoming_quantity, incoming_cost_foreign
        ),
        quantity_before=item.stock,
        quantity_after=item.stock + incoming_quantity,
    )
