from decimal import Decimal

import pytest

from fleet_pricing.engine.canonical.models import ItemCostBasis
from fleet_pricing.engine.costing.weighted_average import merge_cost_basis, weighted_average
from fleet_pricing.util.errors import ValidationError


def test_weighted_average_blends_by_quantity() -> None:
    result = weighted_average(10, Decimal("100"), 5, Decimal("160"))

    assert result == Decimal("120")


def test_first_receipt_takes_incoming_cost() -> None:
    assert weighted_average(0, Decimal("999"), 3, Decimal("42")) == Decimal("42")


@pytest.mark.parametrize(
    "old_stock,old_cost,incoming_quantity,incoming_cost",
    [
        (10, Decimal("100"), 5, Decimal("160")),
        (1, Decimal("500"), 1000, Decimal("1")),
        (7, Decimal("33.33"), 3, Decimal("33.33")),
        (250, Decimal("0"), 1, Decimal("10")),
    ],
)
def test_merged_cost_stays_between_inputs(old_stock, old_cost, incoming_quantity, incoming_cost) -> None:
    result = weighted_average(old_stock, old_cost, incoming_quantity, incoming_cost)

    assert min(old_cost, incoming_cost) <= result <= max(old_cost, incoming_cost)


@pytest.mark.parametrize(
    "args",
    [
        (-1, Decimal("1"), 1, Decimal("1")),
        (1, Decimal("1"), 0, Decimal("1")),
        (1, Decimal("-1"), 1, Decimal("1")),
        (1, Decimal("1"), 1, Decimal("-0.01")),
    ],
)
def test_invalid_merge_inputs_are_rejected(args) -> None:
    with pytest.raises(ValidationError):
        weighted_average(*args)


def test_merge_cost_basis_updates_both_currencies() -> None:
    item = ItemCostBasis(
        item_id="PAD-01",
        average_cost_local=Decimal("100"),
        average_cost_foreign=Decimal("0.1"),
        stock=10,
    )

    merge = merge_cost_basis(
        item,
        incoming_quantity=10,
        incoming_cost_local=Decimal("300"),
        incoming_cost_foreign=Decimal("0.3"),
    )

    assert merge.cost_before_local == Decimal("100")
    assert merge.cost_after_local == Decimal("200")
    assert merge.cost_after_foreign == Decimal("0.2")
    assert merge.quantity_before == 10
    assert merge.quantity_after == 20
