from decimal import Decimal

import pytest

from fleet_pricing.app.models.config import CategoryConfig, EngineConfig
from fleet_pricing.engine.canonical.models import ItemCostBasis
from fleet_pricing.engine.pricing.margins import MarginStatus
from fleet_pricing.engine.pricing.scenarios import ScenarioKind, simulate_scenario
from fleet_pricing.util.errors import ValidationError

CONFIG = EngineConfig(
    categories={"BRAKES": CategoryConfig(min_margin=Decimal("0.30"), duty_rate=Decimal("0.10"))},
)


def _items() -> list:
    return [
        ItemCostBasis(
            item_id="PAD-01", category="BRAKES", average_cost_local=Decimal("600"), list_price=Decimal("1000")
        ),
        ItemCostBasis(item_id="DISC-02", average_cost_local=Decimal("300"), list_price=Decimal("500")),
        ItemCostBasis(item_id="NEW-03", category="BRAKES", average_cost_local=Decimal("50")),
    ]


def _line(impact, item_id: str):
    return next(line for line in impact.lines if line.item_id == item_id)


def test_exchange_rate_shock_moves_cost() -> None:
    impact = simulate_scenario(_items(), CONFIG, ScenarioKind.EXCHANGE_RATE, Decimal("0.20"))

    assert impact.affected == 2
    pad = _line(impact, "PAD-01")
    assert pad.simulated_cost == Decimal("720")
    assert pad.simulated_price == Decimal("1000")
    assert pad.simulated_margin == Decimal("0.28")
    assert pad.status == MarginStatus.LOW
    assert _line(impact, "DISC-02").status == MarginStatus.OK
    assert impact.average_current_margin == Decimal("0.4")
    assert impact.average_simulated_margin == Decimal("0.28")
    assert (impact.below_minimum_before, impact.below_minimum_after) == (0, 1)
    assert impact.required_adjustment_pct == Decimal("0.12")


def test_freight_shock_uses_freight_share_of_cost() -> None:
    impact = simulate_scenario(_items(), CONFIG, "freight", Decimal("1"))

    pad = _line(impact, "PAD-01")
    assert pad.simulated_cost == Decimal("690")
    assert pad.status == MarginStatus.OK


def test_duty_scenario_rebases_duty_on_fob_share() -> None:
    impact = simulate_scenario(_items(), CONFIG, ScenarioKind.DUTY, Decimal("0.30"))

    assert _line(impact, "PAD-01").simulated_cost == Decimal("672")
    assert _line(impact, "DISC-02").simulated_cost == Decimal("325.2")


def test_markup_scenario_moves_price_not_cost() -> None:
    impact = simulate_scenario(_items(), CONFIG, ScenarioKind.MARKUP, Decimal("-0.5"))

    pad = _line(impact, "PAD-01")
    assert pad.simulated_cost == Decimal("600")
    assert pad.simulated_price == Decimal("500")
    assert pad.status == MarginStatus.CRITICAL
    assert impact.average_simulated_cost == impact.average_current_cost
    assert impact.required_adjustment_pct == Decimal("0")


def test_most_affected_orders_by_margin_loss() -> None:
    items = _items() + [
        ItemCostBasis(item_id="OIL-04", average_cost_local=Decimal("10"), list_price=Decimal("100")),
    ]

    impact = simulate_scenario(items, CONFIG, ScenarioKind.EXCHANGE_RATE, Decimal("0.20"))

    assert [line.item_id for line in impact.most_affected()] == ["PAD-01", "DISC-02", "OIL-04"]
    assert [line.item_id for line in impact.most_affected(limit=1)] == ["PAD-01"]


def test_category_filter_and_empty_result() -> None:
    impact = simulate_scenario(_items(), CONFIG, ScenarioKind.EXCHANGE_RATE, Decimal("0.1"), categories=["BRAKES"])
    assert [line.item_id for line in impact.lines] == ["PAD-01"]

    empty = simulate_scenario([], CONFIG, ScenarioKind.FREIGHT, Decimal("0.1"))
    assert empty.affected == 0
    assert empty.average_simulated_margin == Decimal("0")


@pytest.mark.parametrize(
    "scenario,variation",
    [
        ("BY_MOOD", Decimal("0.1")),
        (ScenarioKind.EXCHANGE_RATE, Decimal("-1")),
        (ScenarioKind.DUTY, Decimal("-0.1")),
    ],
)
def test_invalid_scenarios_are_rejected(scenario, variation) -> None:
    with pytest.raises(ValidationError):
        simulate_scenario(_items(), CONFIG, scenario, variation)
