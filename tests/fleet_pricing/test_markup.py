from datetime import datetime
from decimal import Decimal

import pytest

from fleet_pricing.app.models.config import CategoryConfig, EngineConfig
from fleet_pricing.engine.canonical.models import BatchKind, ItemCostBasis, MarkupRule, RoundingPolicy
from fleet_pricing.engine.pricing.markup import preview_recalculation, resolve_markup, select_markup_rule
from fleet_pricing.util.errors import ValidationError


def _rule(rule_id: str, **kwargs) -> MarkupRule:
    data = {"rule_id": rule_id, "name": rule_id, "multiplier": Decimal("1.5")}
    data.update(kwargs)
    return MarkupRule(**data)


def test_fallback_multiplier_with_nearest_99() -> None:
    item = ItemCostBasis(item_id="X", category="MISC", average_cost_local=Decimal("1000"))
    config = EngineConfig(default_rounding=RoundingPolicy.NEAREST_99)

    resolution = resolve_markup(item, [], config)

    assert resolution.rule_id is None
    assert resolution.multiplier == Decimal("2.0")
    assert resolution.candidate_price == Decimal("2099")


def test_category_multiplier_overrides_default() -> None:
    item = ItemCostBasis(item_id="X", category="ENGINE", average_cost_local=Decimal("100"))
    config = EngineConfig(categories={"ENGINE": CategoryConfig(default_multiplier=Decimal("1.8"))})

    assert resolve_markup(item, [], config).candidate_price == Decimal("180")


def test_category_rule_beats_higher_priority_generic_rule() -> None:
    rules = [
        _rule("generic", priority=10, multiplier=Decimal("3")),
        _rule("brakes", category="BRAKES", priority=0, multiplier=Decimal("1.8")),
    ]

    chosen = select_markup_rule(rules, cost=Decimal("100"), category="BRAKES", is_oem=False)

    assert chosen.rule_id == "brakes"


def test_equal_priority_ties_break_on_rule_id() -> None:
    rules = [_rule("r2", priority=5), _rule("r1", priority=5), _rule("r0", priority=1)]

    chosen = select_markup_rule(rules, cost=Decimal("100"), category=None, is_oem=False)

    assert chosen.rule_id == "r1"


def test_cost_band_upper_bound_is_exclusive() -> None:
    rules = [
        _rule("cheap", band_upper=Decimal("500"), multiplier=Decimal("2.5")),
        _rule("dear", band_lower=Decimal("500"), multiplier=Decimal("1.4")),
    ]

    assert select_markup_rule(rules, cost=Decimal("499.99"), category=None, is_oem=False).rule_id == "cheap"
    assert select_markup_rule(rules, cost=Decimal("500"), category=None, is_oem=False).rule_id == "dear"


def test_oem_filter_and_inactive_rules_are_respected() -> None:
    rules = [
        _rule("oem", is_oem=True, priority=9),
        _rule("off", active=False, priority=99),
        _rule("any"),
    ]

    assert select_markup_rule(rules, cost=Decimal("1"), category=None, is_oem=True).rule_id == "oem"
    assert select_markup_rule(rules, cost=Decimal("1"), category=None, is_oem=False).rule_id == "any"


def test_rule_rounding_is_applied() -> None:
    item = ItemCostBasis(item_id="X", average_cost_local=Decimal("1234"))
    rules = [_rule("r", multiplier=Decimal("2"), rounding=RoundingPolicy.NEAREST_50)]

    resolution = resolve_markup(item, rules, EngineConfig())

    assert resolution.candidate_price == Decimal("2450")
    assert resolution.rule_name == "r"


def test_inverted_band_is_rejected() -> None:
    with pytest.raises(ValueError):
        _rule("bad", band_lower=Decimal("10"), band_upper=Decimal("5"))


def test_negative_cost_is_rejected() -> None:
    item = ItemCostBasis(item_id="X")
    with pytest.raises(ValidationError):
        resolve_markup(item, [], EngineConfig(), cost=Decimal("-1"))


def test_preview_summarises_direction_and_skips_zero_cost() -> None:
    items = [
        ItemCostBasis(item_id="UP", average_cost_local=Decimal("100"), list_price=Decimal("150")),
        ItemCostBasis(item_id="DOWN", average_cost_local=Decimal("100"), list_price=Decimal("250")),
        ItemCostBasis(item_id="SAME", average_cost_local=Decimal("100"), list_price=Decimal("200")),
        ItemCostBasis(item_id="FREE", average_cost_local=Decimal("0"), list_price=Decimal("10")),
    ]

    preview = preview_recalculation(items, [], EngineConfig())

    assert [r.item_id for r in preview.items] == ["UP", "DOWN", "SAME"]
    assert (preview.going_up, preview.going_down, preview.unchanged) == (1, 1, 1)
    assert preview.average_new_margin == Decimal("0.5")
    assert preview.items[0].delta_pct.quantize(Decimal("0.01")) == Decimal("33.33")


def test_preview_filters_and_builds_unapplied_batch() -> None:
    items = [
        ItemCostBasis(item_id="A", category="BRAKES", average_cost_local=Decimal("10")),
        ItemCostBasis(item_id="B", category="ENGINE", average_cost_local=Decimal("10")),
        ItemCostBasis(item_id="C", category="BRAKES", average_cost_local=Decimal("10"), list_price=Decimal("5")),
    ]

    preview = preview_recalculation(items, [], EngineConfig(), categories=["BRAKES"], only_without_price=True)
    batch = preview.to_batch(price_list="B2C", actor="pricing", now=datetime(2026, 1, 1))

    assert [r.item_id for r in preview.items] == ["A"]
    assert preview.items[0].delta_pct is None
    assert batch.kind == BatchKind.RECALCULATION
    assert batch.applied is False
    assert [(c.item_id, c.new_price) for c in batch.changes] == [("A", Decimal("20.0"))]
