from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fleet_pricing.app.models.config import EngineConfig
from fleet_pricing.engine.bulk.apply import (
    BulkApplyRequest,
    BulkPriceApplier,
    PercentageAdjustment,
    PriceChangeRequest,
)
from fleet_pricing.engine.canonical.models import BatchKind, ItemCostBasis, PriceList
from fleet_pricing.engine.pipeline import propose_recalculation
from fleet_pricing.persistence.memory import InMemoryPricingStore
from fleet_pricing.util.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture()
def store() -> InMemoryPricingStore:
    store = InMemoryPricingStore()
    store.put_price_list(PriceList(code="B2C"))
    store.put_price_list(PriceList(code="WHOLESALE", priority=5))
    store.put_item(
        ItemCostBasis(item_id="PAD-01", category="BRAKES", average_cost_local=Decimal("600"), list_price=Decimal("1000"))
    )
    store.put_item(
        ItemCostBasis(item_id="DISC-02", category="BRAKES", average_cost_local=Decimal("300"), list_price=Decimal("500"))
    )
    store.put_item(ItemCostBasis(item_id="OIL-03", category="FLUIDS", average_cost_local=Decimal("10")))
    return store


@pytest.fixture()
def metrics() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def applier(store: InMemoryPricingStore, metrics: MagicMock) -> BulkPriceApplier:
    return BulkPriceApplier(store, EngineConfig(), metrics=metrics)


def _explicit(*changes, **kwargs) -> BulkApplyRequest:
    data = {
        "reason": "supplier price increase",
        "confirm": True,
        "changes": [PriceChangeRequest(item_id=item_id, new_price=Decimal(price)) for item_id, price in changes],
    }
    data.update(kwargs)
    return BulkApplyRequest(**data)


def test_explicit_changes_open_new_entries_and_write_history(store, applier, metrics, now) -> None:
    result = applier.apply(_explicit(("PAD-01", "1200"), ("DISC-02", "450")), actor="pricing", now=now)

    assert result.kind == BatchKind.EXPLICIT
    assert result.applied == 2
    pad = store.history(item_id="PAD-01")[0]
    assert (pad.previous_price, pad.new_price) == (Decimal("1000"), Decimal("1200"))
    assert pad.cost_at_change == Decimal("600")
    assert pad.margin_at_change == Decimal("0.5")
    assert pad.actor == "pricing"
    assert store.get_item("PAD-01").list_price == Decimal("1200")
    assert store.open_entries(("PAD-01", "B2C", 1))[0].price == Decimal("1200")
    assert store.get_batch(result.batch_id).applied is True
    metrics.record_price_changes.assert_called_once_with(price_list="B2C", count=2)


def test_at_most_one_open_entry_per_key(store, applier, now) -> None:
    for offset, price in enumerate(["1100", "1200", "1300"]):
        applier.apply(_explicit(("PAD-01", price)), actor="pricing", now=now + timedelta(minutes=offset))

    entries = store.entries(item_id="PAD-01", price_list="B2C")
    assert len(entries) == 3
    assert [entry.price for entry in entries if entry.is_open] == [Decimal("1300")]
    assert [record.previous_price for record in store.history(item_id="PAD-01")] == [
        Decimal("1000"),
        Decimal("1100"),
        Decimal("1200"),
    ]


def test_non_default_list_leaves_catalog_price_alone(store, applier, now) -> None:
    applier.apply(_explicit(("PAD-01", "900"), price_list="WHOLESALE"), actor="pricing", now=now)

    assert store.get_item("PAD-01").list_price == Decimal("1000")
    record = store.history(item_id="PAD-01")[0]
    assert record.price_list == "WHOLESALE"
    assert record.previous_price == Decimal("0")


@pytest.mark.parametrize(
    "overrides,error",
    [
        ({"confirm": False}, ValidationError),
        ({"reason": ""}, ValidationError),
        ({"reason": "   "}, ValidationError),
        ({"price_list": "VIP"}, NotFoundError),
        ({"batch_id": "missing", "changes": []}, NotFoundError),
        ({"changes": []}, ValidationError),
    ],
)
def test_requests_are_validated_before_writing(store, applier, metrics, now, overrides, error) -> None:
    with pytest.raises(error):
        applier.apply(_explicit(("PAD-01", "1200"), **overrides), actor="pricing", now=now)

    assert store.history() == []
    assert store.entries() == []
    metrics.record_write_rejected.assert_called_once_with(error_type=error.__name__)


@pytest.mark.parametrize(
    "changes,error",
    [
        ((("PAD-01", "1200"), ("PAD-01", "1300")), ValidationError),
        ((("PAD-01", "-1"),), ValidationError),
        ((("PAD-01", "1200"), ("GHOST", "5")), NotFoundError),
    ],
)
def test_invalid_rows_reject_the_whole_batch(store, applier, now, changes, error) -> None:
    with pytest.raises(error):
        applier.apply(_explicit(*changes), actor="pricing", now=now)

    assert store.history() == []
    assert store.get_item("PAD-01").list_price == Decimal("1000")


def test_percentage_adjustment_over_filtered_items(store, applier, now) -> None:
    request = BulkApplyRequest(
        reason="brakes +10%",
        confirm=True,
        adjustment=PercentageAdjustment(pct=Decimal("0.10"), categories=["BRAKES"]),
    )

    result = applier.apply(request, actor="pricing", now=now)

    assert result.kind == BatchKind.PERCENTAGE
    assert {record.item_id: record.new_price for record in result.history} == {
        "PAD-01": Decimal("1100"),
        "DISC-02": Decimal("550"),
    }
    assert store.get_batch(result.batch_id).parameters["categories"] == ["BRAKES"]


def test_adjustment_without_matching_rows_is_a_conflict(store, applier, now) -> None:
    request = BulkApplyRequest(
        reason="fluids +5%",
        confirm=True,
        adjustment=PercentageAdjustment(pct=Decimal("0.05"), categories=["FLUIDS"]),
    )

    with pytest.raises(ConflictError):
        applier.apply(request, actor="pricing", now=now)


def test_proposed_batch_applies_once(store, applier, now) -> None:
    _, batch = propose_recalculation(store, [], EngineConfig(), actor="pricing", now=now, preview=False)
    request = BulkApplyRequest(reason="monthly recalculation", confirm=True, batch_id=batch.batch_id)

    result = applier.apply(request, actor="pricing", now=now)

    assert result.batch_id == batch.batch_id
    assert result.kind == BatchKind.RECALCULATION
    assert store.get_item("OIL-03").list_price == Decimal("20.0")
    with pytest.raises(ConflictError):
        applier.apply(request, actor="pricing", now=now)
    assert len(store.history(batch_id=batch.batch_id)) == result.applied


def test_failure_mid_batch_leaves_no_trace(store, applier, now, monkeypatch) -> None:
    original = store.append_history
    calls = []

    def flaky_append(record):
        calls.append(record)
        if len(calls) == 2:
            raise RuntimeError("history store unavailable")
        original(record)

    monkeypatch.setattr(store, "append_history", flaky_append)

    with pytest.raises(RuntimeError):
        applier.apply(_explicit(("PAD-01", "1200"), ("DISC-02", "450")), actor="pricing", now=now)

    assert store.history() == []
    assert store.entries() == []
    assert store.get_item("PAD-01").list_price == Decimal("1000")


def test_rollback_restores_previous_prices(store, applier, now) -> None:
    applied = applier.apply(_explicit(("PAD-01", "1200"), ("DISC-02", "450")), actor="pricing", now=now)

    rollback = applier.rollback(applied.batch_id, actor="manager", now=now + timedelta(hours=1))

    assert rollback.kind == BatchKind.ROLLBACK
    assert store.get_item("PAD-01").list_price == Decimal("1000")
    assert store.get_item("DISC-02").list_price == Decimal("500")
    assert all(record.change_kind == BatchKind.ROLLBACK for record in rollback.history)
    original = store.get_batch(applied.batch_id)
    assert original.reverted is True
    assert original.reverted_by == rollback.batch_id
    assert [entry.price for entry in store.entries(item_id="PAD-01") if entry.is_open] == [Decimal("1000")]

    with pytest.raises(ConflictError):
        applier.rollback(applied.batch_id, actor="manager", now=now)


def test_rollback_of_unapplied_batch(store, applier, now) -> None:
    _, batch = propose_recalculation(store, [], EngineConfig(), actor="pricing", now=now, preview=False)

    with pytest.raises(ConflictError):
        applier.rollback(batch.batch_id, actor="manager", now=now)
    with pytest.raises(NotFoundError):
        applier.rollback("missing", actor="manager", now=now)
