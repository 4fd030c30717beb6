from datetime import datetime
from decimal import Decimal

import pytest

from fleet_pricing.engine.canonical.models import ItemCostBasis, PriceListItem
from fleet_pricing.persistence.memory import InMemoryPricingStore


def test_records_are_copied_in_and_out() -> None:
    store = InMemoryPricingStore()
    item = ItemCostBasis(item_id="PAD-01", list_price=Decimal("10"))
    store.put_item(item)

    item.list_price = Decimal("99")
    fetched = store.get_item("PAD-01")
    fetched.list_price = Decimal("77")

    assert store.get_item("PAD-01").list_price == Decimal("10")


def test_transaction_restores_state_on_error() -> None:
    store = InMemoryPricingStore()
    store.put_item(ItemCostBasis(item_id="PAD-01"))

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.put_item(ItemCostBasis(item_id="DISC-02"))
            store.add_entry(
                PriceListItem(
                    entry_id=store.next_entry_id(),
                    item_id="DISC-02",
                    price_list="B2C",
                    price=Decimal("5"),
                    valid_from=datetime(2026, 1, 1),
                )
            )
            raise RuntimeError("boom")

    assert [item.item_id for item in store.list_items()] == ["PAD-01"]
    assert store.entries() == []
    assert store.next_entry_id() == "entry-1"


def test_nested_transaction_rolls_back_with_outer() -> None:
    store = InMemoryPricingStore()

    with pytest.raises(ValueError):
        with store.transaction():
            store.put_item(ItemCostBasis(item_id="A"))
            with store.transaction():
                store.put_item(ItemCostBasis(item_id="B"))
            raise ValueError("outer failure")

    assert store.list_items() == []


def test_close_unknown_entry() -> None:
    with pytest.raises(KeyError):
        InMemoryPricingStore().close_entry("entry-404", datetime(2026, 1, 1))
