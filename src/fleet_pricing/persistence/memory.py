from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from fleet_pricing.engine.canonical.models import (
    CostLedgerEntry,
    ItemCostBasis,
    ModelPrice,
    PriceChangeBatch,
    PriceHistory,
    PriceList,
    PriceListItem,
    RentalPlan,
    RentalPriceHistory,
    Shipment,
    ShipmentCostAllocation,
)

EntryKey = Tuple[str, str, int]


class InMemoryPricingStore:
    """Catalog, price-list and history store kept in process memory.

    ``transaction()`` snapshots every collection and restores it when the
    block raises, so a write path either lands completely or not at all.
    Records are copied on the way in and out; callers never hold live rows.
    """

    def __init__(self) -> None:
        self._items: Dict[str, ItemCostBasis] = {}
        self._price_lists: Dict[str, PriceList] = {}
        self._entries: List[PriceListItem] = []
        self._batches: Dict[str, PriceChangeBatch] = {}
        self._history: List[PriceHistory] = []
        self._cost_ledger: List[CostLedgerEntry] = []
        self._shipments: Dict[str, Shipment] = {}
        self._allocations: List[ShipmentCostAllocation] = []
        self._plans: Dict[str, RentalPlan] = {}
        self._model_prices: Dict[Tuple[str, str], ModelPrice] = {}
        self._rental_history: List[RentalPriceHistory] = []
        self._entry_seq = 0
        self._depth = 0

    def _state(self) -> Dict[str, Any]:
        return {
            "_items": self._items,
            "_price_lists": self._price_lists,
            "_entries": self._entries,
            "_batches": self._batches,
            "_history": self._history,
            "_cost_ledger": self._cost_ledger,
            "_shipments": self._shipments,
            "_allocations": self._allocations,
            "_plans": self._plans,
            "_model_prices": self._model_prices,
            "_rental_history": self._rental_history,
            "_entry_seq": self._entry_seq,
        }

    @contextmanager
    def transaction(self) -> Iterator["InMemoryPricingStore"]:
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return
        snapshot = copy.deepcopy(self._state())
        self._depth = 1
        try:
            yield self
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise
        finally:
            self._depth = 0

    # items

    def put_item(self, item: ItemCostBasis) -> None:
        self._items[item.item_id] = item.model_copy(deep=True)

    def get_item(self, item_id: str) -> Optional[ItemCostBasis]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    def list_items(self) -> List[ItemCostBasis]:
        return [item.model_copy(deep=True) for item in self._items.values()]

    # price lists and entries

    def put_price_list(self, price_list: PriceList) -> None:
        self._price_lists[price_list.code] = price_list.model_copy(deep=True)

    def get_price_list(self, code: str) -> Optional[PriceList]:
        price_list = self._price_lists.get(code)
        return price_list.model_copy(deep=True) if price_list else None

    def list_price_lists(self) -> List[PriceList]:
        return [price_list.model_copy(deep=True) for price_list in self._price_lists.values()]

    def next_entry_id(self) -> str:
        self._entry_seq += 1
        return f"entry-{self._entry_seq}"

    def add_entry(self, entry: PriceListItem) -> None:
        self._entries.append(entry.model_copy(deep=True))

    def entries(self, *, item_id: Optional[str] = None, price_list: Optional[str] = None) -> List[PriceListItem]:
        return [
            entry.model_copy(deep=True)
            for entry in self._entries
            if (item_id is None or entry.item_id == item_id)
            and (price_list is None or entry.price_list == price_list)
        ]

    def open_entries(self, key: EntryKey) -> List[PriceListItem]:
        return [entry.model_copy(deep=True) for entry in self._entries if entry.key == key and entry.is_open]

    def close_entry(self, entry_id: str, at: datetime) -> None:
        for index, entry in enumerate(self._entries):
            if entry.entry_id == entry_id:
                self._entries[index] = entry.model_copy(update={"valid_to": at})
                return
        raise KeyError(entry_id)

    # batches and history

    def put_batch(self, batch: PriceChangeBatch) -> None:
        self._batches[batch.batch_id] = batch.model_copy(deep=True)

    def get_batch(self, batch_id: str) -> Optional[PriceChangeBatch]:
        batch = self._batches.get(batch_id)
        return batch.model_copy(deep=True) if batch else None

    def append_history(self, record: PriceHistory) -> None:
        self._history.append(record)

    def history(self, *, batch_id: Optional[str] = None, item_id: Optional[str] = None) -> List[PriceHistory]:
        return [
            record
            for record in self._history
            if (batch_id is None or record.batch_id == batch_id)
            and (item_id is None or record.item_id == item_id)
        ]

    # costing

    def append_cost_entry(self, entry: CostLedgerEntry) -> None:
        self._cost_ledger.append(entry)

    def cost_ledger(self, *, item_id: Optional[str] = None) -> List[CostLedgerEntry]:
        return [entry for entry in self._cost_ledger if item_id is None or entry.item_id == item_id]

    def put_shipment(self, shipment: Shipment) -> None:
        self._shipments[shipment.shipment_id] = shipment.model_copy(deep=True)

    def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        shipment = self._shipments.get(shipment_id)
        return shipment.model_copy(deep=True) if shipment else None

    def add_allocation(self, allocation: ShipmentCostAllocation) -> None:
        self._allocations.append(allocation)

    def allocations(self, shipment_id: str) -> List[ShipmentCostAllocation]:
        return [a for a in self._allocations if a.shipment_id == shipment_id]

    # rental

    def put_plan(self, plan: RentalPlan) -> None:
        self._plans[plan.code] = plan.model_copy(deep=True)

    def get_plan(self, code: str) -> Optional[RentalPlan]:
        plan = self._plans.get(code)
        return plan.model_copy(deep=True) if plan else None

    def list_plans(self) -> List[RentalPlan]:
        return [plan.model_copy(deep=True) for plan in self._plans.values()]

    def put_model_price(self, price: ModelPrice) -> None:
        self._model_prices[(price.model, price.plan_code)] = price.model_copy(deep=True)

    def get_model_price(self, model: str, plan_code: str) -> Optional[ModelPrice]:
        price = self._model_prices.get((model, plan_code))
        return price.model_copy(deep=True) if price else None

    def list_model_prices(self) -> List[ModelPrice]:
        return [price.model_copy(deep=True) for price in self._model_prices.values()]

    def append_rental_history(self, record: RentalPriceHistory) -> None:
        self._rental_history.append(record)

    def rental_history(self, *, model: Optional[str] = None) -> List[RentalPriceHistory]:
        return [r for r in self._rental_history if model is None or r.model == model]
