from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator

from fleet_pricing.app.models.config import EngineConfig
from fleet_pricing.engine.canonical.models import (
    BatchKind,
    ItemCostBasis,
    PriceChangeBatch,
    PriceHistory,
    PriceListItem,
    ProposedChange,
)
from fleet_pricing.engine.pricing.margins import margin_on_price
from fleet_pricing.persistence.memory import InMemoryPricingStore
from fleet_pricing.util.errors import ConflictError, NotFoundError, PricingError, ValidationError
from fleet_pricing.util.logging import get_logger, log_event
from fleet_pricing.util.metrics import CloudWatchMetrics

ZERO = Decimal("0")
ONE = Decimal("1")


class PercentageAdjustment(BaseModel):
    pct: Decimal
    item_ids: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)

    @field_validator("pct")
    @classmethod
    def above_minus_one(cls, value: Decimal) -> Decimal:
        if value <= -1:
            raise ValueError("pct must be greater than -1")
        return value


class PriceChangeRequest(BaseModel):
    item_id: str
    new_price: Decimal


class BulkApplyRequest(BaseModel):
    """One of ``batch_id``, ``adjustment`` or ``changes`` selects the rows."""

    reason: str = ""
    confirm: bool = False
    price_list: Optional[str] = None
    batch_id: Optional[str] = None
    adjustment: Optional[PercentageAdjustment] = None
    changes: List[PriceChangeRequest] = Field(default_factory=list)
    min_quantity: int = 1


@dataclass
class BulkApplyResult:
    batch_id: str
    price_list: str
    kind: BatchKind
    history: List[PriceHistory] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return len(self.history)


class BulkPriceApplier:
    """Write path for price-list changes.

    Every change closes the open entry for its (item, price list, minimum
    quantity) key, opens a new one and appends a history row. A batch lands
    completely or not at all.
    """

    def __init__(
        self,
        store: InMemoryPricingStore,
        config: EngineConfig,
        *,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.metrics = metrics or CloudWatchMetrics.from_env()
        self.logger = get_logger(self.__class__.__name__)

    def _reject(self, exc: PricingError, **fields: object) -> None:
        log_event(self.logger, "price_batch_rejected", reason=exc.reason, error_type=type(exc).__name__, **fields)
        self.metrics.record_write_rejected(error_type=type(exc).__name__)
        raise exc

    def current_price(self, item: ItemCostBasis, *, price_list: str, min_quantity: int = 1) -> Decimal:
        open_entries = self.store.open_entries((item.item_id, price_list, min_quantity))
        if open_entries:
            return max(open_entries, key=lambda entry: entry.valid_from).price
        if price_list == self.config.default_price_list:
            return item.list_price
        return ZERO

    def _write_price(
        self,
        item: ItemCostBasis,
        *,
        new_price: Decimal,
        price_list: str,
        min_quantity: int,
        batch_id: str,
        kind: BatchKind,
        reason: str,
        actor: str,
        now: datetime,
    ) -> PriceHistory:
        previous = self.current_price(item, price_list=price_list, min_quantity=min_quantity)
        # Last write wins: every open entry for the key is closed.
        for entry in self.store.open_entries((item.item_id, price_list, min_quantity)):
            self.store.close_entry(entry.entry_id, now)
        self.store.add_entry(
            PriceListItem(
                entry_id=self.store.next_entry_id(),
                item_id=item.item_id,
                price_list=price_list,
                min_quantity=min_quantity,
                price=new_price,
                valid_from=now,
                cost_basis=item.average_cost_local,
                method=kind.value,
            )
        )
        if price_list == self.config.default_price_list and min_quantity == 1:
            self.store.put_item(item.model_copy(update={"list_price": new_price}))
        record = PriceHistory(
            batch_id=batch_id,
            item_id=item.item_id,
            price_list=price_list,
            previous_price=previous,
            new_price=new_price,
            cost_at_change=item.average_cost_local,
            margin_at_change=margin_on_price(new_price, item.average_cost_local),
            change_kind=kind,
            reason=reason,
            actor=actor,
            recorded_at=now,
        )
        self.store.append_history(record)
        return record

    def _adjusted_rows(
        self, adjustment: PercentageAdjustment, *, price_list: str, min_quantity: int
    ) -> List[Tuple[str, Decimal]]:
        rows: List[Tuple[str, Decimal]] = []
        for item in self.store.list_items():
            if adjustment.item_ids and item.item_id not in adjustment.item_ids:
                continue
            if adjustment.categories and item.category not in adjustment.categories:
                continue
            current = self.current_price(item, price_list=price_list, min_quantity=min_quantity)
            if current <= 0:
                continue
            new_price = (current * (ONE + adjustment.pct)).quantize(ONE, rounding=ROUND_HALF_UP)
            rows.append((item.item_id, new_price))
        return rows

    def _validate_rows(self, rows: Sequence[Tuple[str, Decimal]], **fields: object) -> List[ItemCostBasis]:
        seen = set()
        items: List[ItemCostBasis] = []
        for item_id, new_price in rows:
            if item_id in seen:
                self._reject(ValidationError(f"item {item_id} appears more than once"), **fields)
            seen.add(item_id)
            if new_price < 0:
                self._reject(ValidationError(f"price for item {item_id} must be >= 0"), **fields)
            item = self.store.get_item(item_id)
            if item is None:
                self._reject(NotFoundError(f"item {item_id} not found"), **fields)
            items.append(item)
        return items

    def apply(self, request: BulkApplyRequest, *, actor: str, now: datetime) -> BulkApplyResult:
        if not request.confirm:
            self._reject(ValidationError("explicit confirmation is required to apply prices"))
        if not request.reason or not request.reason.strip():
            self._reject(ValidationError("a reason is required to apply prices"))
        if request.min_quantity < 1:
            self._reject(ValidationError("min_quantity must be >= 1"))
        sources = [request.batch_id is not None, request.adjustment is not None, bool(request.changes)]
        if sum(sources) != 1:
            self._reject(ValidationError("provide exactly one of batch_id, adjustment or changes"))
        reason = request.reason.strip()

        batch: Optional[PriceChangeBatch] = None
        if request.batch_id is not None:
            batch = self.store.get_batch(request.batch_id)
            if batch is None:
                self._reject(NotFoundError(f"batch {request.batch_id} not found"), batch_id=request.batch_id)
            if batch.applied:
                self._reject(ConflictError(f"batch {batch.batch_id} was already applied"), batch_id=batch.batch_id)
            price_list = batch.price_list
        else:
            price_list = request.price_list or self.config.default_price_list
        if self.store.get_price_list(price_list) is None:
            self._reject(NotFoundError(f"price list {price_list} not found"), price_list=price_list)

        if batch is not None:
            rows = [(change.item_id, change.new_price) for change in batch.changes]
            kind = batch.kind
        elif request.adjustment is not None:
            rows = self._adjusted_rows(request.adjustment, price_list=price_list, min_quantity=request.min_quantity)
            kind = BatchKind.PERCENTAGE
        else:
            rows = [(change.item_id, change.new_price) for change in request.changes]
            kind = BatchKind.EXPLICIT
        if not rows:
            self._reject(ConflictError("batch has no valid rows"), price_list=price_list)
        items = self._validate_rows(rows, price_list=price_list)

        if batch is None:
            batch = PriceChangeBatch(
                batch_id=uuid.uuid4().hex,
                description=reason,
                kind=kind,
                price_list=price_list,
                parameters=request.adjustment.model_dump(mode="json") if request.adjustment else {},
                changes=[ProposedChange(item_id=item_id, new_price=new_price) for item_id, new_price in rows],
                actor=actor,
                created_at=now,
            )
        batch.parameters.setdefault("min_quantity", request.min_quantity)

        history: List[PriceHistory] = []
        try:
            with self.store.transaction():
                for item, (_, new_price) in zip(items, rows):
                    history.append(
                        self._write_price(
                            item,
                            new_price=new_price,
                            price_list=price_list,
                            min_quantity=request.min_quantity,
                            batch_id=batch.batch_id,
                            kind=kind,
                            reason=reason,
                            actor=actor,
                            now=now,
                        )
                    )
                self.store.put_batch(batch.model_copy(update={"applied": True}))
        except PricingError as exc:
            self._reject(exc, batch_id=batch.batch_id)

        self.metrics.record_price_changes(price_list=price_list, count=len(history))
        log_event(
            self.logger,
            "price_batch_applied",
            batch_id=batch.batch_id,
            kind=kind.value,
            price_list=price_list,
            changes=len(history),
            actor=actor,
        )
        return BulkApplyResult(batch_id=batch.batch_id, price_list=price_list, kind=kind, history=history)

    def rollback(self, batch_id: str, *, actor: str, now: datetime, reason: str = "") -> BulkApplyResult:
        """Restore the prices an applied batch replaced.

        The restore is itself an applied ROLLBACK batch with its own history
        rows; the original batch is marked reverted.
        """
        batch = self.store.get_batch(batch_id)
        if batch is None:
            self._reject(NotFoundError(f"batch {batch_id} not found"), batch_id=batch_id)
        if not batch.applied:
            self._reject(ConflictError(f"batch {batch_id} was never applied"), batch_id=batch_id)
        if batch.reverted:
            self._reject(ConflictError(f"batch {batch_id} was already reverted"), batch_id=batch_id)

        records = self.store.history(batch_id=batch_id)
        min_quantity = int(batch.parameters.get("min_quantity", 1))
        reason = reason.strip() or f"Rollback of batch {batch_id}"
        rollback_batch = PriceChangeBatch(
            batch_id=uuid.uuid4().hex,
            description=reason,
            kind=BatchKind.ROLLBACK,
            price_list=batch.price_list,
            parameters={"reverted_batch": batch_id, "min_quantity": min_quantity},
            changes=[
                ProposedChange(item_id=record.item_id, new_price=record.previous_price, current_price=record.new_price)
                for record in records
            ],
            applied=True,
            actor=actor,
            created_at=now,
        )

        history: List[PriceHistory] = []
        try:
            with self.store.transaction():
                for record in records:
                    item = self.store.get_item(record.item_id)
                    if item is None:
                        raise NotFoundError(f"item {record.item_id} not found")
                    history.append(
                        self._write_price(
                            item,
                            new_price=record.previous_price,
                            price_list=record.price_list,
                            min_quantity=min_quantity,
                            batch_id=rollback_batch.batch_id,
                            kind=BatchKind.ROLLBACK,
                            reason=reason,
                            actor=actor,
                            now=now,
                        )
                    )
                self.store.put_batch(rollback_batch)
                self.store.put_batch(
                    batch.model_copy(update={"reverted": True, "reverted_by": rollback_batch.batch_id})
                )
        except PricingError as exc:
            self._reject(exc, batch_id=batch_id)

        self.metrics.record_price_changes(price_list=batch.price_list, count=len(history))
        log_event(
            self.logger,
            "price_batch_rolled_back",
            batch_id=batch_id,
            rollback_batch_id=rollback_batch.batch_id,
            changes=len(history),
            actor=actor,
        )
        return BulkApplyResult(
            batch_id=rollback_batch.batch_id,
            price_list=batch.price_list,
            kind=BatchKind.ROLLBACK,
            history=history,
        )
