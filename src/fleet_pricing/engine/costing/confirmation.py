from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fleet_pricing.engine.canonical.models import CostLedgerEntry, ShipmentCostAllocation
from fleet_pricing.engine.costing.landed_cost import ShipmentCostResult
from fleet_pricing.engine.costing.weighted_average import merge_cost_basis
from fleet_pricing.persistence.memory import InMemoryPricingStore
from fleet_pricing.util.errors import ConflictError, NotFoundError, PricingError, ValidationError
from fleet_pricing.util.logging import get_logger, log_event
from fleet_pricing.util.metrics import CloudWatchMetrics

IMPORT_REASON = "IMPORT"


class CostBasisUpdater:
    """Write path for weighted-average cost bases.

    Each update mutates the item's costs and appends its ledger entry inside
    one store transaction. Stock quantities are left to the receiving
    workflow.
    """

    def __init__(
        self,
        store: InMemoryPricingStore,
        *,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.store = store
        self.metrics = metrics or CloudWatchMetrics.from_env()
        self.logger = get_logger(self.__class__.__name__)

    def _reject(self, exc: PricingError, **fields: object) -> None:
        log_event(self.logger, "cost_update_rejected", reason=exc.reason, error_type=type(exc).__name__, **fields)
        self.metrics.record_write_rejected(error_type=type(exc).__name__)
        raise exc

    def _merge_item(
        self,
        *,
        item_id: str,
        incoming_quantity: int,
        incoming_cost_local: Decimal,
        incoming_cost_foreign: Decimal,
        reason: str,
        reference: str,
        actor: str,
        now: datetime,
        exchange_rate: Optional[Decimal],
    ) -> CostLedgerEntry:
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"item {item_id} not found")
        merge = merge_cost_basis(
            item,
            incoming_quantity=incoming_quantity,
            incoming_cost_local=incoming_cost_local,
            incoming_cost_foreign=incoming_cost_foreign,
        )
        self.store.put_item(
            item.model_copy(
                update={
                    "average_cost_local": merge.cost_after_local,
                    "average_cost_foreign": merge.cost_after_foreign,
                    "last_cost_update": now,
                }
            )
        )
        entry = CostLedgerEntry(
            item_id=item_id,
            cost_before_local=merge.cost_before_local,
            cost_after_local=merge.cost_after_local,
            cost_before_foreign=merge.cost_before_foreign,
            cost_after_foreign=merge.cost_after_foreign,
            quantity_before=merge.quantity_before,
            quantity_after=merge.quantity_after,
            reason=reason,
            reference=reference,
            exchange_rate=exchange_rate,
            actor=actor,
            recorded_at=now,
        )
        self.store.append_cost_entry(entry)
        return entry

    def apply_cost_update(
        self,
        *,
        item_id: str,
        incoming_quantity: int,
        incoming_cost_local: Decimal,
        incoming_cost_foreign: Decimal = Decimal("0"),
        reason: str,
        reference: str,
        actor: str,
        now: datetime,
        exchange_rate: Optional[Decimal] = None,
    ) -> CostLedgerEntry:
        if not reason or not reason.strip():
            self._reject(ValidationError("reason is required"), item_id=item_id)
        try:
            with self.store.transaction():
                entry = self._merge_item(
                    item_id=item_id,
                    incoming_quantity=incoming_quantity,
                    incoming_cost_local=incoming_cost_local,
                    incoming_cost_foreign=incoming_cost_foreign,
                    reason=reason.strip(),
                    reference=reference,
                    actor=actor,
                    now=now,
                    exchange_rate=exchange_rate,
                )
        except PricingError as exc:
            self._reject(exc, item_id=item_id)
        self.metrics.record_cost_updates(count=1)
        log_event(
            self.logger,
            "cost_basis_updated",
            item_id=item_id,
            cost_before=entry.cost_before_local,
            cost_after=entry.cost_after_local,
            reference=reference,
        )
        return entry

    def confirm_shipment_costing(
        self,
        result: ShipmentCostResult,
        *,
        actor: str,
        now: datetime,
    ) -> List[CostLedgerEntry]:
        """Make a shipment's simulated allocation durable.

        Blends every item's landed unit cost into its average cost basis,
        stores one immutable allocation per item and marks the shipment
        costing confirmed. Lines with no catalog item have no cost basis to
        update and are skipped. A confirmed shipment cannot be confirmed again.
        """
        shipment = self.store.get_shipment(result.shipment_id)
        if shipment is None:
            self._reject(NotFoundError(f"shipment {result.shipment_id} not found"))
        if shipment.costing_confirmed:
            self._reject(
                ConflictError(f"shipment {result.shipment_id} costing already confirmed"),
                shipment_id=result.shipment_id,
            )
        quantities = {item.item_id: item.quantity for item in shipment.items if item.item_id is not None}
        linked = [a.item_id for a in result.items if a.item_id is not None]
        if len(result.items) != len(shipment.items) or sorted(quantities) != sorted(linked):
            self._reject(
                ValidationError("cost allocation does not match the shipment's items"),
                shipment_id=result.shipment_id,
            )

        entries: List[CostLedgerEntry] = []
        try:
            with self.store.transaction():
                for allocation in result.items:
                    if allocation.item_id is None:
                        continue
                    entries.append(
                        self._merge_item(
                            item_id=allocation.item_id,
                            incoming_quantity=quantities[allocation.item_id],
                            incoming_cost_local=allocation.landed_unit_cost_local,
                            incoming_cost_foreign=allocation.landed_unit_cost_foreign,
                            reason=IMPORT_REASON,
                            reference=result.shipment_id,
                            actor=actor,
                            now=now,
                            exchange_rate=result.exchange_rate,
                        )
                    )
                    unit = allocation.unit
                    self.store.add_allocation(
                        ShipmentCostAllocation(
                            shipment_id=result.shipment_id,
                            item_id=allocation.item_id,
                            quantity=allocation.quantity,
                            fob_unit=unit.fob,
                            freight_unit=unit.freight,
                            insurance_unit=unit.insurance,
                            duty_unit=unit.duty,
                            taxes_unit=unit.statistics_tax + unit.fixed_fees,
                            logistics_unit=unit.logistics,
                            landed_unit_cost_foreign=allocation.landed_unit_cost_foreign,
                            landed_unit_cost_local=allocation.landed_unit_cost_local,
                            disbursement_unit=allocation.disbursement_unit,
                            allocation_method=result.method,
                            exchange_rate=result.exchange_rate,
                            confirmed_at=now,
                        )
                    )
                self.store.put_shipment(shipment.model_copy(update={"costing_confirmed": True}))
        except PricingError as exc:
            self._reject(exc, shipment_id=result.shipment_id)

        self.metrics.record_cost_updates(count=len(entries))
        log_event(
            self.logger,
            "shipment_costing_confirmed",
            shipment_id=result.shipment_id,
            items=len(entries),
            non_recoverable_total=result.non_recoverable_total,
            actor=actor,
        )
        return entries
