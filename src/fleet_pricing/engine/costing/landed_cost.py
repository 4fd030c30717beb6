from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from fleet_pricing.app.models.config import EngineConfig, ImportTaxConfig
from fleet_pricing.engine.canonical.models import (
    AllocationMethod,
    ItemCostBasis,
    Shipment,
    ShipmentItem,
)
from fleet_pricing.engine.pricing.margins import MarginStatus, classify_margin, margin_on_price
from fleet_pricing.util.errors import NotFoundError, ValidationError

ZERO = Decimal("0")
DEFAULT_INSURANCE_RATE = Decimal("0.01")
UNLINKED_CATEGORY = "GENERAL"
UNLINKED_NAME = "unlinked item"


@dataclass
class LogisticsCosts:
    customs_agent_fee: Decimal = ZERO
    port_charges: Decimal = ZERO
    inland_transport: Decimal = ZERO
    other: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.customs_agent_fee + self.port_charges + self.inland_transport + self.other


@dataclass
class UnitCostBreakdown:
    fob: Decimal
    freight: Decimal
    insurance: Decimal
    duty: Decimal
    statistics_tax: Decimal
    fixed_fees: Decimal
    logistics: Decimal


@dataclass
class RecoverableTaxes:
    vat: Decimal
    additional_vat: Decimal
    income_tax: Decimal
    gross_receipts: Decimal

    @property
    def total(self) -> Decimal:
        return self.vat + self.additional_vat + self.income_tax + self.gross_receipts


@dataclass
class ItemAllocation:
    item_id: Optional[str]
    name: str
    category: Optional[str]
    quantity: int
    factor: Decimal
    fob: Decimal
    freight: Decimal
    insurance: Decimal
    cif: Decimal
    duty_rate: Decimal
    duty: Decimal
    statistics_tax: Decimal
    taxable_base: Decimal
    recoverable: RecoverableTaxes
    fixed_fees: Decimal
    logistics: Decimal
    non_recoverable_cost: Decimal
    disbursement_total: Decimal
    landed_unit_cost_foreign: Decimal
    landed_unit_cost_local: Decimal
    disbursement_unit: Decimal
    unit: UnitCostBreakdown
    sale_price: Decimal
    margin: Decimal
    min_margin: Decimal
    target_margin: Decimal
    margin_status: MarginStatus


@dataclass
class CategoryCostSummary:
    category: str
    items: int
    total_cost: Decimal
    share_pct: Decimal


@dataclass
class ShipmentCostResult:
    shipment_id: str
    method: AllocationMethod
    exchange_rate: Decimal
    fob_total: Decimal
    freight: Decimal
    insurance: Decimal
    cif_total: Decimal
    non_recoverable_total: Decimal
    recoverable_total: Decimal
    disbursement_total: Decimal
    items: List[ItemAllocation] = field(default_factory=list)
    categories: List[CategoryCostSummary] = field(default_factory=list)

    def item(self, item_id: str) -> ItemAllocation:
        for allocation in self.items:
            if allocation.item_id == item_id:
                return allocation
        raise NotFoundError(f"item {item_id} is not part of shipment {self.shipment_id}")


def parse_allocation_method(value: AllocationMethod | str) -> AllocationMethod:
    if isinstance(value, AllocationMethod):
        return value
    try:
        return AllocationMethod(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"unknown allocation method '{value}'") from exc


def allocation_factor(value: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return ZERO
    return value / total


def _allocation_metric(item: ShipmentItem, method: AllocationMethod) -> Decimal:
    # HYBRID allocates like BY_VALUE; a freight-by-volume split needs its own method.
    if method == AllocationMethod.BY_WEIGHT:
        return item.weight_kg or ZERO
    if method == AllocationMethod.BY_VOLUME:
        return item.volume_cbm or ZERO
    return item.fob_subtotal


def _require_non_negative(name: str, value: Decimal) -> None:
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")


def _validate_inputs(
    shipment: Shipment,
    *,
    exchange_rate: Decimal,
    taxes: ImportTaxConfig,
    logistics: LogisticsCosts,
) -> None:
    if not shipment.items:
        raise ValidationError(f"shipment {shipment.shipment_id} has no items")
    if exchange_rate is None or exchange_rate <= 0:
        raise ValidationError("exchange rate is required and must be > 0")
    _require_non_negative("freight", shipment.freight)
    if shipment.insurance is not None:
        _require_non_negative("insurance", shipment.insurance)
    for name in (
        "statistics_rate",
        "vat_rate",
        "additional_vat_rate",
        "income_tax_rate",
        "gross_receipts_rate",
    ):
        _require_non_negative(name, getattr(taxes, name))
    _require_non_negative("fixed fees", taxes.fixed_fee_total)
    _require_non_negative("logistics", logistics.total)
    for item in shipment.items:
        if item.duty_rate is not None:
            _require_non_negative(f"duty rate for {item.item_id}", item.duty_rate)


def shipment_insurance(shipment: Shipment) -> Decimal:
    if shipment.insurance is not None:
        return shipment.insurance
    return (shipment.fob_total + shipment.freight) * DEFAULT_INSURANCE_RATE


def allocate_shipment_costs(
    shipment: Shipment,
    catalog: Mapping[str, ItemCostBasis],
    *,
    config: EngineConfig,
    exchange_rate: Decimal,
    method: AllocationMethod | str = AllocationMethod.BY_VALUE,
    logistics: Optional[LogisticsCosts] = None,
    taxes: Optional[ImportTaxConfig] = None,
) -> ShipmentCostResult:
    """Spread shared shipment costs over its items and derive landed unit costs.

    Amounts are in the shipment's foreign currency; only the landed unit cost
    is also reported in local currency. Recoverable taxes (VAT, additional
    VAT, income tax, gross receipts) are computed for cash-flow purposes and
    never enter the inventory cost. Lines without an ``item_id`` are costed
    like any other but carry no sale price and fall under the GENERAL
    category. Read-only: safe to call repeatedly before the costing is
    confirmed.
    """
    allocation_method = parse_allocation_method(method)
    logistics = logistics or LogisticsCosts()
    taxes = taxes or config.import_taxes
    _validate_inputs(shipment, exchange_rate=exchange_rate, taxes=taxes, logistics=logistics)

    fob_total = shipment.fob_total
    insurance_total = shipment_insurance(shipment)
    cif_total = fob_total + shipment.freight + insurance_total
    metric_total = sum(
        (_allocation_metric(item, allocation_method) for item in shipment.items), ZERO
    )
    fixed_fee_total = taxes.fixed_fee_total
    logistics_total = logistics.total

    allocations: List[ItemAllocation] = []
    for item in shipment.items:
        basis = None
        if item.item_id is not None:
            basis = catalog.get(item.item_id)
            if basis is None:
                raise NotFoundError(f"item {item.item_id} not found")
        category = basis.category if basis else None
        factor = allocation_factor(_allocation_metric(item, allocation_method), metric_total)

        freight = shipment.freight * factor
        insurance = insurance_total * factor
        cif = item.fob_subtotal + freight + insurance

        duty_rate = item.duty_rate if item.duty_rate is not None else config.duty_rate(category)
        duty = cif * duty_rate
        statistics_tax = cif * taxes.statistics_rate
        taxable_base = cif + duty + statistics_tax
        recoverable = RecoverableTaxes(
            vat=taxable_base * taxes.vat_rate,
            additional_vat=taxable_base * taxes.additional_vat_rate,
            income_tax=taxable_base * taxes.income_tax_rate,
            gross_receipts=taxable_base * taxes.gross_receipts_rate,
        )

        fixed_fees = fixed_fee_total * factor
        item_logistics = logistics_total * factor
        non_recoverable = (
            item.fob_subtotal + freight + insurance + duty + statistics_tax + fixed_fees + item_logistics
        )
        disbursement = non_recoverable + recoverable.total

        quantity = Decimal(item.quantity)
        landed_foreign = non_recoverable / quantity
        landed_local = landed_foreign * exchange_rate

        sale_price = basis.list_price if basis else ZERO
        margin = margin_on_price(sale_price, landed_local)
        min_margin = config.min_margin(category)
        target_margin = config.target_margin(category)

        allocations.append(
            ItemAllocation(
                item_id=item.item_id,
                name=basis.name if basis else UNLINKED_NAME,
                category=category,
                quantity=item.quantity,
                factor=factor,
                fob=item.fob_subtotal,
                freight=freight,
                insurance=insurance,
                cif=cif,
                duty_rate=duty_rate,
                duty=duty,
                statistics_tax=statistics_tax,
                taxable_base=taxable_base,
                recoverable=recoverable,
                fixed_fees=fixed_fees,
                logistics=item_logistics,
                non_recoverable_cost=non_recoverable,
                disbursement_total=disbursement,
                landed_unit_cost_foreign=landed_foreign,
                landed_unit_cost_local=landed_local,
                disbursement_unit=disbursement / quantity,
                unit=UnitCostBreakdown(
                    fob=item.fob_subtotal / quantity,
                    freight=freight / quantity,
                    insurance=insurance / quantity,
                    duty=duty / quantity,
                    statistics_tax=statistics_tax / quantity,
                    fixed_fees=fixed_fees / quantity,
                    logistics=item_logistics / quantity,
                ),
                sale_price=sale_price,
                margin=margin,
                min_margin=min_margin,
                target_margin=target_margin,
                margin_status=classify_margin(margin, floor=min_margin, target=target_margin),
            )
        )

    non_recoverable_total = sum((a.non_recoverable_cost for a in allocations), ZERO)
    disbursement_total = sum((a.disbursement_total for a in allocations), ZERO)

    return ShipmentCostResult(
        shipment_id=shipment.shipment_id,
        method=allocation_method,
        exchange_rate=exchange_rate,
        fob_total=fob_total,
        freight=shipment.freight,
        insurance=insurance_total,
        cif_total=cif_total,
        non_recoverable_total=non_recoverable_total,
        recoverable_total=disbursement_total - non_recoverable_total,
        disbursement_total=disbursement_total,
        items=allocations,
        categories=summarize_by_category(allocations, non_recoverable_total),
    )


def summarize_by_category(
    allocations: List[ItemAllocation], non_recoverable_total: Decimal
) -> List[CategoryCostSummary]:
    grouped: Dict[str, CategoryCostSummary] = {}
    for allocation in allocations:
        category = allocation.category or UNLINKED_CATEGORY
        summary = grouped.setdefault(
            category, CategoryCostSummary(category=category, items=0, total_cost=ZERO, share_pct=ZERO)
        )
        summary.items += 1
        summary.total_cost += allocation.non_recoverable_cost
    for summary in grouped.values():
        summary.share_pct = allocation_factor(summary.total_cost, non_recoverable_total) * 100
    return list(grouped.values())
