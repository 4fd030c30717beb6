from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ZERO = Decimal("0")


class PriceListKind(str, Enum):
    RETAIL = "RETAIL"
    PREFERENTIAL = "PREFERENTIAL"
    WHOLESALE = "WHOLESALE"
    INTERNAL = "INTERNAL"


class RoundingPolicy(str, Enum):
    NONE = "NONE"
    NEAREST_10 = "NEAREST_10"
    NEAREST_50 = "NEAREST_50"
    NEAREST_99 = "NEAREST_99"


class ConditionKind(str, Enum):
    PLAN_TIER = "PLAN_TIER"
    TENURE = "TENURE"
    QUANTITY = "QUANTITY"
    CATEGORY = "CATEGORY"
    ALWAYS = "ALWAYS"


class DiscountKind(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class AllocationMethod(str, Enum):
    BY_VALUE = "BY_VALUE"
    BY_WEIGHT = "BY_WEIGHT"
    BY_VOLUME = "BY_VOLUME"
    HYBRID = "HYBRID"


class BatchKind(str, Enum):
    RECALCULATION = "RECALCULATION"
    PERCENTAGE = "PERCENTAGE"
    EXPLICIT = "EXPLICIT"
    ROLLBACK = "ROLLBACK"


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("value is required")
    return value.strip()


class PriceList(BaseModel):
    code: str
    name: str = ""
    kind: PriceListKind = PriceListKind.RETAIL
    priority: int = 0
    global_discount: Optional[Decimal] = None
    auto_calculate: bool = False
    formula_markup: Optional[Decimal] = None

    @field_validator("code")
    @classmethod
    def required_code(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("global_discount")
    @classmethod
    def discount_fraction(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and not ZERO <= value < 1:
            raise ValueError("global_discount must be in [0, 1)")
        return value


class MarkupRule(BaseModel):
    rule_id: str
    name: str
    category: Optional[str] = None
    band_lower: Optional[Decimal] = None
    band_upper: Optional[Decimal] = None
    is_oem: Optional[bool] = None
    multiplier: Decimal
    rounding: RoundingPolicy = RoundingPolicy.NONE
    priority: int = 0
    active: bool = True

    @field_validator("multiplier")
    @classmethod
    def positive_multiplier(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("multiplier must be > 0")
        return value

    @model_validator(mode="after")
    def ordered_band(self) -> "MarkupRule":
        if (
            self.band_lower is not None
            and self.band_upper is not None
            and self.band_upper <= self.band_lower
        ):
            raise ValueError("band_upper must be greater than band_lower")
        return self

    def matches(self, *, cost: Decimal, category: Optional[str], is_oem: bool) -> bool:
        if not self.active:
            return False
        if self.category is not None and self.category != category:
            return False
        if self.band_lower is not None and cost < self.band_lower:
            return False
        if self.band_upper is not None and cost >= self.band_upper:
            return False
        if self.is_oem is not None and self.is_oem != is_oem:
            return False
        return True


class DiscountRule(BaseModel):
    rule_id: str
    name: str
    condition: ConditionKind
    plan_tier: Optional[str] = None
    min_tenure_months: Optional[int] = None
    min_quantity: Optional[int] = None
    category: Optional[str] = None
    kind: DiscountKind = DiscountKind.PERCENTAGE
    value: Decimal
    accumulable: bool = False
    priority: int = 0
    active: bool = True
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    @model_validator(mode="after")
    def condition_has_key(self) -> "DiscountRule":
        if self.value < 0:
            raise ValueError("discount value must be >= 0")
        if self.kind == DiscountKind.PERCENTAGE and self.value > 1:
            raise ValueError("percentage discount must be a fraction <= 1")
        required = {
            ConditionKind.PLAN_TIER: self.plan_tier,
            ConditionKind.TENURE: self.min_tenure_months,
            ConditionKind.QUANTITY: self.min_quantity,
            ConditionKind.CATEGORY: self.category,
        }
        if self.condition in required and required[self.condition] is None:
            raise ValueError(f"{self.condition.value} rule requires its condition value")
        return self

    def in_effect(self, at: datetime) -> bool:
        if not self.active:
            return False
        if self.valid_from is not None and self.valid_from > at:
            return False
        if self.valid_to is not None and self.valid_to < at:
            return False
        return True


class ItemCostBasis(BaseModel):
    item_id: str
    name: str = ""
    category: Optional[str] = None
    is_oem: bool = False
    average_cost_local: Decimal = ZERO
    average_cost_foreign: Decimal = ZERO
    list_price: Decimal = ZERO
    stock: int = 0
    last_cost_update: Optional[datetime] = None

    @field_validator("item_id")
    @classmethod
    def required_id(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("average_cost_local", "average_cost_foreign", "list_price")
    @classmethod
    def non_negative_amount(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("amount must be >= 0")
        return value

    @field_validator("stock")
    @classmethod
    def non_negative_stock(cls, value: int) -> int:
        if value < 0:
            raise ValueError("stock must be >= 0")
        return value


class PriceListItem(BaseModel):
    entry_id: str
    item_id: str
    price_list: str
    min_quantity: int = 1
    price: Decimal
    valid_from: datetime
    valid_to: Optional[datetime] = None
    cost_basis: Optional[Decimal] = None
    method: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.item_id, self.price_list, self.min_quantity)

    @property
    def is_open(self) -> bool:
        return self.valid_to is None

    def is_active(self, at: datetime) -> bool:
        if self.valid_from > at:
            return False
        return self.valid_to is None or self.valid_to > at


class ProposedChange(BaseModel):
    item_id: str
    new_price: Decimal
    current_price: Optional[Decimal] = None
    rule_name: Optional[str] = None


class PriceChangeBatch(BaseModel):
    batch_id: str
    description: str
    kind: BatchKind
    price_list: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    changes: List[ProposedChange] = Field(default_factory=list)
    applied: bool = False
    reverted: bool = False
    reverted_by: Optional[str] = None
    actor: str = "system"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PriceHistory(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: str
    item_id: str
    price_list: str
    previous_price: Decimal
    new_price: Decimal
    cost_at_change: Decimal
    margin_at_change: Decimal
    change_kind: BatchKind
    reason: str
    actor: str
    recorded_at: datetime


class CostLedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    cost_before_local: Decimal
    cost_after_local: Decimal
    cost_before_foreign: Decimal
    cost_after_foreign: Decimal
    quantity_before: int
    quantity_after: int
    reason: str
    reference: str
    exchange_rate: Optional[Decimal] = None
    actor: str
    recorded_at: datetime


class RentalPlan(BaseModel):
    code: str
    name: str = ""
    duration_months: int
    rent_to_own: bool = False
    discount_pct: Decimal = ZERO
    biweekly_surcharge_pct: Decimal = ZERO
    weekly_surcharge_pct: Decimal = ZERO
    wallet_surcharge_pct: Decimal = ZERO
    cash_surcharge_pct: Decimal = ZERO
    deposit_months: Decimal = ZERO
    deposit_uses_discounted: bool = False
    active: bool = True
    sort_order: int = 0

    @field_validator("duration_months")
    @classmethod
    def positive_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("duration_months must be > 0")
        return value

    @field_validator(
        "discount_pct",
        "biweekly_surcharge_pct",
        "weekly_surcharge_pct",
        "wallet_surcharge_pct",
        "cash_surcharge_pct",
    )
    @classmethod
    def fraction(cls, value: Decimal) -> Decimal:
        if not ZERO <= value < 1:
            raise ValueError("percentages are fractions in [0, 1)")
        return value

    @field_validator("deposit_months")
    @classmethod
    def non_negative_deposit(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("deposit_months must be >= 0")
        return value


class ModelPrice(BaseModel):
    model: str
    plan_code: str
    landed_cost_local: Decimal
    landed_cost_foreign: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    monthly_depreciation: Decimal
    operating_cost: Decimal
    total_monthly_cost: Decimal
    target_margin: Decimal
    base_price: Decimal
    discounted_price: Decimal
    biweekly_price: Decimal
    weekly_price: Decimal
    deposit: Decimal
    margin_pct: Decimal
    manual_price: Optional[Decimal] = None
    override_reason: Optional[str] = None
    active: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def effective_price(self) -> Decimal:
        if self.manual_price is not None:
            return self.manual_price
        return self.discounted_price


class RentalPriceHistory(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    plan_code: str
    previous_price: Decimal
    new_price: Decimal
    landed_cost_local: Decimal
    exchange_rate: Optional[Decimal] = None
    margin_pct: Decimal
    reason: str
    actor: str
    recorded_at: datetime


class ShipmentItem(BaseModel):
    item_id: Optional[str] = None
    quantity: int
    fob_subtotal: Decimal
    weight_kg: Optional[Decimal] = None
    volume_cbm: Optional[Decimal] = None
    duty_rate: Optional[Decimal] = None

    @field_validator("quantity")
    @classmethod
    def positive_quantity(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("quantity must be > 0")
        return value

    @field_validator("fob_subtotal")
    @classmethod
    def non_negative_fob(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("fob_subtotal must be >= 0")
        return value

    @property
    def fob_unit(self) -> Decimal:
        return self.fob_subtotal / self.quantity


class Shipment(BaseModel):
    shipment_id: str
    reference: str = ""
    freight: Decimal = ZERO
    insurance: Optional[Decimal] = None
    items: List[ShipmentItem] = Field(default_factory=list)
    costing_confirmed: bool = False

    @property
    def fob_total(self) -> Decimal:
        return sum((item.fob_subtotal for item in self.items), ZERO)


class ShipmentCostAllocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    shipment_id: str
    item_id: str
    quantity: int
    fob_unit: Decimal
    freight_unit: Decimal
    insurance_unit: Decimal
    duty_unit: Decimal
    taxes_unit: Decimal
    logistics_unit: Decimal
    landed_unit_cost_foreign: Decimal
    landed_unit_cost_local: Decimal
    disbursement_unit: Decimal
    allocation_method: AllocationMethod
    exchange_rate: Decimal
    confirmed_at: datetime
