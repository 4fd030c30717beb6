from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from fleet_pricing.engine.canonical.models import RoundingPolicy


class CurrencyConfig(BaseModel):
    local: str = "ARS"
    foreign: str = "USD"


class ExchangeRateConfig(BaseModel):
    rate: Decimal = Decimal("0")
    source: str = "MANUAL"
    updated_at: Optional[datetime] = None

    @field_validator("rate")
    @classmethod
    def non_negative_rate(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("exchange rate must be >= 0")
        return value


class CategoryConfig(BaseModel):
    min_margin: Optional[Decimal] = None
    target_margin: Optional[Decimal] = None
    default_multiplier: Optional[Decimal] = None
    duty_rate: Optional[Decimal] = None

    @field_validator("min_margin", "target_margin")
    @classmethod
    def margin_fraction(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and not Decimal("0") <= value < 1:
            raise ValueError("margins are fractions in [0, 1)")
        return value


class ImportTaxConfig(BaseModel):
    statistics_rate: Decimal = Decimal("0.03")
    vat_rate: Decimal = Decimal("0.21")
    additional_vat_rate: Decimal = Decimal("0.20")
    income_tax_rate: Decimal = Decimal("0.06")
    gross_receipts_rate: Decimal = Decimal("0.03")
    fixed_fees: list[Decimal] = Field(default_factory=lambda: [Decimal("10"), Decimal("28")])

    @property
    def fixed_fee_total(self) -> Decimal:
        return sum(self.fixed_fees, Decimal("0"))


class OperatingCostConfig(BaseModel):
    insurance_monthly: Decimal = Decimal("0")
    registration_annual: Decimal = Decimal("0")
    inspection_annual: Decimal = Decimal("0")
    other_taxes_annual: Decimal = Decimal("0")
    telematics_monthly: Decimal = Decimal("0")
    maintenance_monthly: Decimal = Decimal("0")
    reserve_pct: Decimal = Decimal("0.05")
    storage_monthly: Decimal = Decimal("0")
    admin_monthly: Decimal = Decimal("0")


class MarginThresholds(BaseModel):
    critical: Decimal = Decimal("0.10")
    excessive: Decimal = Decimal("0.50")
    default_min: Decimal = Decimal("0.25")
    default_target: Decimal = Decimal("0.45")
    override_review: Decimal = Decimal("0.20")
    exchange_rate_stale_days: int = 7


class EngineConfig(BaseModel):
    schema_version: int = 1
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    exchange_rate: ExchangeRateConfig = Field(default_factory=ExchangeRateConfig)
    default_multiplier: Decimal = Decimal("2.0")
    default_rounding: RoundingPolicy = RoundingPolicy.NONE
    default_duty_rate: Decimal = Decimal("0.16")
    default_price_list: str = "B2C"
    rental_target_margin: Decimal = Decimal("0.25")
    categories: Dict[str, CategoryConfig] = Field(default_factory=dict)
    import_taxes: ImportTaxConfig = Field(default_factory=ImportTaxConfig)
    operating_costs: OperatingCostConfig = Field(default_factory=OperatingCostConfig)
    margins: MarginThresholds = Field(default_factory=MarginThresholds)

    def category(self, name: Optional[str]) -> CategoryConfig:
        if name and name in self.categories:
            return self.categories[name]
        return CategoryConfig()

    def min_margin(self, category: Optional[str]) -> Decimal:
        value = self.category(category).min_margin
        return self.margins.default_min if value is None else value

    def target_margin(self, category: Optional[str]) -> Decimal:
        value = self.category(category).target_margin
        return self.margins.default_target if value is None else value

    def duty_rate(self, category: Optional[str]) -> Decimal:
        value = self.category(category).duty_rate
        return self.default_duty_rate if value is None else value

    def multiplier(self, category: Optional[str]) -> Decimal:
        value = self.category(category).default_multiplier
        return self.default_multiplier if value is None else value
