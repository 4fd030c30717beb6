from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from fleet_pricing.app.models.config import EngineConfig, OperatingCostConfig
from fleet_pricing.engine.canonical.models import ModelPrice, RentalPlan
from fleet_pricing.engine.pricing.margins import MarginStatus, classify_margin
from fleet_pricing.util.errors import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")
MONTHS_PER_YEAR = Decimal("12")
# Non-ownership plans depreciate 85% of the landed cost over a fixed 48 months.
NON_OWNERSHIP_RESIDUAL_SHARE = Decimal("0.85")
NON_OWNERSHIP_MONTHS = Decimal("48")
FALLBACK_MARKUP = Decimal("1.25")
# The rent-to-own projection always uses 24 payments and a two-year horizon.
RENT_TO_OWN_PAYMENTS = Decimal("24")
RENT_TO_OWN_YEARS = Decimal("2")


class PaymentFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    BIWEEKLY = "BIWEEKLY"
    WEEKLY = "WEEKLY"


class PaymentMethod(str, Enum):
    TRANSFER = "TRANSFER"
    WALLET = "WALLET"
    CASH = "CASH"


@dataclass
class OperatingCostBreakdown:
    insurance: Decimal
    taxes: Decimal
    telematics: Decimal
    maintenance: Decimal
    reserve: Decimal
    storage: Decimal
    admin: Decimal

    @property
    def total(self) -> Decimal:
        return (
            self.insurance
            + self.taxes
            + self.telematics
            + self.maintenance
            + self.reserve
            + self.storage
            + self.admin
        )


@dataclass
class CostBuildup:
    depreciation: Decimal
    operating_cost: Decimal
    operating: Optional[OperatingCostBreakdown] = None

    @property
    def total(self) -> Decimal:
        return self.depreciation + self.operating_cost


@dataclass
class FrequencyPrice:
    frequency: PaymentFrequency
    amount: Decimal
    by_method: Dict[PaymentMethod, Decimal] = field(default_factory=dict)


@dataclass
class RentToOwnProjection:
    total_paid: Decimal
    difference_vs_cost: Decimal
    ratio: Decimal
    effective_annual_rate: Decimal


@dataclass
class PlanQuote:
    plan_code: str
    plan_name: str
    rent_to_own: bool
    duration_months: int
    landed_cost: Decimal
    costs: CostBuildup
    target_margin: Decimal
    base_price: Decimal
    discounted_price: Decimal
    prices: Dict[PaymentFrequency, FrequencyPrice]
    deposit: Decimal
    margin_pct: Decimal
    margin_amount: Decimal
    margin_status: MarginStatus
    rent_to_own_projection: Optional[RentToOwnProjection] = None

    def price(self, frequency: PaymentFrequency, method: PaymentMethod = PaymentMethod.TRANSFER) -> Decimal:
        return self.prices[frequency].by_method[method]

    def to_model_price(
        self,
        *,
        model: str,
        now: datetime,
        landed_cost_foreign: Optional[Decimal] = None,
        exchange_rate: Optional[Decimal] = None,
    ) -> ModelPrice:
        return ModelPrice(
            model=model,
            plan_code=self.plan_code,
            landed_cost_local=self.landed_cost,
            landed_cost_foreign=landed_cost_foreign,
            exchange_rate=exchange_rate,
            monthly_depreciation=self.costs.depreciation,
            operating_cost=self.costs.operating_cost,
            total_monthly_cost=self.costs.total,
            target_margin=self.target_margin,
            base_price=self.base_price,
            discounted_price=self.discounted_price,
            biweekly_price=self.prices[PaymentFrequency.BIWEEKLY].amount,
            weekly_price=self.prices[PaymentFrequency.WEEKLY].amount,
            deposit=self.deposit,
            margin_pct=self.margin_pct,
            updated_at=now,
        )


@dataclass
class RentalQuote:
    model: str
    landed_cost_local: Decimal
    landed_cost_foreign: Optional[Decimal]
    exchange_rate: Optional[Decimal]
    target_margin: Decimal
    plans: List[PlanQuote] = field(default_factory=list)

    def plan(self, code: str) -> PlanQuote:
        for quote in self.plans:
            if quote.plan_code == code:
                return quote
        raise KeyError(code)


@dataclass
class RentalSimulation:
    model: str
    plan_code: str
    frequency: PaymentFrequency
    method: PaymentMethod
    base_price: Decimal
    discounted_price: Decimal
    frequency_price: Decimal
    final_price: Decimal
    deposit: Decimal
    margin_pct: Decimal
    costs: CostBuildup
    total_paid_24_months: Optional[Decimal] = None


def resolve_landed_cost(
    *,
    landed_cost_local: Optional[Decimal],
    landed_cost_foreign: Optional[Decimal],
    exchange_rate: Optional[Decimal],
) -> Decimal:
    """Landed cost in local currency.

    An explicit local cost wins. A foreign cost is converted at the reference
    rate; without a usable rate the cost resolves to zero.
    """
    for name, value in (("landed_cost_local", landed_cost_local), ("landed_cost_foreign", landed_cost_foreign)):
        if value is not None and value < 0:
            raise ValidationError(f"{name} must be >= 0")
    if landed_cost_local:
        return landed_cost_local
    if landed_cost_foreign is not None:
        if not exchange_rate or exchange_rate <= 0:
            return ZERO
        return landed_cost_foreign * exchange_rate
    if landed_cost_local is not None:
        return landed_cost_local
    raise ValidationError("a landed cost in local or foreign currency is required")


def operating_costs(landed_cost: Decimal, costs: OperatingCostConfig) -> OperatingCostBreakdown:
    annual_taxes = costs.registration_annual + costs.inspection_annual + costs.other_taxes_annual
    reserve = landed_cost * costs.reserve_pct / MONTHS_PER_YEAR if landed_cost > 0 else ZERO
    return OperatingCostBreakdown(
        insurance=costs.insurance_monthly,
        taxes=annual_taxes / MONTHS_PER_YEAR,
        telematics=costs.telematics_monthly,
        maintenance=costs.maintenance_monthly,
        reserve=reserve,
        storage=costs.storage_monthly,
        admin=costs.admin_monthly,
    )


def monthly_depreciation(landed_cost: Decimal, plan: RentalPlan) -> Decimal:
    if landed_cost <= 0:
        return ZERO
    if plan.rent_to_own:
        return landed_cost / Decimal(plan.duration_months)
    return landed_cost * NON_OWNERSHIP_RESIDUAL_SHARE / NON_OWNERSHIP_MONTHS


def margin_target_price(total_monthly_cost: Decimal, target_margin: Decimal) -> Decimal:
    """Price that yields ``target_margin`` on price.

    A target outside (0, 1) leaves no usable margin factor, so the price
    falls back to cost times 1.25.
    """
    if target_margin <= 0 or target_margin >= 1:
        return total_monthly_cost * FALLBACK_MARKUP
    return total_monthly_cost / (ONE - target_margin)


def frequency_amount(discounted_price: Decimal, plan: RentalPlan, frequency: PaymentFrequency) -> Decimal:
    if frequency == PaymentFrequency.BIWEEKLY:
        return discounted_price / 2 * (ONE + plan.biweekly_surcharge_pct)
    if frequency == PaymentFrequency.WEEKLY:
        return discounted_price / 4 * (ONE + plan.weekly_surcharge_pct)
    return discounted_price


def method_amount(amount: Decimal, plan: RentalPlan, method: PaymentMethod) -> Decimal:
    if method == PaymentMethod.WALLET:
        return amount * (ONE + plan.wallet_surcharge_pct)
    if method == PaymentMethod.CASH:
        return amount * (ONE + plan.cash_surcharge_pct)
    return amount


def rent_to_own_projection(discounted_price: Decimal, landed_cost: Decimal) -> Optional[RentToOwnProjection]:
    if landed_cost <= 0:
        return None
    total_paid = discounted_price * RENT_TO_OWN_PAYMENTS
    ratio = total_paid / landed_cost
    rate = (ratio ** (ONE / RENT_TO_OWN_YEARS) - ONE) * 100 if ratio > 0 else ZERO
    return RentToOwnProjection(
        total_paid=total_paid,
        difference_vs_cost=total_paid - landed_cost,
        ratio=ratio,
        effective_annual_rate=rate,
    )


def price_plan(
    plan: RentalPlan,
    costs: CostBuildup,
    *,
    landed_cost: Decimal,
    target_margin: Decimal,
    critical_margin: Decimal,
) -> PlanQuote:
    base_price = margin_target_price(costs.total, target_margin)
    discounted = base_price * (ONE - plan.discount_pct)

    prices: Dict[PaymentFrequency, FrequencyPrice] = {}
    for frequency in PaymentFrequency:
        amount = frequency_amount(discounted, plan, frequency)
        prices[frequency] = FrequencyPrice(
            frequency=frequency,
            amount=amount,
            by_method={method: method_amount(amount, plan, method) for method in PaymentMethod},
        )

    deposit_base = discounted if plan.deposit_uses_discounted else base_price
    margin_amount = discounted - costs.total
    margin_pct = margin_amount / discounted if discounted > 0 else ZERO

    return PlanQuote(
        plan_code=plan.code,
        plan_name=plan.name,
        rent_to_own=plan.rent_to_own,
        duration_months=plan.duration_months,
        landed_cost=landed_cost,
        costs=costs,
        target_margin=target_margin,
        base_price=base_price,
        discounted_price=discounted,
        prices=prices,
        deposit=deposit_base * plan.deposit_months,
        margin_pct=margin_pct,
        margin_amount=margin_amount,
        margin_status=classify_margin(margin_pct, floor=critical_margin, target=target_margin),
        rent_to_own_projection=rent_to_own_projection(discounted, landed_cost) if plan.rent_to_own else None,
    )


def quote_plan(
    plan: RentalPlan,
    *,
    landed_cost: Decimal,
    config: EngineConfig,
    target_margin: Optional[Decimal] = None,
) -> PlanQuote:
    if landed_cost < 0:
        raise ValidationError("landed cost must be >= 0")
    target = config.rental_target_margin if target_margin is None else target_margin
    operating = operating_costs(landed_cost, config.operating_costs)
    costs = CostBuildup(
        depreciation=monthly_depreciation(landed_cost, plan),
        operating_cost=operating.total,
        operating=operating,
    )
    return price_plan(
        plan,
        costs,
        landed_cost=landed_cost,
        target_margin=target,
        critical_margin=config.margins.critical,
    )


def quote_rental(
    model: str,
    plans: Iterable[RentalPlan],
    config: EngineConfig,
    *,
    landed_cost_local: Optional[Decimal] = None,
    landed_cost_foreign: Optional[Decimal] = None,
    target_margin: Optional[Decimal] = None,
) -> RentalQuote:
    """Price a vehicle model under every active rental plan.

    The operating cost block is shared by all plans; only depreciation,
    discount, surcharges and deposit differ per plan.
    """
    rate = config.exchange_rate.rate or None
    landed_cost = resolve_landed_cost(
        landed_cost_local=landed_cost_local,
        landed_cost_foreign=landed_cost_foreign,
        exchange_rate=rate,
    )
    target = config.rental_target_margin if target_margin is None else target_margin
    active = sorted((plan for plan in plans if plan.active), key=lambda plan: (plan.sort_order, plan.code))
    if landed_cost_foreign is None and rate:
        landed_cost_foreign = landed_cost / rate
    return RentalQuote(
        model=model,
        landed_cost_local=landed_cost,
        landed_cost_foreign=landed_cost_foreign,
        exchange_rate=rate,
        target_margin=target,
        plans=[quote_plan(plan, landed_cost=landed_cost, config=config, target_margin=target) for plan in active],
    )


def replay_model_price(
    snapshot: ModelPrice,
    plan: RentalPlan,
    config: EngineConfig,
    *,
    target_margin: Optional[Decimal] = None,
) -> PlanQuote:
    """Re-derive a plan quote from a stored cost snapshot.

    Uses the snapshot's depreciation and operating cost as-is, so historical
    prices can be audited without the original landed-cost inputs.
    """
    if snapshot.plan_code != plan.code:
        raise ValidationError(f"snapshot is for plan {snapshot.plan_code}, not {plan.code}")
    costs = CostBuildup(
        depreciation=snapshot.monthly_depreciation,
        operating_cost=snapshot.operating_cost,
    )
    return price_plan(
        plan,
        costs,
        landed_cost=snapshot.landed_cost_local,
        target_margin=snapshot.target_margin if target_margin is None else target_margin,
        critical_margin=config.margins.critical,
    )


def simulate(
    quote: PlanQuote,
    *,
    model: str,
    frequency: PaymentFrequency,
    method: PaymentMethod,
) -> RentalSimulation:
    frequency_price = quote.prices[frequency]
    total_paid = quote.discounted_price * RENT_TO_OWN_PAYMENTS if quote.rent_to_own else None
    return RentalSimulation(
        model=model,
        plan_code=quote.plan_code,
        frequency=frequency,
        method=method,
        base_price=quote.base_price,
        discounted_price=quote.discounted_price,
        frequency_price=frequency_price.amount,
        final_price=frequency_price.by_method[method],
        deposit=quote.deposit,
        margin_pct=quote.margin_pct,
        costs=quote.costs,
        total_paid_24_months=total_paid,
    )
