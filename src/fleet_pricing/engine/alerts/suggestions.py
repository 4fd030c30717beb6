from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import IntEnum
from typing import Iterable, List, Optional, Sequence

from fleet_pricing.app.models.config import EngineConfig
from fleet_pricing.engine.canonical.models import ItemCostBasis, ModelPrice, RentalPlan
from fleet_pricing.engine.pricing.margins import margin_on_price, price_for_margin
from fleet_pricing.engine.pricing.rounding import round_up_to_ten

ZERO = Decimal("0")


class SuggestionKind(IntEnum):
    """Suggestion tiers; lower values are more urgent."""

    CRITICAL = 1
    WARNING = 2
    RATE_ALERT = 3
    PENDING = 4
    REVIEW = 5
    INFO = 6


@dataclass
class Suggestion:
    kind: SuggestionKind
    message: str
    action: str
    model: Optional[str] = None
    plan_code: Optional[str] = None
    item_id: Optional[str] = None
    category: Optional[str] = None
    current_margin: Optional[Decimal] = None
    target_margin: Optional[Decimal] = None
    current_price: Optional[Decimal] = None
    computed_price: Optional[Decimal] = None
    suggested_price: Optional[Decimal] = None
    suggested_margin: Optional[Decimal] = None

    @property
    def tier(self) -> int:
        return int(self.kind)


@dataclass
class ExchangeRateStatus:
    rate: Decimal
    source: str
    updated_at: Optional[datetime]
    days_since_update: Optional[int]
    stale: bool


@dataclass
class SuggestionReport:
    suggestions: List[Suggestion] = field(default_factory=list)
    exchange_rate: Optional[ExchangeRateStatus] = None

    @property
    def total(self) -> int:
        return len(self.suggestions)

    @property
    def critical(self) -> int:
        return sum(1 for suggestion in self.suggestions if suggestion.kind == SuggestionKind.CRITICAL)

    def of_kind(self, kind: SuggestionKind) -> List[Suggestion]:
        return [suggestion for suggestion in self.suggestions if suggestion.kind == kind]


def exchange_rate_status(config: EngineConfig, now: datetime) -> ExchangeRateStatus:
    rate = config.exchange_rate
    if rate.updated_at is None:
        days = None
        stale = True
    else:
        days = (now - rate.updated_at).days
        stale = days > config.margins.exchange_rate_stale_days
    return ExchangeRateStatus(
        rate=rate.rate,
        source=rate.source,
        updated_at=rate.updated_at,
        days_since_update=days,
        stale=stale,
    )


def _pct(value: Decimal) -> str:
    return f"{(value * 100).quantize(Decimal('0.1'))}%"


def rental_suggestions(
    model_prices: Iterable[ModelPrice],
    plans: Sequence[RentalPlan],
    config: EngineConfig,
    *,
    models: Sequence[str] = (),
) -> List[Suggestion]:
    """Margin, override and coverage suggestions for rental model prices.

    Margins are measured on the effective price, so a manual override that
    undercuts cost shows up as critical. ``models`` lists vehicle models that
    should be priced even when they have no stored price yet.
    """
    thresholds = config.margins
    active_plans = [plan for plan in plans if plan.active]
    suggestions: List[Suggestion] = []
    priced: dict[str, set[str]] = {model: set() for model in models}

    for price in model_prices:
        if not price.active:
            continue
        priced.setdefault(price.model, set()).add(price.plan_code)
        effective = price.effective_price
        margin = margin_on_price(effective, price.total_monthly_cost)
        context = dict(
            model=price.model,
            plan_code=price.plan_code,
            current_margin=margin,
            target_margin=price.target_margin,
            current_price=effective,
            computed_price=price.discounted_price,
        )
        if margin < thresholds.critical:
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.CRITICAL,
                    message=f"{price.model} / {price.plan_code}: margin {_pct(margin)} is below {_pct(thresholds.critical)}",
                    action="raise the rental price or review the cost inputs",
                    **context,
                )
            )
        elif margin < price.target_margin:
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.WARNING,
                    message=f"{price.model} / {price.plan_code}: margin {_pct(margin)} is below target {_pct(price.target_margin)}",
                    action="recalculate the plan price",
                    **context,
                )
            )
        elif margin > thresholds.excessive:
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.INFO,
                    message=f"{price.model} / {price.plan_code}: margin {_pct(margin)} is above {_pct(thresholds.excessive)}",
                    action="check competitiveness",
                    **context,
                )
            )

        if price.manual_price is not None and price.discounted_price > 0:
            drift = abs(price.manual_price - price.discounted_price) / price.discounted_price
            if drift > thresholds.override_review:
                suggestions.append(
                    Suggestion(
                        kind=SuggestionKind.REVIEW,
                        message=(
                            f"{price.model} / {price.plan_code}: manual price {price.manual_price} "
                            f"differs {_pct(drift)} from computed {price.discounted_price.quantize(Decimal('0.01'))}"
                        ),
                        action="review the manual override",
                        **context,
                    )
                )

    for model, plan_codes in priced.items():
        for plan in active_plans:
            if plan.code in plan_codes:
                continue
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.PENDING,
                    message=f"{model} has no price for plan {plan.code}",
                    action="calculate the price for this plan",
                    model=model,
                    plan_code=plan.code,
                )
            )
    return suggestions


def part_suggestions(items: Iterable[ItemCostBasis], config: EngineConfig) -> List[Suggestion]:
    thresholds = config.margins
    suggestions: List[Suggestion] = []
    for item in items:
        cost = item.average_cost_local
        if cost <= 0:
            continue
        target = config.target_margin(item.category)
        suggested = round_up_to_ten(price_for_margin(cost, target))
        context = dict(
            item_id=item.item_id,
            category=item.category,
            target_margin=target,
            current_price=item.list_price,
            suggested_price=suggested,
            suggested_margin=margin_on_price(suggested, cost),
        )
        if item.list_price == 0:
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.PENDING,
                    message=f"{item.item_id} has a cost but no price",
                    action="set a price",
                    current_margin=ZERO,
                    **context,
                )
            )
            continue

        margin = margin_on_price(item.list_price, cost)
        if margin < thresholds.critical:
            kind = SuggestionKind.CRITICAL
            message = f"{item.item_id}: margin {_pct(margin)} is below {_pct(thresholds.critical)}"
            action = "raise the price"
        elif margin < target:
            kind = SuggestionKind.WARNING
            message = f"{item.item_id}: margin {_pct(margin)} is below target {_pct(target)}"
            action = "raise the price"
        elif margin > thresholds.excessive:
            kind = SuggestionKind.INFO
            message = f"{item.item_id}: margin {_pct(margin)} is above {_pct(thresholds.excessive)}"
            action = "check competitiveness"
        else:
            continue
        suggestions.append(Suggestion(kind=kind, message=message, action=action, current_margin=margin, **context))
    return suggestions


def build_suggestions(
    config: EngineConfig,
    *,
    now: datetime,
    items: Iterable[ItemCostBasis] = (),
    model_prices: Iterable[ModelPrice] = (),
    plans: Sequence[RentalPlan] = (),
    models: Sequence[str] = (),
) -> SuggestionReport:
    """Collect every suggestion and order them by tier.

    The sort is stable, so suggestions of the same tier keep the order they
    were produced in: rental prices first, then parts.
    """
    rate = exchange_rate_status(config, now)
    suggestions = rental_suggestions(model_prices, plans, config, models=models)
    suggestions.extend(part_suggestions(items, config))
    if rate.stale:
        if rate.days_since_update is None:
            message = "reference exchange rate has never been set"
        else:
            message = f"reference exchange rate is {rate.days_since_update} days old"
        suggestions.append(
            Suggestion(
                kind=SuggestionKind.RATE_ALERT,
                message=message,
                action="update the exchange rate and recalculate prices",
            )
        )
    return SuggestionReport(
        suggestions=sorted(suggestions, key=lambda suggestion: suggestion.tier),
        exchange_rate=rate,
    )
