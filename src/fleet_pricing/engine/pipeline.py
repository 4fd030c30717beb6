from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence, Tuple

from fleet_pricing.app.models.config import EngineConfig
from fleet_pricing.engine.canonical.models import (
    DiscountRule,
    ItemCostBasis,
    MarkupRule,
    PriceChangeBatch,
    PriceList,
    PriceListItem,
)
from fleet_pricing.engine.pricing.discounts import DiscountContext, StackedPrice, stack_discounts
from fleet_pricing.engine.pricing.margins import MarginStatus, classify_margin, margin_on_price, price_for_margin
from fleet_pricing.engine.pricing.markup import MarkupResolution, RecalculationPreview, preview_recalculation, resolve_markup
from fleet_pricing.engine.pricing.price_lists import find_active_entry, select_price_list
from fleet_pricing.persistence.memory import InMemoryPricingStore
from fleet_pricing.util.errors import NotFoundError, ValidationError
from fleet_pricing.util.logging import get_logger, log_event

CENTS = Decimal("0.01")

logger = get_logger(__name__)


@dataclass
class ChannelPrice:
    item_id: str
    price_list: str
    quantity: int
    cost: Decimal
    source: str
    base_price: Decimal
    reference_price: Decimal
    final_price: Decimal
    margin: Decimal
    margin_status: MarginStatus
    min_margin: Decimal
    target_margin: Decimal
    raised_to_min_margin: bool
    discounts: StackedPrice
    markup: Optional[MarkupResolution] = None


def _reference_price(
    item: ItemCostBasis,
    entries: Sequence[PriceListItem],
    *,
    config: EngineConfig,
    quantity: int,
    at: datetime,
) -> Decimal:
    entry = find_active_entry(
        entries,
        item_id=item.item_id,
        price_list=config.default_price_list,
        quantity=quantity,
        at=at,
    )
    return entry.price if entry else item.list_price


def resolve_channel_price(
    item: ItemCostBasis,
    *,
    price_lists: Sequence[PriceList],
    entries: Sequence[PriceListItem],
    markup_rules: Sequence[MarkupRule],
    discount_rules: Iterable[DiscountRule],
    config: EngineConfig,
    at: datetime,
    context: Optional[DiscountContext] = None,
    price_list: Optional[str] = None,
    customer_list_codes: Sequence[str] = (),
) -> ChannelPrice:
    """Resolve the price an item sells at on a channel.

    The base price comes from the list's formula, its active entry, or the
    markup rules, in that order. Discounts stack on top and the result is
    never allowed under the category's minimum margin.
    """
    context = context or DiscountContext()
    if context.category is None:
        context = replace(context, category=item.category)
    selected = select_price_list(
        price_lists,
        default_code=config.default_price_list,
        code=price_list,
        customer_list_codes=customer_list_codes,
    )
    cost = item.average_cost_local

    markup: Optional[MarkupResolution] = None
    if selected.auto_calculate:
        if selected.formula_markup is None:
            raise ValidationError(f"price list {selected.code} is auto-calculated but has no formula markup")
        base = cost * selected.formula_markup
        source = "FORMULA"
    else:
        entry = find_active_entry(
            entries,
            item_id=item.item_id,
            price_list=selected.code,
            quantity=context.quantity,
            at=at,
        )
        if entry is not None:
            base = entry.price
            source = "PRICE_LIST"
        else:
            markup = resolve_markup(item, markup_rules, config)
            base = markup.candidate_price
            source = "MARKUP"

    stacked = stack_discounts(base, discount_rules, context, at=at, global_discount=selected.global_discount)
    final = stacked.final_price
    min_margin = config.min_margin(item.category)
    target = config.target_margin(item.category)
    margin = margin_on_price(final, cost)
    raised = False
    if cost > 0 and margin < min_margin:
        final = price_for_margin(cost, min_margin)
        raised = True
        status = MarginStatus.CRITICAL
        log_event(
            logger,
            "channel_price_raised_to_min_margin",
            item_id=item.item_id,
            price_list=selected.code,
            discounted_price=stacked.final_price,
            min_margin=min_margin,
        )
    elif cost > 0:
        status = classify_margin(margin, floor=min_margin, target=target)
    else:
        status = MarginStatus.OK

    final = final.quantize(CENTS, rounding=ROUND_HALF_UP)
    return ChannelPrice(
        item_id=item.item_id,
        price_list=selected.code,
        quantity=context.quantity,
        cost=cost,
        source=source,
        base_price=base,
        reference_price=_reference_price(item, entries, config=config, quantity=context.quantity, at=at),
        final_price=final,
        margin=margin_on_price(final, cost),
        margin_status=status,
        min_margin=min_margin,
        target_margin=target,
        raised_to_min_margin=raised,
        discounts=stacked,
        markup=markup,
    )


def propose_recalculation(
    store: InMemoryPricingStore,
    rules: Sequence[MarkupRule],
    config: EngineConfig,
    *,
    actor: str,
    now: datetime,
    price_list: Optional[str] = None,
    item_ids: Optional[Sequence[str]] = None,
    categories: Optional[Sequence[str]] = None,
    only_without_price: bool = False,
    preview: bool = True,
) -> Tuple[RecalculationPreview, Optional[PriceChangeBatch]]:
    """Run the markup rules over the catalog.

    With ``preview=False`` the proposal is stored as an unapplied batch for
    the bulk applier; nothing else is written.
    """
    code = price_list or config.default_price_list
    if store.get_price_list(code) is None:
        raise NotFoundError(f"price list {code} not found")
    result = preview_recalculation(
        store.list_items(),
        rules,
        config,
        item_ids=item_ids,
        categories=categories,
        only_without_price=only_without_price,
    )
    if preview or not result.items:
        return result, None

    batch = result.to_batch(
        price_list=code,
        actor=actor,
        now=now,
        parameters={
            "item_ids": list(item_ids or []),
            "categories": list(categories or []),
            "only_without_price": only_without_price,
        },
    )
    store.put_batch(batch)
    log_event(logger, "price_batch_proposed", batch_id=batch.batch_id, price_list=code, changes=len(batch.changes))
    return result, batch
