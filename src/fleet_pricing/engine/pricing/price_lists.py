from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from fleet_pricing.engine.canonical.models import PriceList, PriceListItem
from fleet_pricing.util.errors import NotFoundError


def select_price_list(
    price_lists: Sequence[PriceList],
    *,
    default_code: str,
    code: Optional[str] = None,
    customer_list_codes: Sequence[str] = (),
) -> PriceList:
    by_code = {price_list.code: price_list for price_list in price_lists}
    if code:
        if code not in by_code:
            raise NotFoundError(f"price list {code} not found")
        return by_code[code]
    candidates = [by_code[c] for c in customer_list_codes if c in by_code]
    if candidates:
        return min(candidates, key=lambda price_list: (-price_list.priority, price_list.code))
    if default_code in by_code:
        return by_code[default_code]
    raise NotFoundError("no price list could be determined")


def find_active_entry(
    entries: Iterable[PriceListItem],
    *,
    item_id: str,
    price_list: str,
    quantity: int,
    at: datetime,
) -> Optional[PriceListItem]:
    # Largest quantity break first, then the most recently started entry.
    candidates = [
        entry
        for entry in entries
        if entry.item_id == item_id
        and entry.price_list == price_list
        and entry.min_quantity <= quantity
        and entry.is_active(at)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda entry: (entry.min_quantity, entry.valid_from))
