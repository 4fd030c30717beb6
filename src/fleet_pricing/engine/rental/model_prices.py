from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fleet_pricing.engine.canonical.models import ModelPrice, RentalPriceHistory
from fleet_pricing.persistence.memory import InMemoryPricingStore
from fleet_pricing.util.errors import NotFoundError, PricingError, ValidationError
from fleet_pricing.util.logging import get_logger, log_event

ZERO = Decimal("0")


class ModelPriceBook:
    """Persists resolved (model, plan) rental prices and their history."""

    def __init__(self, store: InMemoryPricingStore) -> None:
        self.store = store
        self.logger = get_logger(self.__class__.__name__)

    def _reject(self, exc: PricingError, **fields: object) -> None:
        log_event(self.logger, "model_price_override_rejected", reason=exc.reason, **fields)
        raise exc

    def _history(
        self,
        price: ModelPrice,
        *,
        previous: Decimal,
        new: Decimal,
        reason: str,
        actor: str,
        now: datetime,
    ) -> RentalPriceHistory:
        record = RentalPriceHistory(
            model=price.model,
            plan_code=price.plan_code,
            previous_price=previous,
            new_price=new,
            landed_cost_local=price.landed_cost_local,
            exchange_rate=price.exchange_rate,
            margin_pct=price.margin_pct,
            reason=reason,
            actor=actor,
            recorded_at=now,
        )
        self.store.append_rental_history(record)
        return record

    def save_model_price(
        self, price: ModelPrice, *, actor: str, now: datetime, reason: str = "recalculated"
    ) -> ModelPrice:
        if self.store.get_plan(price.plan_code) is None:
            raise NotFoundError(f"rental plan {price.plan_code} not found")
        with self.store.transaction():
            existing = self.store.get_model_price(price.model, price.plan_code)
            if existing is not None and existing.manual_price is not None and price.manual_price is None:
                price = price.model_copy(
                    update={"manual_price": existing.manual_price, "override_reason": existing.override_reason}
                )
            previous = existing.effective_price if existing else ZERO
            self.store.put_model_price(price)
            if previous != price.effective_price:
                self._history(
                    price,
                    previous=previous,
                    new=price.effective_price,
                    reason=reason,
                    actor=actor,
                    now=now,
                )
        return price

    def override_model_price(
        self,
        model: str,
        plan_code: str,
        *,
        manual_price: Optional[Decimal],
        reason: str,
        actor: str,
        now: datetime,
    ) -> ModelPrice:
        """Set or clear a manual price.

        The computed price and margin stay on the record so drift between
        the override and the calculation can still be reported.
        """
        if manual_price is not None and manual_price <= 0:
            self._reject(ValidationError("manual price must be > 0"), model=model, plan_code=plan_code)
        if not reason or not reason.strip():
            self._reject(ValidationError("an override justification is required"), model=model, plan_code=plan_code)
        existing = self.store.get_model_price(model, plan_code)
        if existing is None:
            self._reject(
                NotFoundError(f"no price for model {model} on plan {plan_code}"),
                model=model,
                plan_code=plan_code,
            )
        with self.store.transaction():
            updated = existing.model_copy(
                update={
                    "manual_price": manual_price,
                    "override_reason": reason.strip() if manual_price is not None else None,
                    "updated_at": now,
                }
            )
            self.store.put_model_price(updated)
            if updated.effective_price != existing.effective_price:
                self._history(
                    updated,
                    previous=existing.effective_price,
                    new=updated.effective_price,
                    reason=reason.strip(),
                    actor=actor,
                    now=now,
                )
        log_event(
            self.logger,
            "model_price_overridden",
            model=model,
            plan_code=plan_code,
            manual_price=manual_price,
            computed_price=existing.discounted_price,
            actor=actor,
        )
        return updated
