from __future__ import annotations


class PricingError(Exception):
    """Base class for rejected pricing and costing operations."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationError(PricingError, ValueError):
    """Malformed or out-of-range input; raised before any computation."""


class NotFoundError(PricingError):
    """A referenced item, shipment, plan, batch or price list does not exist."""


class ConflictError(PricingError):
    """The requested write conflicts with current state (e.g. batch already applied)."""
