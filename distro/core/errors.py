"""Exception hierarchy for the royalty, payout, analytics and API-key domain."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


class DistroError(Exception):
    """Base exception for all domain errors."""


# --- Validation ---
class ValidationError(DistroError):
    """Malformed or out-of-range field, rejected before persistence."""


class InvalidTransition(ValidationError):
    """State machine transition not allowed from the current status."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from '{current}' to '{target}'")


# --- Conflicts ---
class ConflictError(DistroError):
    """Write lost a race, e.g. a royalty split already attached to a live payout."""


# --- Lookups ---
class NotFoundError(DistroError):
    """Referenced record does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


# --- External dependencies ---
class ExternalDependencyError(DistroError):
    """Exchange-rate source or payment gateway unavailable. Retryable."""


class ExchangeRateUnavailable(ExternalDependencyError):
    """No exchange rate exists for a currency pair."""

    def __init__(self, from_currency: str, to_currency: str, rate_date: object = None):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.rate_date = rate_date
        super().__init__(
            f"No exchange rate for {from_currency} -> {to_currency}"
            + (f" on {rate_date}" if rate_date else "")
        )


class PaymentGatewayError(ExternalDependencyError):
    """Payment gateway could not be reached or answered with a server error."""


@dataclass(frozen=True)
class ThresholdSkip:
    """
    Aggregation intentionally produced nothing.

    Not an error: the recipient's eligible total is below their minimum
    payout amount, so every royalty stays eligible for the next cycle.
    """
    recipient_id: UUID
    candidate_amount: Decimal
    minimum_payout_amount: Decimal
    currency: str
