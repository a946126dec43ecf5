"""
Currency helpers.

All persisted amounts keep 6 decimal places. Anything that leaves the
system (payout items, payout totals) is quantized to the currency's
minor unit so sums never drift by more than one unit.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Minor unit exponent per ISO 4217 code (default 2)
MINOR_UNITS = {
    "JPY": 0,
    "KRW": 0,
    "CLP": 0,
    "BHD": 3,
    "KWD": 3,
}

STORAGE_QUANTUM = Decimal("0.000001")


def minor_unit(currency: str) -> Decimal:
    """Smallest denomination of a currency, e.g. 0.01 for USD, 1 for JPY."""
    exponent = MINOR_UNITS.get(currency.upper(), 2)
    return Decimal(1).scaleb(-exponent)


def quantize(amount: Decimal, currency: str) -> Decimal:
    """Round half-up to the currency's minor unit."""
    return Decimal(amount).quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def quantize_storage(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(STORAGE_QUANTUM, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return quantize_storage(Decimal(amount) * Decimal(percentage) / HUNDRED)


def total(amounts: Iterable[Decimal]) -> Decimal:
    return sum((Decimal(a) for a in amounts), ZERO)
