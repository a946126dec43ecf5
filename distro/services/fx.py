"""
Foreign Exchange (FX) conversion service.

Rates come from a pluggable provider. Unlike a best-effort converter, a
missing rate is never papered over with 1.0: money would be paid out at
the wrong value. The provider raises ExchangeRateUnavailable and callers
decide whether to retry or skip.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Protocol, Tuple

from distro.core.config import settings
from distro.core.errors import ExchangeRateUnavailable

logger = logging.getLogger(__name__)

ONE = Decimal("1")


class FXProvider(Protocol):
    """Protocol for FX rate providers."""

    def get_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate_date: date,
    ) -> Decimal:
        """Get exchange rate for converting from one currency to another."""
        ...


class StaticFXProvider:
    """
    FX provider backed by a fixed rate table.

    Inverse pairs are derived automatically, so a table holding EUR->USD
    also answers USD->EUR.
    """

    def __init__(self, rates: Dict[Tuple[str, str], Decimal] | None = None):
        self.rates: Dict[Tuple[str, str], Decimal] = {}
        for (base, quote), rate in (rates or {}).items():
            self.set_rate(base, quote, rate)

    def set_rate(self, from_currency: str, to_currency: str, rate: Decimal) -> None:
        rate = Decimal(rate)
        if rate <= 0:
            raise ValueError(f"Rate for {from_currency}->{to_currency} must be positive")
        self.rates[(from_currency.upper(), to_currency.upper())] = rate

    def get_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate_date: date,
    ) -> Decimal:
        """
        Look up a rate, falling back to the inverse of the reverse pair.

        Raises:
            ExchangeRateUnavailable: if neither direction is known
        """
        key = (from_currency.upper(), to_currency.upper())
        if key in self.rates:
            return self.rates[key]

        reverse = (key[1], key[0])
        if reverse in self.rates:
            return ONE / self.rates[reverse]

        raise ExchangeRateUnavailable(from_currency, to_currency, rate_date)


class FXService:
    """
    FX conversion service.

    Provides currency conversion with pluggable FX providers.
    """

    def __init__(self, provider: FXProvider | None = None):
        """
        Initialize FX service.

        Args:
            provider: FX rate provider (defaults to the configured static table)
        """
        self.provider = provider or StaticFXProvider(settings.fx_rate_table)

    def get_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate_date: date,
    ) -> Decimal:
        """
        Get exchange rate for converting from one currency to another.

        Args:
            from_currency: Source currency code
            to_currency: Target currency code
            rate_date: Date for the exchange rate

        Returns:
            Exchange rate as Decimal

        Raises:
            ExchangeRateUnavailable: if the provider has no rate for the pair
        """
        if from_currency.upper() == to_currency.upper():
            return ONE

        try:
            return self.provider.get_rate(from_currency, to_currency, rate_date)
        except ExchangeRateUnavailable:
            logger.warning(
                f"No FX rate for {from_currency} -> {to_currency} on {rate_date}"
            )
            raise

    def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        rate_date: date,
    ) -> tuple[Decimal, Decimal]:
        """
        Convert amount from one currency to another.

        Returns:
            Tuple of (converted_amount, rate_used). The converted amount is
            not rounded; callers quantize to the precision they need.
        """
        rate = self.get_rate(from_currency, to_currency, rate_date)
        return Decimal(amount) * rate, rate


# Default service instance (can be replaced in tests or with real provider)
fx_service = FXService()
