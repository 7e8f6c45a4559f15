#services/currency_service.py
"""
Currency normalization for budget statistics.

Two converters share one async interface:
- StaticRateConverter: configured rate table, no I/O
- ExchangeRateConverter: public exchange-rate APIs over httpx, tried in order,
  with a per-base rate cache and an expired-cache fallback

Both raise CurrencyConversionError instead of guessing a rate.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from app.core.config import settings
from services.exceptions import CurrencyConversionError

logger = logging.getLogger(__name__)


class CurrencyConverter:
    async def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class StaticRateConverter(CurrencyConverter):
    """
    Converts through a fixed table.
    Each rate is the number of base-currency units per one unit of the key.
    """

    def __init__(self, rates: Optional[Dict[str, float]] = None, base_currency: Optional[str] = None):
        base_currency = (base_currency or settings.REFERENCE_CURRENCY).upper()
        table = rates if rates is not None else settings.STATIC_EXCHANGE_RATES
        self.rates = {code.upper(): float(rate) for code, rate in table.items()}
        self.rates.setdefault(base_currency, 1.0)
        self.base_currency = base_currency

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return amount

        from_rate = self.rates.get(from_currency)
        to_rate = self.rates.get(to_currency)
        if not from_rate or not to_rate:
            raise CurrencyConversionError(f"No static rate for {from_currency} -> {to_currency}")

        return round(amount * from_rate / to_rate, 2)


class ExchangeRateConverter(CurrencyConverter):
    """
    Fetches live rates, trying each provider URL template in turn.
    Templates take a {base} placeholder and must return {"rates": {...}}.
    """

    def __init__(
        self,
        providers: Optional[List[str]] = None,
        cache_ttl: Optional[int] = None,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.providers = providers or list(settings.EXCHANGE_RATE_PROVIDERS)
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.EXCHANGE_RATE_CACHE_TTL
        self.timeout_s = timeout_s or settings.EXCHANGE_RATE_TIMEOUT
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._cache: Dict[str, Tuple[Dict[str, float], float]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"Accept": "application/json", "User-Agent": "traveler-context/1.0"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get_rates(self, base: str) -> Dict[str, float]:
        base = base.upper()
        cached = self._cache.get(base)
        if cached and (self._clock() - cached[1]) < self.cache_ttl:
            logger.debug("[CURRENCY] Using cached %s rates", base)
            return cached[0]

        client = await self._get_client()
        for template in self.providers:
            url = template.format(base=base)
            try:
                resp = await client.get(url)
                resp.raise_for_status()
                rates = self._parse_rates(resp.json())
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("[CURRENCY] Provider %s failed: %s", url, e)
                continue

            rates[base] = 1.0
            self._cache[base] = (rates, self._clock())
            logger.info("[CURRENCY] Updated %s rates from %s", base, url)
            return rates

        if cached:
            logger.warning("[CURRENCY] All providers failed, using expired %s rates", base)
            return cached[0]

        raise CurrencyConversionError(f"All exchange rate providers failed for {base}")

    @staticmethod
    def _parse_rates(data) -> Dict[str, float]:
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise ValueError("response carries no rates")

        parsed = {
            str(code).upper(): float(rate)
            for code, rate in rates.items()
            if isinstance(rate, (int, float)) and rate > 0
        }
        if not parsed:
            raise ValueError("response carries no usable rates")
        return parsed

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return amount

        rates = await self.get_rates(from_currency)
        rate = rates.get(to_currency)
        if not rate:
            raise CurrencyConversionError(f"No rate for {from_currency} -> {to_currency}")

        return round(amount * rate, 2)


def get_currency_converter(kind: Optional[str] = None) -> CurrencyConverter:
    kind = kind or settings.CURRENCY_CONVERTER
    if kind == "http":
        return ExchangeRateConverter()
    if kind == "static":
        return StaticRateConverter()
    raise ValueError(f"Unknown currency converter: {kind}")
