"""
Currency Converter Tests
========================
Static table conversion and the HTTP converter's provider fallback and cache.
"""

import httpx
import pytest

from services.currency_service import (
    ExchangeRateConverter,
    StaticRateConverter,
    get_currency_converter,
)
from services.exceptions import CurrencyConversionError


PROVIDERS = [
    "https://rates-a.test/latest?from={base}",
    "https://rates-b.test/v6/latest/{base}",
]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_converter(handler, clock=None, cache_ttl=3600):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExchangeRateConverter(
        providers=PROVIDERS,
        cache_ttl=cache_ttl,
        client=client,
        clock=clock or FakeClock(),
    )


@pytest.mark.asyncio
async def test_static_converter_uses_reference_rates():
    converter = StaticRateConverter({"USD": 1.0, "EUR": 1.1, "GBP": 1.25})

    assert await converter.convert(100, "eur", "USD") == 110.0
    assert await converter.convert(125, "USD", "GBP") == 100.0
    assert await converter.convert(42, "USD", "USD") == 42


@pytest.mark.asyncio
async def test_static_converter_unknown_currency_raises():
    converter = StaticRateConverter({"USD": 1.0})

    with pytest.raises(CurrencyConversionError):
        await converter.convert(10, "XYZ", "USD")


@pytest.mark.asyncio
async def test_http_converter_falls_back_to_next_provider():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        if request.url.host == "rates-a.test":
            return httpx.Response(500)
        return httpx.Response(200, json={"base_code": "EUR", "rates": {"USD": 1.1, "GBP": 0.85}})

    converter = make_converter(handler)
    try:
        assert await converter.convert(100, "EUR", "USD") == 110.0
    finally:
        await converter._client.aclose()

    assert calls == ["rates-a.test", "rates-b.test"]


@pytest.mark.asyncio
async def test_http_converter_caches_rates_per_base():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200, json={"base": "EUR", "rates": {"USD": 1.1}})

    converter = make_converter(handler)
    try:
        await converter.convert(100, "EUR", "USD")
        await converter.convert(50, "EUR", "USD")
    finally:
        await converter._client.aclose()

    assert calls == ["https://rates-a.test/latest?from=EUR"]


@pytest.mark.asyncio
async def test_http_converter_reuses_expired_rates_when_providers_fail():
    clock = FakeClock()
    healthy = {"up": True}

    def handler(request: httpx.Request) -> httpx.Response:
        if healthy["up"]:
            return httpx.Response(200, json={"rates": {"USD": 1.2}})
        raise httpx.ConnectError("down", request=request)

    converter = make_converter(handler, clock=clock, cache_ttl=60)
    try:
        assert await converter.convert(10, "EUR", "USD") == 12.0
        healthy["up"] = False
        clock.now += 3600
        assert await converter.convert(10, "EUR", "USD") == 12.0
    finally:
        await converter._client.aclose()


@pytest.mark.asyncio
async def test_http_converter_raises_without_any_rates():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": "error"})

    converter = make_converter(handler)
    try:
        with pytest.raises(CurrencyConversionError):
            await converter.convert(10, "EUR", "USD")
    finally:
        await converter._client.aclose()


@pytest.mark.asyncio
async def test_http_converter_missing_target_currency_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"rates": {"GBP": 0.85}})

    converter = make_converter(handler)
    try:
        with pytest.raises(CurrencyConversionError):
            await converter.convert(10, "EUR", "JPY")
    finally:
        await converter._client.aclose()


def test_factory_selects_converter():
    assert isinstance(get_currency_converter("static"), StaticRateConverter)
    assert isinstance(get_currency_converter("http"), ExchangeRateConverter)
    with pytest.raises(ValueError):
        get_currency_converter("abacus")
