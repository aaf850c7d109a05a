import asyncio
from decimal import Decimal

import httpx

from adrena.perps.prices import PriceCache

MINT = "So11111111111111111111111111111111111111112"


def _counting_fetch(cache, monkeypatch, price="150.25", delay=0.01):
    calls = []

    async def fake_fetch(mint):
        calls.append(mint)
        await asyncio.sleep(delay)
        return Decimal(price)

    monkeypatch.setattr(cache, "_fetch", fake_fetch)
    return calls


def test_concurrent_lookups_share_one_request(monkeypatch):
    cache = PriceCache(ttl_s=60)
    calls = _counting_fetch(cache, monkeypatch)

    async def run():
        return await asyncio.gather(*(cache.get_price(MINT) for _ in range(5)))

    prices = asyncio.run(run())
    assert prices == [Decimal("150.25")] * 5
    assert calls == [MINT]
    assert cache.cached(MINT) == Decimal("150.25")


def test_cached_value_is_reused_until_ttl(monkeypatch):
    cache = PriceCache(ttl_s=0.05)
    calls = _counting_fetch(cache, monkeypatch, delay=0)

    async def run():
        await cache.get_price(MINT)
        await cache.get_price(MINT)
        await asyncio.sleep(0.1)
        await cache.get_price(MINT)

    asyncio.run(run())
    assert len(calls) == 2


def test_fetch_error_returns_none_and_is_not_cached(monkeypatch):
    cache = PriceCache()

    async def failing_fetch(mint):
        raise httpx.ConnectError("unreachable")

    monkeypatch.setattr(cache, "_fetch", failing_fetch)
    assert asyncio.run(cache.get_price(MINT)) is None
    assert cache.cached(MINT) is None


def test_get_prices_keys_by_mint(monkeypatch):
    cache = PriceCache()
    _counting_fetch(cache, monkeypatch, price="1", delay=0)
    prices = asyncio.run(cache.get_prices([MINT, MINT, "other"]))
    assert prices == {MINT: Decimal("1"), "other": Decimal("1")}


def test_fetch_parses_price_api_payload(monkeypatch):
    def handler(request):
        assert request.url.params["ids"] == MINT
        return httpx.Response(200, json={"data": {MINT: {"id": MINT, "price": "142.5"}}})

    transport = httpx.MockTransport(handler)
    cache = PriceCache()
    cache._client_kwargs["transport"] = transport
    assert asyncio.run(cache.get_price(MINT)) == Decimal("142.5")


def test_missing_price_entry_is_none():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": {}}))
    cache = PriceCache()
    cache._client_kwargs["transport"] = transport
    assert asyncio.run(cache.get_price(MINT)) is None
