"""Token price lookups with a short TTL cache."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

import httpx
from cachetools import TTLCache

logger = logging.getLogger(__name__)


class PriceCache:
    """Jupiter price API behind a ``TTLCache``.

    Concurrent lookups of one mint share a single in-flight request. Failures
    are logged and come back as ``None``.
    """

    def __init__(
        self,
        ttl_s: float = 60.0,
        api_base: str = "https://api.jup.ag/price/v2",
        *,
        timeout_s: float = 5.0,
        max_entries: int = 256,
    ) -> None:
        self.api_base = api_base
        self._cache: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl_s)
        self._inflight: Dict[str, asyncio.Task] = {}
        self._client_kwargs: Dict[str, Any] = dict(
            timeout=timeout_s,
            headers={"User-Agent": "adrena-perps-client/1.0"},
        )

    def cached(self, mint: str) -> Optional[Decimal]:
        return self._cache.get(str(mint))

    async def _fetch(self, mint: str) -> Optional[Decimal]:
        # short-lived client; avoids sharing one across event loops
        async with httpx.AsyncClient(**self._client_kwargs) as client:
            resp = await client.get(self.api_base, params={"ids": mint})
            resp.raise_for_status()
            body = resp.json()
        entry = (body.get("data") or {}).get(mint)
        if not entry or entry.get("price") is None:
            return None
        return Decimal(str(entry["price"]))

    async def _refresh(self, mint: str) -> Optional[Decimal]:
        try:
            price = await self._fetch(mint)
        except (httpx.HTTPError, ValueError, InvalidOperation) as exc:
            logger.warning("Price fetch failed for %s: %s", mint, exc)
            return None
        finally:
            self._inflight.pop(mint, None)
        if price is not None:
            self._cache[mint] = price
        return price

    async def get_price(self, mint: Any) -> Optional[Decimal]:
        key = str(mint)
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(key))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def get_prices(self, mints: Iterable[Any]) -> Dict[str, Optional[Decimal]]:
        keys = list(dict.fromkeys(str(m) for m in mints))
        results = await asyncio.gather(*(self.get_price(k) for k in keys))
        return dict(zip(keys, results))

    def clear(self) -> None:
        self._cache.clear()


__all__ = ["PriceCache"]
