"""
DexScreener adapter.

Public API, no key required:
  GET https://api.dexscreener.com/latest/dex/tokens/{address}
"""

from __future__ import annotations

import datetime
from typing import Any

import httpx

from token_resolver.providers.base import ProviderError
from token_resolver.providers.http import get_path, request_json, to_float
from token_resolver.schemas.token import IdentityCandidate, MarketQuote

_TOKENS_PATH = "/latest/dex/tokens/{address}"


class DexScreenerProvider:
    name = "dexscreener"

    def __init__(self, client: httpx.AsyncClient, base_url: str = "https://api.dexscreener.com") -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def _build_url(self, address: str) -> str:
        return f"{self._base_url}{_TOKENS_PATH.format(address=address)}"

    async def _pair(self, address: str, timeout: float) -> dict[str, Any]:
        payload = await request_json(
            self._client, self.name, "GET", self._build_url(address), timeout=timeout
        )
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not isinstance(pairs, list) or not pairs:
            raise ProviderError.not_found(self.name, "no pairs")
        candidates = [p for p in pairs if isinstance(p, dict)]
        if not candidates:
            raise ProviderError.not_found(self.name, "no pairs")
        # prefer a pair where the token is the base side
        for pair in candidates:
            if get_path(pair, "baseToken.address") == address:
                return pair
        return candidates[0]

    async def fetch_identity(self, address: str, timeout: float) -> IdentityCandidate:
        pair = await self._pair(address, timeout)
        return IdentityCandidate(
            symbol=get_path(pair, "baseToken.symbol"),
            name=get_path(pair, "baseToken.name"),
            image_url=get_path(pair, "info.imageUrl"),
        )

    async def fetch_market(self, address: str, timeout: float) -> MarketQuote:
        pair = await self._pair(address, timeout)
        return MarketQuote(
            price=to_float(pair.get("priceUsd")),
            market_cap=to_float(pair.get("marketCap")),
            volume_24h=to_float(get_path(pair, "volume.h24")),
        )

    async def fetch_image_url(self, address: str, timeout: float) -> str | None:
        pair = await self._pair(address, timeout)
        image_url = get_path(pair, "info.imageUrl")
        if not image_url:
            raise ProviderError.not_found(self.name, "no image")
        return image_url

    async def fetch_creation_time(self, address: str, timeout: float) -> datetime.datetime | None:
        pair = await self._pair(address, timeout)
        created_ms = to_float(pair.get("pairCreatedAt"))
        if not created_ms:
            raise ProviderError.not_found(self.name, "no pairCreatedAt")
        return datetime.datetime.fromtimestamp(created_ms / 1000, tz=datetime.UTC)
