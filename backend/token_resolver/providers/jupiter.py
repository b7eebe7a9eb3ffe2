"""
Jupiter adapter: token list for identity, price API v3 for USD price.
"""

from __future__ import annotations

import httpx

from token_resolver.providers.base import ProviderError
from token_resolver.providers.http import get_path, request_json, to_float
from token_resolver.schemas.token import IdentityCandidate, MarketQuote

_TOKEN_PATH = "/token/{address}"
_PRICE_PATH = "/price/v3"


class JupiterProvider:
    name = "jupiter"

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_url: str = "https://tokens.jup.ag",
        price_url: str = "https://lite-api.jup.ag",
    ) -> None:
        self._client = client
        self._token_url = token_url.rstrip("/")
        self._price_url = price_url.rstrip("/")

    async def _token(self, address: str, timeout: float) -> dict:
        url = f"{self._token_url}{_TOKEN_PATH.format(address=address)}"
        payload = await request_json(self._client, self.name, "GET", url, timeout=timeout)
        if not isinstance(payload, dict) or not payload:
            raise ProviderError.not_found(self.name)
        return payload

    async def fetch_identity(self, address: str, timeout: float) -> IdentityCandidate:
        payload = await self._token(address, timeout)
        return IdentityCandidate(
            symbol=payload.get("symbol"),
            name=payload.get("name"),
            image_url=payload.get("logoURI"),
        )

    async def fetch_image_url(self, address: str, timeout: float) -> str | None:
        payload = await self._token(address, timeout)
        image_url = payload.get("logoURI")
        if not image_url:
            raise ProviderError.not_found(self.name, "no logoURI")
        return image_url

    async def fetch_market(self, address: str, timeout: float) -> MarketQuote:
        payload = await request_json(
            self._client,
            self.name,
            "GET",
            f"{self._price_url}{_PRICE_PATH}",
            timeout=timeout,
            params={"ids": address},
        )
        entry = payload.get(address) if isinstance(payload, dict) else None
        if not isinstance(entry, dict):
            raise ProviderError.not_found(self.name, "no price entry")
        # Jupiter only knows the price
        return MarketQuote(price=to_float(get_path(entry, "usdPrice")))
