"""
Birdeye adapter. Requires an API key.

  GET /defi/token_overview?address=...           identity, market
  GET /defi/v3/token/meta-data/single?address=... icon
  GET /defi/token_creation_info?address=...      creation time
"""

from __future__ import annotations

import datetime
from typing import Any

import httpx

from token_resolver.providers.base import ProviderError
from token_resolver.providers.http import request_json, to_float
from token_resolver.schemas.token import IdentityCandidate, MarketQuote

_OVERVIEW_PATH = "/defi/token_overview"
_METADATA_PATH = "/defi/v3/token/meta-data/single"
_CREATION_PATH = "/defi/token_creation_info"


class BirdeyeProvider:
    name = "birdeye"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = "https://public-api.birdeye.so",
        chain: str = "solana",
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._chain = chain

    def _headers(self) -> dict[str, str]:
        return {"X-API-KEY": self._api_key, "x-chain": self._chain, "accept": "application/json"}

    async def _data(self, path: str, address: str, timeout: float) -> dict[str, Any]:
        payload = await request_json(
            self._client,
            self.name,
            "GET",
            f"{self._base_url}{path}",
            timeout=timeout,
            params={"address": address},
            headers=self._headers(),
        )
        if not isinstance(payload, dict):
            raise ProviderError.transient(self.name, "unexpected payload type")
        data = payload.get("data")
        if payload.get("success") is False or not isinstance(data, dict) or not data:
            raise ProviderError.not_found(self.name)
        return data

    async def fetch_identity(self, address: str, timeout: float) -> IdentityCandidate:
        data = await self._data(_OVERVIEW_PATH, address, timeout)
        return IdentityCandidate(
            symbol=data.get("symbol"),
            name=data.get("name"),
            image_url=data.get("logoURI"),
        )

    async def fetch_market(self, address: str, timeout: float) -> MarketQuote:
        data = await self._data(_OVERVIEW_PATH, address, timeout)
        return MarketQuote(
            price=to_float(data.get("price")),
            market_cap=to_float(data.get("marketCap")),
            volume_24h=to_float(data.get("v24hUSD")),
        )

    async def fetch_image_url(self, address: str, timeout: float) -> str | None:
        data = await self._data(_METADATA_PATH, address, timeout)
        image_url = data.get("logo_uri")
        if not image_url:
            raise ProviderError.not_found(self.name, "no logo_uri")
        return image_url

    async def fetch_creation_time(self, address: str, timeout: float) -> datetime.datetime | None:
        data = await self._data(_CREATION_PATH, address, timeout)
        unix_time = to_float(data.get("blockUnixTime"))
        if unix_time:
            return datetime.datetime.fromtimestamp(unix_time, tz=datetime.UTC)
        human_time = data.get("blockHumanTime")
        if not human_time:
            raise ProviderError.not_found(self.name, "no creation time")
        try:
            parsed = datetime.datetime.fromisoformat(str(human_time).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ProviderError.transient(self.name, f"bad blockHumanTime {human_time!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.UTC)
        return parsed
