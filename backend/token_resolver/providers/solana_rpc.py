"""
On-chain metadata through the DAS ``getAsset`` JSON-RPC method.
"""

from __future__ import annotations

from typing import Any

import httpx

from token_resolver.providers.base import ErrorKind, ProviderError
from token_resolver.providers.http import get_path, request_json
from token_resolver.schemas.token import IdentityCandidate

_INVALID_PARAMS = -32602
_RATE_LIMIT_CODES = {-32005, 429}


class SolanaRpcProvider:
    name = "solana_rpc"

    def __init__(self, client: httpx.AsyncClient, rpc_url: str) -> None:
        self._client = client
        self._rpc_url = rpc_url

    def _raise_rpc_error(self, error: dict[str, Any]) -> None:
        code = error.get("code")
        message = str(error.get("message") or "")
        if "not found" in message.lower():
            raise ProviderError.not_found(self.name, message)
        if code == _INVALID_PARAMS:
            raise ProviderError(ErrorKind.EXPLICIT_INVALID, self.name, message)
        if code in _RATE_LIMIT_CODES:
            raise ProviderError(ErrorKind.RATE_LIMITED, self.name, message)
        raise ProviderError.transient(self.name, f"rpc error {code}: {message}")

    async def _asset(self, address: str, timeout: float) -> dict[str, Any]:
        body = {
            "jsonrpc": "2.0",
            "id": "token-resolver",
            "method": "getAsset",
            "params": {"id": address},
        }
        payload = await request_json(
            self._client, self.name, "POST", self._rpc_url, timeout=timeout, json_body=body
        )
        if not isinstance(payload, dict):
            raise ProviderError.transient(self.name, "unexpected payload type")
        if isinstance(payload.get("error"), dict):
            self._raise_rpc_error(payload["error"])
        result = payload.get("result")
        if not isinstance(result, dict):
            raise ProviderError.not_found(self.name)
        return result

    async def fetch_identity(self, address: str, timeout: float) -> IdentityCandidate:
        asset = await self._asset(address, timeout)
        metadata = get_path(asset, "content.metadata", {}) or {}
        return IdentityCandidate(
            symbol=metadata.get("symbol"),
            name=metadata.get("name"),
            image_url=get_path(asset, "content.links.image"),
        )

    async def fetch_image_url(self, address: str, timeout: float) -> str | None:
        asset = await self._asset(address, timeout)
        image_url = get_path(asset, "content.links.image")
        if not image_url:
            raise ProviderError.not_found(self.name, "no image link")
        return image_url
