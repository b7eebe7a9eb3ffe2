from __future__ import annotations

import json
from typing import Any

import httpx

from token_resolver.providers.base import ErrorKind, ProviderError

_EXPLICIT_INVALID_STATUSES = {400, 422}


def classify_status(status_code: int) -> ErrorKind | None:
    if status_code < 400:
        return None
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code in _EXPLICIT_INVALID_STATUSES:
        return ErrorKind.EXPLICIT_INVALID
    # auth problems and 5xx say nothing about the token itself
    return ErrorKind.TRANSIENT


async def request_json(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    *,
    timeout: float,
    params: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
) -> Any:
    try:
        response = await client.request(
            method,
            url,
            params=params,
            headers=headers,
            json=json_body,
            timeout=timeout,
        )
    except httpx.TimeoutException as exc:
        raise ProviderError(ErrorKind.TRANSIENT, provider, f"timeout: {exc}") from exc
    except httpx.TransportError as exc:
        raise ProviderError(ErrorKind.TRANSIENT, provider, f"transport: {exc}") from exc

    kind = classify_status(response.status_code)
    if kind is not None:
        raise ProviderError(kind, provider, f"HTTP {response.status_code}")

    try:
        return response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise ProviderError(ErrorKind.TRANSIENT, provider, "malformed JSON body") from exc


def get_path(payload: Any, path: str, default: Any = None) -> Any:
    current = payload
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
