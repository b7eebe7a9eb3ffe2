"""
Provider interfaces and the error taxonomy shared by every adapter.

Adapters implement one or more capability protocols. A call either returns
a value or raises ProviderError with one of four kinds; the chain decides
retry and fallback from the kind alone.
"""

from __future__ import annotations

import datetime
import enum
from typing import Protocol, runtime_checkable

from token_resolver.schemas.token import IdentityCandidate, MarketQuote


class ErrorKind(enum.Enum):
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    EXPLICIT_INVALID = "explicit_invalid"


class ProviderError(Exception):
    def __init__(self, kind: ErrorKind, provider: str, message: str = "") -> None:
        super().__init__(f"{provider}: {kind.value}: {message}" if message else f"{provider}: {kind.value}")
        self.kind = kind
        self.provider = provider
        self.message = message

    @classmethod
    def not_found(cls, provider: str, message: str = "no record") -> ProviderError:
        return cls(ErrorKind.NOT_FOUND, provider, message)

    @classmethod
    def transient(cls, provider: str, message: str) -> ProviderError:
        return cls(ErrorKind.TRANSIENT, provider, message)


@runtime_checkable
class IdentityProvider(Protocol):
    name: str

    async def fetch_identity(self, address: str, timeout: float) -> IdentityCandidate: ...


@runtime_checkable
class MarketProvider(Protocol):
    name: str

    async def fetch_market(self, address: str, timeout: float) -> MarketQuote: ...


@runtime_checkable
class ImageProvider(Protocol):
    name: str

    async def fetch_image_url(self, address: str, timeout: float) -> str | None: ...


@runtime_checkable
class CreationTimeProvider(Protocol):
    name: str

    async def fetch_creation_time(self, address: str, timeout: float) -> datetime.datetime | None: ...


CAPABILITIES = {
    "fetch_identity": IdentityProvider,
    "fetch_market": MarketProvider,
    "fetch_image_url": ImageProvider,
    "fetch_creation_time": CreationTimeProvider,
}
