from __future__ import annotations

import datetime
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def shorten_address(address: str) -> str:
    return f"{address[:4]}...{address[-4:]}"


class IdentityCandidate(BaseModel):
    symbol: Optional[str] = None
    name: Optional[str] = None
    image_url: Optional[str] = None


class IdentityRecord(BaseModel):
    address: str
    symbol: str
    name: str
    image_url: Optional[str] = None
    source: str
    last_updated: datetime.datetime = Field(default_factory=utcnow)


class IdentityResult(BaseModel):
    address: str
    symbol: str
    name: str
    image_url: Optional[str] = None
    source: str
    degraded: bool = False

    @classmethod
    def from_record(cls, record: IdentityRecord, image_url: str | None = None) -> IdentityResult:
        return cls(
            address=record.address,
            symbol=record.symbol,
            name=record.name,
            image_url=record.image_url or image_url,
            source=record.source,
        )

    @classmethod
    def fallback(cls, address: str) -> IdentityResult:
        return cls(
            address=address,
            symbol=shorten_address(address),
            name=address,
            source="fallback",
            degraded=True,
        )


class MarketQuote(BaseModel):
    price: Optional[float] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None


class MarketSnapshot(BaseModel):
    address: str
    price: Optional[float] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    captured_at: datetime.datetime = Field(default_factory=utcnow)
    # field name -> provider that reported it
    sources: dict[str, str] = Field(default_factory=dict)
    # fields asked for that no provider reported; cached like a value
    unreported: list[str] = Field(default_factory=list)

    def missing_fields(self) -> list[str]:
        return [name for name in MARKET_FIELDS if getattr(self, name) is None]


MARKET_FIELDS = ("price", "market_cap", "volume_24h")


class MarketData(BaseModel):
    address: str
    price: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    captured_at: datetime.datetime = Field(default_factory=utcnow)
    sources: dict[str, str] = Field(default_factory=dict)
    degraded: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: MarketSnapshot) -> MarketData:
        return cls(
            address=snapshot.address,
            price=snapshot.price or 0.0,
            market_cap=snapshot.market_cap or 0.0,
            volume_24h=snapshot.volume_24h or 0.0,
            captured_at=snapshot.captured_at,
            sources=dict(snapshot.sources),
            degraded=bool(snapshot.missing_fields()),
        )

    @classmethod
    def fallback(cls, address: str) -> MarketData:
        return cls(address=address, degraded=True)
