"""
Three cache tiers behind one handle.

L1 (MemoryCache) and L2 (SharedCache) are independent: neither is kept in
lockstep with the other, a hit in either is valid, and writes go to both.
L3 (IdentityStore) holds identity records only and never expires.

Market snapshots are stored as two parts so the price can expire sooner
than the slower-moving market cap and volume.
"""

from __future__ import annotations

import datetime
import enum
from typing import Any

from pydantic import ValidationError
import structlog

from token_resolver.cache.memory import MemoryCache
from token_resolver.cache.shared import SharedCache
from token_resolver.db.store import IdentityStore
from token_resolver.schemas.token import IdentityRecord, MarketSnapshot

logger = structlog.get_logger(__name__)

CREATION_UNKNOWN = "UNKNOWN"

_PRICE_FIELDS = ("price",)
_STATS_FIELDS = ("market_cap", "volume_24h")


class Tier(enum.Enum):
    L1 = "memory"
    L2 = "shared"
    L3 = "durable"


def image_key(address: str) -> str:
    return f"token:image:{address}"


def creation_key(address: str) -> str:
    return f"token:creation:{address}"


def market_price_key(address: str) -> str:
    return f"token:market:price:{address}"


def market_stats_key(address: str) -> str:
    return f"token:market:stats:{address}"


def _part(snapshot: MarketSnapshot, fields: tuple[str, ...]) -> MarketSnapshot | None:
    unreported = [name for name in snapshot.unreported if name in fields]
    if not unreported and all(getattr(snapshot, name) is None for name in fields):
        return None
    update: dict[str, Any] = {
        name: None for name in ("price", "market_cap", "volume_24h") if name not in fields
    }
    update["sources"] = {k: v for k, v in snapshot.sources.items() if k in fields}
    update["unreported"] = unreported
    return snapshot.model_copy(update=update)


class CacheHierarchy:
    def __init__(
        self,
        memory: MemoryCache,
        shared: SharedCache,
        store: IdentityStore,
        cache_settings,
    ) -> None:
        self.memory = memory
        self.shared = shared
        self.store = store
        self._settings = cache_settings

    def start(self) -> None:
        self.memory.start()

    async def stop(self) -> None:
        await self.memory.stop()

    async def get(self, tier: Tier, key: str) -> tuple[Any, bool]:
        if tier is Tier.L1:
            return self.memory.get(key)
        if tier is Tier.L2:
            value = await self.shared.get(key)
            return value, value is not None
        record = await self.store.find(key)
        return record, record is not None

    async def set(self, tier: Tier, key: str, value: Any, ttl: int | None = None) -> None:
        if tier is not Tier.L3 and ttl is None:
            raise ValueError(f"{tier.name} entries need a ttl")
        if tier is Tier.L1:
            self.memory.set(key, value, ttl)
        elif tier is Tier.L2:
            await self.shared.setex(key, ttl, value)
        else:
            if not isinstance(value, IdentityRecord) or value.address != key:
                raise ValueError("L3 only stores IdentityRecord values under their address")
            await self.store.upsert(value)

    async def invalidate(self, key: str) -> None:
        self.memory.delete(key)
        await self.shared.delete(key)

    # identity (L3)

    async def get_identity(self, address: str) -> IdentityRecord | None:
        record, _ = await self.get(Tier.L3, address)
        return record

    async def set_identity(self, record: IdentityRecord) -> None:
        await self.set(Tier.L3, record.address, record)

    # icon URL and creation time (L2)

    async def get_image_url(self, address: str) -> str | None:
        value, _ = await self.get(Tier.L2, image_key(address))
        return value

    async def set_image_url(self, address: str, image_url: str) -> None:
        await self.set(Tier.L2, image_key(address), image_url, self._settings.identity_image_ttl_seconds)

    async def get_creation_time(self, address: str) -> tuple[datetime.datetime | None, bool]:
        """Return (creation time, hit). A hit with None means known to be absent."""
        raw, hit = await self.get(Tier.L2, creation_key(address))
        if not hit:
            return None, False
        if raw == CREATION_UNKNOWN:
            return None, True
        try:
            return datetime.datetime.fromisoformat(raw), True
        except ValueError:
            logger.warning("creation_time_cache_corrupt", address=address, value=raw)
            return None, False

    async def set_creation_time(self, address: str, created_at: datetime.datetime | None) -> None:
        value = created_at.isoformat() if created_at is not None else CREATION_UNKNOWN
        await self.set(Tier.L2, creation_key(address), value, self._settings.creation_time_ttl_seconds)

    # market snapshot (L1 + L2)

    async def _get_part(self, key: str) -> MarketSnapshot | None:
        value, hit = self.memory.get(key)
        if hit:
            return value
        raw = await self.shared.get(key)
        if raw is None:
            return None
        try:
            return MarketSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning("market_cache_corrupt", key=key)
            return None

    async def _set_part(self, key: str, part: MarketSnapshot, ttl: int) -> None:
        self.memory.set(key, part, ttl)
        await self.shared.setex(key, ttl, part.model_dump_json())

    async def get_market(self, address: str) -> MarketSnapshot | None:
        price_part = await self._get_part(market_price_key(address))
        stats_part = await self._get_part(market_stats_key(address))
        parts = [p for p in (price_part, stats_part) if p is not None]
        if not parts:
            return None
        sources: dict[str, str] = {}
        unreported: list[str] = []
        for part in parts:
            sources.update(part.sources)
            unreported.extend(part.unreported)
        return MarketSnapshot(
            address=address,
            price=price_part.price if price_part else None,
            market_cap=stats_part.market_cap if stats_part else None,
            volume_24h=stats_part.volume_24h if stats_part else None,
            captured_at=min(p.captured_at for p in parts),
            sources=sources,
            unreported=unreported,
        )

    async def set_market(self, snapshot: MarketSnapshot) -> None:
        price_part = _part(snapshot, _PRICE_FIELDS)
        if price_part is not None:
            await self._set_part(
                market_price_key(snapshot.address), price_part, self._settings.market_price_ttl_seconds
            )
        stats_part = _part(snapshot, _STATS_FIELDS)
        if stats_part is not None:
            await self._set_part(
                market_stats_key(snapshot.address), stats_part, self._settings.market_stats_ttl_seconds
            )

    async def invalidate_market(self, address: str) -> None:
        await self.invalidate(market_price_key(address))
        await self.invalidate(market_stats_key(address))
