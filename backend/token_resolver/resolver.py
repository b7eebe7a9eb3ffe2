"""
Token resolution: identity and market data behind cache tiers, provider
chains and a negative cache.

Every public coroutine returns a value. When nothing trustworthy is found,
the answer is a degraded placeholder (shortened address, zero market
values) and is never written to a cache tier. The only exception a caller
can see is InvalidAddressError for input that is not a token address.
"""

from __future__ import annotations

import asyncio
import datetime
import math
import time
from typing import Any, Awaitable, Callable, Optional

import structlog

from token_resolver.cache.failures import FailureTracker
from token_resolver.cache.hierarchy import CacheHierarchy
from token_resolver.db.store import DurableStoreUnavailable
from token_resolver.providers.chain import ProviderChain
from token_resolver.schemas.token import (
    MARKET_FIELDS,
    IdentityCandidate,
    IdentityRecord,
    IdentityResult,
    MarketData,
    MarketQuote,
    MarketSnapshot,
    utcnow,
)
from token_resolver.singleflight import FlightDeadline, SingleFlight
from token_resolver.validation.validator import TokenValidator, looks_like_address, normalize

logger = structlog.get_logger(__name__)

# creation timestamps further in the future than this are provider garbage
_CREATION_CLOCK_SKEW = datetime.timedelta(days=1)


class InvalidAddressError(ValueError):
    pass


def validate_address(address: Any) -> str:
    if not isinstance(address, str):
        raise InvalidAddressError(f"token address must be a string, got {type(address).__name__}")
    value = address.strip()
    if not value:
        raise InvalidAddressError("token address is empty")
    if not looks_like_address(value):
        raise InvalidAddressError(f"not a token address: {value!r}")
    return value


def identity_key(address: str) -> str:
    return f"identity:{address}"


def market_key(address: str) -> str:
    return f"market:{address}"


class _FieldMerge:
    """Per-field fall-through across market providers.

    A positive value settles a field. A reported zero is kept only until some
    later provider reports a positive value. Unreported fields stay None.
    """

    def __init__(self, needed: set[str]) -> None:
        self.needed = needed
        self.values: dict[str, float] = {}
        self.sources: dict[str, str] = {}
        self._settled: set[str] = set()

    def invalid_fields(self, quote: MarketQuote) -> list[str]:
        """Fields this refresh asked for that carry a negative or non-finite value."""
        bad = []
        for name in MARKET_FIELDS:
            if name not in self.needed:
                continue
            value = getattr(quote, name)
            if value is not None and (not math.isfinite(value) or value < 0):
                bad.append(name)
        return bad

    def offer(self, provider: str, quote: MarketQuote) -> None:
        for name in self.needed - self._settled:
            value = getattr(quote, name)
            if value is None:
                continue
            if value > 0:
                self.values[name] = value
                self.sources[name] = provider
                self._settled.add(name)
            elif name not in self.values:
                self.values[name] = 0.0
                self.sources[name] = provider

    @property
    def complete(self) -> bool:
        return self._settled >= self.needed

    def snapshot(self, address: str, walk_finished: bool) -> MarketSnapshot | None:
        if not self.values:
            return None
        unreported = []
        # only a walk that asked every provider may claim a field is unreported
        if walk_finished:
            unreported = [n for n in MARKET_FIELDS if n in self.needed and n not in self.values]
        return MarketSnapshot(
            address=address, sources=dict(self.sources), unreported=unreported, **self.values
        )


_STATS_FIELDS = {"market_cap", "volume_24h"}


def _needed_fields(cached: MarketSnapshot | None) -> set[str]:
    """Fields to fetch again: those whose cache part expired or was never written."""
    if cached is None:
        return set(MARKET_FIELDS)
    unreported = set(cached.unreported)
    needed = set()
    if cached.price is None and "price" not in unreported:
        needed.add("price")
    if cached.market_cap is None and cached.volume_24h is None and not unreported & _STATS_FIELDS:
        needed.update(_STATS_FIELDS)
    return needed


def _combine(cached: MarketSnapshot | None, fresh: MarketSnapshot) -> MarketSnapshot:
    if cached is None:
        return fresh
    update: dict[str, Any] = {"sources": {**cached.sources, **fresh.sources}}
    for name in MARKET_FIELDS:
        if getattr(fresh, name) is not None:
            update[name] = getattr(fresh, name)
    update["captured_at"] = min(cached.captured_at, fresh.captured_at)
    update["unreported"] = [
        name
        for name in MARKET_FIELDS
        if update.get(name, getattr(cached, name)) is None
        and (name in cached.unreported or name in fresh.unreported)
    ]
    return cached.model_copy(update=update)


class TokenResolver:
    def __init__(
        self,
        hierarchy: CacheHierarchy,
        identity_chain: ProviderChain,
        market_chain: ProviderChain,
        validator: TokenValidator,
        failures: FailureTracker | None = None,
        image_chain: ProviderChain | None = None,
        creation_chain: ProviderChain | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.hierarchy = hierarchy
        self.identity_chain = identity_chain
        self.market_chain = market_chain
        self.image_chain = image_chain
        self.creation_chain = creation_chain
        self.validator = validator
        self.failures = failures or FailureTracker()
        self._clock = clock
        self._flights = SingleFlight()

    def _deadline_at(self, deadline: float | None) -> float | None:
        return None if deadline is None else self._clock() + deadline

    async def _coalesced(
        self, key: str, fn: Callable[[FlightDeadline], Awaitable[Any]], deadline_at: float | None
    ) -> Any:
        timeout = None if deadline_at is None else max(0.0, deadline_at - self._clock())
        return await self._flights.do(key, fn, timeout=timeout, deadline_at=deadline_at)

    # identity

    async def resolve_identity(self, address: str, deadline: float | None = None) -> IdentityResult:
        """Resolve symbol, name and icon for ``address``.

        ``deadline`` is how many seconds the caller is willing to wait; once
        it passes the degraded value is returned.
        """
        address = validate_address(address)
        try:
            return await self._resolve_identity(address, self._deadline_at(deadline))
        except asyncio.TimeoutError:
            logger.info("identity_deadline_exceeded", address=address)
        except Exception:
            logger.exception("identity_resolution_failed", address=address)
        return IdentityResult.fallback(address)

    async def _resolve_identity(self, address: str, deadline_at: float | None) -> IdentityResult:
        if self.failures.is_failed(identity_key(address)):
            logger.debug("identity_negative_mark_hit", address=address)
            return IdentityResult.fallback(address)

        record = await self._find_identity(address)
        if record is not None and not self.validator.accept(record.symbol, record.name, address):
            logger.warning("stored_identity_rejected", address=address, symbol=record.symbol)
            record = None
        if record is not None:
            image_url = record.image_url or await self.hierarchy.get_image_url(address)
            return IdentityResult.from_record(record, image_url)

        return await self._coalesced(
            identity_key(address), lambda deadline: self._identity_flight(address, deadline), deadline_at
        )

    async def _find_identity(self, address: str) -> IdentityRecord | None:
        try:
            return await self.hierarchy.get_identity(address)
        except DurableStoreUnavailable as exc:
            logger.warning("durable_store_unavailable", operation="find", address=address, error=str(exc))
            return None

    def _select_identity(self, address: str) -> Callable[[IdentityCandidate], IdentityCandidate | None]:
        def select(candidate: IdentityCandidate) -> IdentityCandidate | None:
            normalized = self.validator.normalize_candidate(candidate, address)
            if self.validator.accept_candidate(normalized, address):
                return normalized
            return None

        return select

    async def _identity_flight(self, address: str, deadline_at: FlightDeadline) -> IdentityResult:
        result = await self.identity_chain.resolve(address, self._select_identity(address), deadline_at)
        if not result.resolved:
            if result.explicitly_rejected and not result.deadline_exceeded:
                self.failures.mark_failed(identity_key(address))
                logger.info("identity_marked_failed", address=address)
            return IdentityResult.fallback(address)

        candidate: IdentityCandidate = result.value
        record = IdentityRecord(
            address=address,
            symbol=candidate.symbol,
            name=candidate.name,
            image_url=candidate.image_url,
            source=result.provider,
        )
        try:
            await self.hierarchy.set_identity(record)
        except DurableStoreUnavailable as exc:
            logger.warning("durable_store_unavailable", operation="upsert", address=address, error=str(exc))
        if candidate.image_url:
            await self.hierarchy.set_image_url(address, candidate.image_url)
        self.failures.clear(identity_key(address))
        logger.info("identity_resolved", address=address, symbol=record.symbol, source=record.source)
        return IdentityResult.from_record(record)

    # market data

    async def resolve_market_data(self, address: str, deadline: float | None = None) -> MarketData:
        address = validate_address(address)
        try:
            return await self._resolve_market(address, self._deadline_at(deadline))
        except asyncio.TimeoutError:
            logger.info("market_deadline_exceeded", address=address)
        except Exception:
            logger.exception("market_resolution_failed", address=address)
        return MarketData.fallback(address)

    async def _resolve_market(self, address: str, deadline_at: float | None) -> MarketData:
        if self.failures.is_failed(market_key(address)):
            return MarketData.fallback(address)

        cached = await self.hierarchy.get_market(address)
        needed = _needed_fields(cached)
        if not needed:
            return MarketData.from_snapshot(cached)

        try:
            return await self._coalesced(
                market_key(address),
                lambda deadline: self._market_flight(address, cached, needed, deadline),
                deadline_at,
            )
        except asyncio.TimeoutError:
            if cached is None:
                raise
            return MarketData.from_snapshot(cached)

    async def _market_flight(
        self,
        address: str,
        cached: MarketSnapshot | None,
        needed: set[str],
        deadline_at: FlightDeadline,
    ) -> MarketData:
        merge = _FieldMerge(needed)
        walk = self.market_chain.walk(address, deadline_at)
        async for provider, quote in walk:
            bad = merge.invalid_fields(quote)
            if bad:
                walk.reject(provider, f"invalid values for {', '.join(bad)}")
                continue
            merge.offer(provider, quote)
            if merge.complete:
                break

        fresh = merge.snapshot(address, walk_finished=not walk.deadline_exceeded)
        if fresh is not None:
            await self.hierarchy.set_market(fresh)
            self.failures.clear(market_key(address))
            return MarketData.from_snapshot(_combine(cached, fresh))

        if cached is not None:
            return MarketData.from_snapshot(cached)
        result = walk.result()
        if result.explicitly_rejected and not result.deadline_exceeded:
            self.failures.mark_failed(market_key(address))
            logger.info("market_marked_failed", address=address)
        return MarketData.fallback(address)

    # icon URL

    async def resolve_image_url(self, address: str, deadline: float | None = None) -> Optional[str]:
        address = validate_address(address)
        try:
            return await self._resolve_image_url(address, self._deadline_at(deadline))
        except asyncio.TimeoutError:
            logger.info("image_deadline_exceeded", address=address)
        except Exception:
            logger.exception("image_resolution_failed", address=address)
        return None

    async def _resolve_image_url(self, address: str, deadline_at: float | None) -> Optional[str]:
        cached = await self.hierarchy.get_image_url(address)
        if cached:
            return cached
        record = await self._find_identity(address)
        if record is not None and record.image_url:
            return record.image_url
        if self.image_chain is None:
            return None
        return await self._coalesced(
            f"image:{address}", lambda deadline: self._image_flight(address, deadline), deadline_at
        )

    async def _image_flight(self, address: str, deadline_at: FlightDeadline) -> Optional[str]:
        def select(raw: Any) -> str | None:
            url = normalize(raw)
            return url if url.startswith(("https://", "http://", "ipfs://")) else None

        result = await self.image_chain.resolve(address, select, deadline_at)
        if not result.resolved:
            return None
        await self.hierarchy.set_image_url(address, result.value)
        return result.value

    # creation time

    async def resolve_creation_time(
        self, address: str, deadline: float | None = None
    ) -> Optional[datetime.datetime]:
        address = validate_address(address)
        try:
            return await self._resolve_creation_time(address, self._deadline_at(deadline))
        except asyncio.TimeoutError:
            logger.info("creation_deadline_exceeded", address=address)
        except Exception:
            logger.exception("creation_resolution_failed", address=address)
        return None

    async def _resolve_creation_time(
        self, address: str, deadline_at: float | None
    ) -> Optional[datetime.datetime]:
        created_at, hit = await self.hierarchy.get_creation_time(address)
        if hit:
            return created_at
        if self.creation_chain is None:
            return None
        return await self._coalesced(
            f"creation:{address}", lambda deadline: self._creation_flight(address, deadline), deadline_at
        )

    async def _creation_flight(
        self, address: str, deadline_at: FlightDeadline
    ) -> Optional[datetime.datetime]:
        def select(raw: Any) -> datetime.datetime | None:
            if not isinstance(raw, datetime.datetime):
                return None
            if raw.tzinfo is None:
                raw = raw.replace(tzinfo=datetime.UTC)
            if raw > utcnow() + _CREATION_CLOCK_SKEW:
                return None
            return raw

        result = await self.creation_chain.resolve(address, select, deadline_at)
        if result.resolved:
            await self.hierarchy.set_creation_time(address, result.value)
            return result.value
        if result.all_not_found:
            # remember the absence so tokens without a known creation time stay cheap
            await self.hierarchy.set_creation_time(address, None)
        return None
