from __future__ import annotations

import asyncio
import contextlib
from typing import Iterable, Optional

import structlog

from token_resolver.cache.failures import FailureTracker
from token_resolver.db.store import DurableStoreUnavailable, IdentityStore
from token_resolver.validation.validator import TokenValidator

logger = structlog.get_logger(__name__)


async def purge_poisoned_records(store: IdentityStore, validator: TokenValidator) -> int:
    """Delete durable identity records the validator would reject today."""
    poisoned: list[str] = []
    async for record in store.iter_records():
        if validator.is_poisoned(record.symbol, record.name, record.address):
            poisoned.append(record.address)
            logger.info(
                "poisoned_record_found",
                address=record.address,
                symbol=record.symbol,
                source=record.source,
            )
    deleted = await store.delete(poisoned)
    logger.info("poisoned_records_purged", deleted=deleted)
    return deleted


async def warm_market_cache(resolver, addresses: Iterable[str], concurrency: int = 8) -> int:
    """Resolve market data for each distinct address, at most ``concurrency`` at a time."""
    # base58 is case-sensitive: dedupe on the exact string
    unique = list(dict.fromkeys(a.strip() for a in addresses if a and a.strip()))
    semaphore = asyncio.Semaphore(concurrency)

    async def _warm(address: str) -> bool:
        async with semaphore:
            try:
                data = await resolver.resolve_market_data(address)
            except ValueError:
                logger.warning("warmup_skipped_invalid_address", address=address)
                return False
            return not data.degraded

    results = await asyncio.gather(*(_warm(address) for address in unique))
    warmed = sum(results)
    logger.info("market_cache_warmed", requested=len(unique), warmed=warmed)
    return warmed


class MaintenanceRunner:
    """Fixed-interval background maintenance, independent of request paths."""

    def __init__(
        self,
        store: IdentityStore,
        validator: TokenValidator,
        failures: FailureTracker,
        interval_s: float,
    ) -> None:
        self._store = store
        self._validator = validator
        self._failures = failures
        self._interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        self._failures.sweep()
        try:
            return await purge_poisoned_records(self._store, self._validator)
        except DurableStoreUnavailable as exc:
            logger.warning("durable_store_unavailable", operation="purge", error=str(exc))
            return 0

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            await self.run_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="token-maintenance")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


async def _purge_from_settings() -> int:
    from token_resolver.factory import build_store

    async with build_store() as (store, validator):
        return await purge_poisoned_records(store, validator)


async def _warmup_from_settings(addresses: list[str]) -> int:
    from token_resolver.config.settings import settings
    from token_resolver.factory import build_resolver

    async with build_resolver(background=False) as resolver:
        return await warm_market_cache(resolver, addresses, settings.maintenance.warmup_concurrency)


def run_purge() -> int:
    return asyncio.run(_purge_from_settings())


def run_market_warmup(addresses: list[str]) -> int:
    return asyncio.run(_warmup_from_settings(addresses))
