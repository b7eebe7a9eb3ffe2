"""
L1: bounded in-process cache.

Entries carry their own expiry. Reads ignore expired entries but leave them
in place; a background task owned by the instance removes them on a fixed
interval. All access happens on the event loop thread, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class MemoryCache:
    def __init__(
        self,
        max_entries: int = 10_000,
        sweep_interval_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._sweep_interval_s = sweep_interval_s
        self._clock = clock
        self._store: Dict[str, tuple[Any, float]] = {}
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> tuple[Any, bool]:
        entry = self._store.get(key)
        if entry is None:
            return None, False
        value, expires_at = entry
        if expires_at <= self._clock():
            return None, False
        return value, True

    def set(self, key: str, value: Any, ttl_s: float) -> None:
        if key not in self._store and len(self._store) >= self._max_entries:
            self._evict()
        self._store[key] = (value, self._clock() + ttl_s)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._store.items() if expires_at <= now]
        for key in expired:
            del self._store[key]
        return len(expired)

    def _evict(self) -> None:
        if self.sweep():
            return
        soonest = min(self._store, key=lambda k: self._store[k][1])
        del self._store[soonest]

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_s)
            removed = self.sweep()
            if removed:
                logger.debug("memory_cache_swept", removed=removed, size=len(self._store))

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._sweep_loop(), name="l1-sweep")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
