from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class FailureTracker:
    """Short-lived negative cache for explicit rejections.

    In-process only: a restarted process retries everything once, since
    upstream indexing may have caught up in the meantime. Expired marks are
    dropped by an owned sweep task, like the L1 cache.
    """

    def __init__(
        self,
        ttl_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_s: float = 30.0,
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._sweep_interval_s = sweep_interval_s
        self._marks: Dict[str, float] = {}
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._marks)

    def mark_failed(self, key: str) -> None:
        self._marks[key] = self._clock() + self._ttl_s

    def is_failed(self, key: str) -> bool:
        expires_at = self._marks.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._marks[key]
            return False
        return True

    def clear(self, key: str) -> None:
        self._marks.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, expires_at in self._marks.items() if expires_at <= now]
        for key in expired:
            del self._marks[key]
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_s)
            removed = self.sweep()
            if removed:
                logger.debug("negative_marks_swept", removed=removed, size=len(self._marks))

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._sweep_loop(), name="negative-mark-sweep")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
