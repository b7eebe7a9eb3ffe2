from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional


class FlightDeadline:
    """Deadline shared by everyone waiting on one flight.

    It only moves later: a joiner with a later deadline extends it, and a
    joiner without one lifts it entirely.
    """

    def __init__(self, at: Optional[float]) -> None:
        self.at = at

    def extend(self, at: Optional[float]) -> None:
        if self.at is None:
            return
        if at is None or at > self.at:
            self.at = at

    def __call__(self) -> Optional[float]:
        return self.at


class SingleFlight:
    """Coalesce concurrent calls for the same key into one task.

    The first caller starts the task; later callers for the same key await
    the same task until it finishes. The key is released when the task
    completes, so the next call after that starts fresh. Waiters use
    ``asyncio.shield`` so one caller timing out does not cancel the work
    others are waiting on.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, tuple[asyncio.Task, FlightDeadline]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._tasks

    def _start(
        self,
        key: str,
        fn: Callable[[FlightDeadline], Awaitable[Any]],
        deadline_at: Optional[float],
    ) -> asyncio.Task:
        entry = self._tasks.get(key)
        if entry is not None:
            task, deadline = entry
            deadline.extend(deadline_at)
            return task
        deadline = FlightDeadline(deadline_at)
        task = asyncio.ensure_future(fn(deadline))
        self._tasks[key] = (task, deadline)
        task.add_done_callback(lambda t, key=key: self._release(key, t))
        return task

    def _release(self, key: str, task: asyncio.Task) -> None:
        entry = self._tasks.get(key)
        if entry is not None and entry[0] is task:
            del self._tasks[key]

    async def do(
        self,
        key: str,
        fn: Callable[[FlightDeadline], Awaitable[Any]],
        timeout: float | None = None,
        deadline_at: float | None = None,
    ) -> Any:
        """Run ``fn`` once per key; raise asyncio.TimeoutError if ``timeout`` passes first.

        ``fn`` receives the flight's shared deadline, which ``deadline_at``
        from each caller may extend.
        """
        task = self._start(key, fn, deadline_at)
        if timeout is None:
            return await asyncio.shield(task)
        return await asyncio.wait_for(asyncio.shield(task), timeout)
