"""
Provider chains: ordered fallback over one capability.

A chain tries providers strictly in configured order. Each provider gets its
own retry budget (see resilience.RetryPolicy); once that is spent the walk
moves on instead of failing globally. Every attempt is recorded so the caller
can tell an explicit rejection apart from a transport-level miss.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar, Union

import structlog

from token_resolver.providers.base import ErrorKind, ProviderError
from token_resolver.providers.resilience import RetryPolicy

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_MISSING = object()

# a fixed monotonic deadline, or a callable returning the current one
Deadline = Union[float, Callable[[], Optional[float]], None]


@dataclass
class Attempt:
    provider: str
    kind: Optional[ErrorKind]
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


@dataclass
class ChainResult(Generic[T]):
    value: Optional[T] = None
    provider: Optional[str] = None
    attempts: list[Attempt] = field(default_factory=list)
    deadline_exceeded: bool = False

    @property
    def resolved(self) -> bool:
        return self.provider is not None

    @property
    def explicitly_rejected(self) -> bool:
        return any(a.kind is ErrorKind.EXPLICIT_INVALID for a in self.attempts)

    @property
    def all_not_found(self) -> bool:
        """True when every provider answered, and every answer was "no record"."""
        if not self.attempts or self.deadline_exceeded:
            return False
        return all(a.kind is ErrorKind.NOT_FOUND for a in self.attempts)


class ChainWalk:
    """Async iterator over successful provider responses, in chain order."""

    def __init__(self, chain: ProviderChain, address: str, deadline_at: Deadline) -> None:
        self._chain = chain
        self._address = address
        self._deadline_at = deadline_at
        self._index = 0
        self.attempts: list[Attempt] = []
        self.deadline_exceeded = False

    def __aiter__(self) -> ChainWalk:
        return self

    async def __anext__(self) -> tuple[str, Any]:
        providers = self._chain.providers
        while self._index < len(providers):
            provider = providers[self._index]
            self._index += 1
            value = await self._call(provider)
            if value is not _MISSING:
                return provider.name, value
        raise StopAsyncIteration

    def reject(self, provider: str, reason: str) -> None:
        """Record that ``provider`` answered with data the caller refused."""
        if self.attempts and self.attempts[-1].provider == provider and self.attempts[-1].ok:
            self.attempts.pop()
        self.attempts.append(Attempt(provider, ErrorKind.EXPLICIT_INVALID, reason))
        logger.info(
            "provider_answer_rejected",
            chain=self._chain.capability,
            provider=provider,
            address=self._address,
            reason=reason,
        )

    def result(self, value: Any = None, provider: str | None = None) -> ChainResult:
        return ChainResult(
            value=value,
            provider=provider,
            attempts=list(self.attempts),
            deadline_exceeded=self.deadline_exceeded,
        )

    def _remaining(self) -> float | None:
        deadline_at = self._deadline_at() if callable(self._deadline_at) else self._deadline_at
        if deadline_at is None:
            return None
        return deadline_at - self._chain.clock()

    def _stop_on_deadline(self) -> None:
        self.deadline_exceeded = True
        self._index = len(self._chain.providers)
        logger.info("chain_deadline_exceeded", chain=self._chain.capability, address=self._address)

    async def _call(self, provider: Any) -> Any:
        fetch: Callable[[str, float], Awaitable[Any]] = getattr(provider, self._chain.capability)
        policy = self._chain.retry_policy
        retries = 0
        while True:
            remaining = self._remaining()
            if remaining is not None and remaining <= 0:
                self._stop_on_deadline()
                return _MISSING
            timeout = self._chain.timeout if remaining is None else min(self._chain.timeout, remaining)

            try:
                value = await asyncio.wait_for(fetch(self._address, timeout), timeout)
            except ProviderError as exc:
                kind, detail = exc.kind, exc.message
            except asyncio.TimeoutError:
                kind, detail = ErrorKind.TRANSIENT, f"no answer within {timeout:.2f}s"
            except Exception as exc:
                logger.exception("provider_unexpected_error", provider=provider.name)
                kind, detail = ErrorKind.TRANSIENT, f"{type(exc).__name__}: {exc}"
            else:
                self.attempts.append(Attempt(provider.name, None, "ok"))
                return value

            self.attempts.append(Attempt(provider.name, kind, detail))
            logger.info(
                "provider_attempt_failed",
                chain=self._chain.capability,
                provider=provider.name,
                address=self._address,
                kind=kind.value,
                detail=detail,
                retry=retries,
            )
            if retries >= policy.max_retries(kind):
                return _MISSING
            retries += 1
            delay = policy.delay(kind, retries)
            remaining = self._remaining()
            if remaining is not None and delay >= remaining:
                self._stop_on_deadline()
                return _MISSING
            await self._chain.sleep(delay)


class ProviderChain:
    def __init__(
        self,
        capability: str,
        providers: Sequence[Any],
        retry_policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capability = capability
        self.providers = list(providers)
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    def walk(self, address: str, deadline_at: Deadline = None) -> ChainWalk:
        return ChainWalk(self, address, deadline_at)

    async def resolve(
        self,
        address: str,
        select: Callable[[Any], Any],
        deadline_at: Deadline = None,
    ) -> ChainResult:
        """Return the first answer ``select`` accepts.

        ``select`` maps a raw provider answer to the value to keep, or None to
        reject it; rejections are recorded as explicit-invalid.
        """
        walk = self.walk(address, deadline_at)
        async for provider_name, raw in walk:
            selected = select(raw)
            if selected is not None:
                return walk.result(selected, provider_name)
            walk.reject(provider_name, f"rejected answer {raw!r}"[:200])
        logger.info(
            "chain_exhausted",
            chain=self.capability,
            address=address,
            attempts=[(a.provider, a.kind.value if a.kind else "ok") for a in walk.attempts],
        )
        return walk.result()
