"""
Retry policy for provider calls.

Rate limits back off exponentially with jitter, transport failures back off
linearly, and definitive answers (not-found, explicit-invalid) are never
retried. Retries are per provider; the chain moves on once they run out.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from token_resolver.providers.base import ErrorKind


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    jitter: float = 0.25
    rate_limit_retries: int = 2
    transient_retries: int = 2
    rand: Callable[[float, float], float] = field(default=random.uniform, repr=False, compare=False)

    @classmethod
    def from_settings(cls, retry_settings) -> RetryPolicy:
        return cls(
            base_delay_s=retry_settings.base_delay_seconds,
            max_delay_s=retry_settings.max_delay_seconds,
            jitter=retry_settings.jitter,
            rate_limit_retries=retry_settings.rate_limit_retries,
            transient_retries=retry_settings.transient_retries,
        )

    def max_retries(self, kind: ErrorKind) -> int:
        if kind is ErrorKind.RATE_LIMITED:
            return self.rate_limit_retries
        if kind is ErrorKind.TRANSIENT:
            return self.transient_retries
        return 0

    def delay(self, kind: ErrorKind, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if kind is ErrorKind.RATE_LIMITED:
            raw = min(self.base_delay_s * (2 ** attempt), self.max_delay_s)
            spread = raw * self.jitter
            return max(0.0, raw + self.rand(-spread, spread))
        return min(self.base_delay_s * attempt, self.max_delay_s)
