"""
Provider chain behaviour:
- strict ordering, first accepted answer wins
- per-provider retries by error kind, then fall through
- deadlines stop the walk where it is
"""

import asyncio

from fakes import (
    ADDRESS_X,
    RecordingSleep,
    ScriptedProvider,
    candidate,
    make_chain,
    not_found,
    rate_limited,
    timeout_error,
)
from token_resolver.providers.base import ErrorKind
from token_resolver.providers.resilience import RetryPolicy
from token_resolver.singleflight import FlightDeadline


def _accept_real_symbols(value):
    return value if value.symbol not in ("Unknown", None) else None


def test_first_accepted_answer_wins_in_order() -> None:
    a = ScriptedProvider("A", identity=[timeout_error("A")])
    b = ScriptedProvider("B", identity=[candidate("Unknown")])
    c = ScriptedProvider("C", identity=[candidate("DOGE", "Dogecoin")])
    d = ScriptedProvider("D", identity=[candidate("NOPE")])
    chain = make_chain("fetch_identity", [a, b, c, d])

    result = asyncio.run(chain.resolve(ADDRESS_X, _accept_real_symbols))

    assert result.provider == "C"
    assert result.value.symbol == "DOGE"
    assert result.explicitly_rejected is True
    assert d.total_calls == 0
    kinds = [(attempt.provider, attempt.kind) for attempt in result.attempts]
    assert ("B", ErrorKind.EXPLICIT_INVALID) in kinds
    assert ("A", ErrorKind.TRANSIENT) in kinds


def test_transient_errors_retry_with_linear_backoff() -> None:
    sleep = RecordingSleep()
    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=10.0, jitter=0.0, transient_retries=2)
    a = ScriptedProvider("A", identity=[timeout_error("A")])
    b = ScriptedProvider("B", identity=[candidate("DOGE")])
    chain = make_chain("fetch_identity", [a, b], policy=policy, sleep=sleep)

    result = asyncio.run(chain.resolve(ADDRESS_X, _accept_real_symbols))

    assert result.provider == "B"
    assert a.calls["identity"] == 3
    assert sleep.delays == [1.0, 2.0]
    assert result.explicitly_rejected is False


def test_rate_limit_backs_off_exponentially_then_moves_on() -> None:
    sleep = RecordingSleep()
    policy = RetryPolicy(base_delay_s=0.5, max_delay_s=1.5, jitter=0.0, rate_limit_retries=3)
    a = ScriptedProvider("A", identity=[rate_limited("A")])
    b = ScriptedProvider("B", identity=[candidate("DOGE")])
    chain = make_chain("fetch_identity", [a, b], policy=policy, sleep=sleep)

    result = asyncio.run(chain.resolve(ADDRESS_X, _accept_real_symbols))

    assert result.provider == "B"
    assert a.calls["identity"] == 4
    # 0.5 * 2^1, 0.5 * 2^2, then capped
    assert sleep.delays == [1.0, 1.5, 1.5]


def test_jitter_stays_within_bounds() -> None:
    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=100.0, jitter=0.25)
    for attempt in range(1, 5):
        raw = 2 ** attempt
        delay = policy.delay(ErrorKind.RATE_LIMITED, attempt)
        assert raw * 0.75 <= delay <= raw * 1.25


def test_not_found_is_not_retried() -> None:
    sleep = RecordingSleep()
    a = ScriptedProvider("A", identity=[not_found("A")])
    b = ScriptedProvider("B", identity=[not_found("B")])
    chain = make_chain("fetch_identity", [a, b], sleep=sleep)

    result = asyncio.run(chain.resolve(ADDRESS_X, _accept_real_symbols))

    assert result.resolved is False
    assert a.calls["identity"] == 1
    assert b.calls["identity"] == 1
    assert sleep.delays == []
    assert result.all_not_found is True
    assert result.explicitly_rejected is False


def test_slow_provider_counts_as_transient() -> None:
    slow = ScriptedProvider("slow", identity=[candidate("LATE")], delay=0.5)
    fast = ScriptedProvider("fast", identity=[candidate("DOGE")])
    policy = RetryPolicy(base_delay_s=0.0, jitter=0.0, transient_retries=0)
    chain = make_chain("fetch_identity", [slow, fast], policy=policy, timeout=0.05)

    result = asyncio.run(chain.resolve(ADDRESS_X, _accept_real_symbols))

    assert result.provider == "fast"
    assert result.attempts[0].kind is ErrorKind.TRANSIENT


def test_expired_deadline_stops_walk_before_calling_providers() -> None:
    a = ScriptedProvider("A", identity=[candidate("DOGE")])
    chain = make_chain("fetch_identity", [a])

    async def run():
        loop_now = chain.clock()
        return await chain.resolve(ADDRESS_X, _accept_real_symbols, deadline_at=loop_now - 1)

    result = asyncio.run(run())

    assert result.resolved is False
    assert result.deadline_exceeded is True
    assert a.total_calls == 0


def test_walk_yields_each_answer_until_caller_stops() -> None:
    a = ScriptedProvider("A", market=[{"price": 1}])
    b = ScriptedProvider("B", market=[{"price": 2}])
    c = ScriptedProvider("C", market=[{"price": 3}])
    chain = make_chain("fetch_market", [a, b, c])

    async def run():
        seen = []
        walk = chain.walk(ADDRESS_X)
        async for provider, value in walk:
            seen.append(provider)
            if provider == "B":
                break
        return seen

    assert asyncio.run(run()) == ["A", "B"]
    assert c.total_calls == 0


def test_walk_reads_an_extended_shared_deadline() -> None:
    a = ScriptedProvider("A", identity=[candidate("DOGE")])
    chain = make_chain("fetch_identity", [a])

    async def run():
        deadline = FlightDeadline(chain.clock() - 1)
        deadline.extend(chain.clock() - 2)
        assert deadline() is not None
        # a later caller without a deadline lifts it
        deadline.extend(None)
        return await chain.resolve(ADDRESS_X, _accept_real_symbols, deadline_at=deadline)

    result = asyncio.run(run())

    assert result.provider == "A"
    assert result.deadline_exceeded is False
