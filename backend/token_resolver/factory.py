from __future__ import annotations

import contextlib
from typing import AsyncIterator

import httpx

from token_resolver.cache.failures import FailureTracker
from token_resolver.cache.hierarchy import CacheHierarchy
from token_resolver.cache.memory import MemoryCache
from token_resolver.cache.shared import SharedCache, create_client
from token_resolver.config.settings import Settings, settings as default_settings
from token_resolver.db.session import create_engine, create_session_factory
from token_resolver.db.store import IdentityStore
from token_resolver.jobs.maintenance import MaintenanceRunner
from token_resolver.providers.registry import create_default_registry
from token_resolver.providers.resilience import RetryPolicy
from token_resolver.resolver import TokenResolver
from token_resolver.utils.logging import setup_logging
from token_resolver.validation.validator import TokenValidator

_USER_AGENT = "token-resolver/0.1"


def build_validator(app_settings: Settings) -> TokenValidator:
    return TokenValidator(app_settings.validator.known_suffixes)


@contextlib.asynccontextmanager
async def build_store(app_settings: Settings | None = None) -> AsyncIterator[tuple[IdentityStore, TokenValidator]]:
    app_settings = app_settings or default_settings
    engine = create_engine(app_settings.database_url)
    try:
        yield IdentityStore(create_session_factory(engine)), build_validator(app_settings)
    finally:
        await engine.dispose()


@contextlib.asynccontextmanager
async def build_resolver(
    app_settings: Settings | None = None, background: bool = True
) -> AsyncIterator[TokenResolver]:
    """Wire a TokenResolver from settings and own its resources.

    With ``background`` the L1 sweep and the maintenance runner run for the
    lifetime of the context.
    """
    app_settings = app_settings or default_settings
    setup_logging(app_settings)

    provider_settings = app_settings.providers
    cache_settings = app_settings.cache
    client = httpx.AsyncClient(headers={"user-agent": _USER_AGENT}, follow_redirects=True)
    engine = create_engine(app_settings.database_url)
    shared = SharedCache(create_client(app_settings.redis_url))
    store = IdentityStore(create_session_factory(engine))
    hierarchy = CacheHierarchy(
        MemoryCache(cache_settings.memory_max_entries, cache_settings.memory_sweep_interval_seconds),
        shared,
        store,
        cache_settings,
    )
    failures = FailureTracker(
        cache_settings.negative_mark_ttl_seconds,
        sweep_interval_s=cache_settings.memory_sweep_interval_seconds,
    )
    validator = build_validator(app_settings)

    registry = create_default_registry(client, provider_settings)
    policy = RetryPolicy.from_settings(app_settings.retry)
    timeout = provider_settings.request_timeout_seconds

    resolver = TokenResolver(
        hierarchy,
        identity_chain=registry.build_chain("fetch_identity", provider_settings.identity_chain, policy, timeout),
        market_chain=registry.build_chain("fetch_market", provider_settings.market_chain, policy, timeout),
        validator=validator,
        failures=failures,
        image_chain=registry.build_chain("fetch_image_url", provider_settings.image_chain, policy, timeout),
        creation_chain=registry.build_chain(
            "fetch_creation_time", provider_settings.creation_chain, policy, timeout
        ),
    )
    runner = MaintenanceRunner(
        store, validator, failures, app_settings.maintenance.purge_interval_seconds
    )

    if background:
        hierarchy.start()
        failures.start()
        runner.start()
    try:
        yield resolver
    finally:
        await runner.stop()
        await failures.stop()
        await hierarchy.stop()
        await client.aclose()
        await shared.close()
        await engine.dispose()
