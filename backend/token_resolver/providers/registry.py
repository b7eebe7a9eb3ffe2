"""
Provider registry: name -> adapter instance, and chain construction from the
configured order lists. Order is data; adding a provider means registering
it here and naming it in settings.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import structlog

from token_resolver.providers.base import CAPABILITIES
from token_resolver.providers.birdeye import BirdeyeProvider
from token_resolver.providers.chain import ProviderChain
from token_resolver.providers.dexscreener import DexScreenerProvider
from token_resolver.providers.jupiter import JupiterProvider
from token_resolver.providers.resilience import RetryPolicy
from token_resolver.providers.solana_rpc import SolanaRpcProvider

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """
    Usage:
        registry = ProviderRegistry()
        registry.register(DexScreenerProvider(client))
        chain = registry.build_chain("fetch_market", ["dexscreener", "jupiter"])
    """

    def __init__(self) -> None:
        self._providers: Dict[str, Any] = {}
        self._unavailable: set[str] = set()

    def register(self, provider: Any) -> None:
        self._providers[provider.name] = provider
        logger.debug("provider_registered", provider=provider.name)

    def mark_unavailable(self, name: str, reason: str) -> None:
        """Known provider that cannot run in this deployment (e.g. missing key)."""
        self._unavailable.add(name)
        logger.warning("provider_unavailable", provider=name, reason=reason)

    def get(self, name: str) -> Any:
        provider = self._providers.get(name)
        if provider is None:
            raise KeyError(f"Unknown provider '{name}'. Available: {self.names}")
        return provider

    @property
    def names(self) -> List[str]:
        return list(self._providers)

    def build_chain(
        self,
        capability: str,
        order: List[str],
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
    ) -> ProviderChain:
        protocol = CAPABILITIES[capability]
        providers = []
        for name in order:
            if name in self._unavailable:
                continue
            provider = self.get(name)
            if not isinstance(provider, protocol):
                logger.warning("provider_lacks_capability", provider=name, capability=capability)
                continue
            providers.append(provider)
        return ProviderChain(capability, providers, retry_policy=retry_policy, timeout=timeout)


def create_default_registry(client: httpx.AsyncClient, provider_settings) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(SolanaRpcProvider(client, provider_settings.solana_rpc_url))
    registry.register(DexScreenerProvider(client, provider_settings.dexscreener_base_url))
    registry.register(
        JupiterProvider(
            client,
            token_url=provider_settings.jupiter_token_url,
            price_url=provider_settings.jupiter_price_url,
        )
    )
    if provider_settings.birdeye_api_key:
        registry.register(
            BirdeyeProvider(
                client,
                provider_settings.birdeye_api_key,
                base_url=provider_settings.birdeye_base_url,
                chain=provider_settings.birdeye_chain,
            )
        )
    else:
        registry.mark_unavailable("birdeye", "missing api key")
    return registry
