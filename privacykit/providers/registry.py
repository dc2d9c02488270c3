"""
Provider Registry
==================

Keyed, insertion-ordered store of registered providers. Mutated only by
registration calls; the routing and pipeline engines read snapshots.
"""

from __future__ import annotations

from privacykit.core.exceptions import ProviderNotFoundError
from privacykit.infra.telemetry import get_logger
from privacykit.providers.base import PrivacyProvider

logger = get_logger(__name__)

class ProviderRegistry:
    """
    Provider id → provider mapping.

    Re-registering an id replaces the provider wholesale but keeps the
    slot it was first registered in, so tie-breaking order is stable.
    """

    def __init__(self, providers: list[PrivacyProvider] | None = None) -> None:
        self._providers: dict[str, PrivacyProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: PrivacyProvider) -> None:
        """Idempotent upsert keyed by ``provider.provider_id``."""
        if not isinstance(provider, PrivacyProvider):
            raise TypeError(
                f"{type(provider).__name__} does not satisfy the PrivacyProvider protocol"
            )
        replaced = provider.provider_id in self._providers
        self._providers[provider.provider_id] = provider
        logger.debug(
            "provider_registered",
            provider=provider.provider_id,
            provider_name=provider.name,
            replaced=replaced,
        )

    def unregister(self, provider_id: str) -> PrivacyProvider | None:
        return self._providers.pop(provider_id, None)

    def get(self, provider_id: str) -> PrivacyProvider | None:
        return self._providers.get(provider_id)

    def require(self, provider_id: str) -> PrivacyProvider:
        """Return the provider or raise ``ProviderNotFoundError``."""
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def providers(self) -> tuple[PrivacyProvider, ...]:
        """Ordered snapshot of registered providers."""
        return tuple(self._providers.values())

    def ids(self) -> tuple[str, ...]:
        return tuple(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)
