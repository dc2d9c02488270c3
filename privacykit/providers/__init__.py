"""
Providers — Capability Contract & Registry
============================================

Depends on: core, telemetry
Depended on by: runtime, kit
"""

from privacykit.providers.base import PrivacyProvider, supports_level, supports_token
from privacykit.providers.memory import InMemoryProvider, default_development_providers
from privacykit.providers.registry import ProviderRegistry

__all__ = [
    "InMemoryProvider",
    "PrivacyProvider",
    "ProviderRegistry",
    "default_development_providers",
    "supports_level",
    "supports_token",
]
