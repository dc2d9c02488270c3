"""
Provider Capability Protocol — Backend-Agnostic Privacy Interface
==================================================================

Defines the contract every privacy provider must satisfy. A provider
wraps one privacy-preserving transfer protocol (range proofs, MPC,
circuits, compliant pools) and is treated by the engines purely as an
implementer of this contract.

Any new provider is added by supplying a value that conforms to the
protocol and registering it; there is no base class to inherit from.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from privacykit.core.types import (
    WILDCARD_TOKEN,
    CostEstimate,
    DepositRequest,
    DepositResult,
    EstimateRequest,
    OperationType,
    PrivacyLevel,
    ProveRequest,
    ProveResult,
    TransferRequest,
    TransferResult,
    WithdrawRequest,
    WithdrawResult,
)

__all__ = [
    "PrivacyProvider",
    "declared_support",
    "supports_level",
    "supports_token",
]

@runtime_checkable
class PrivacyProvider(Protocol):
    """
    Capability contract of a privacy backend.

    Declared support sets are static for the lifetime of a registration;
    readiness is live and may only report True after ``initialize``
    completed successfully.
    """

    provider_id: str
    name: str
    supported_levels: frozenset[PrivacyLevel]
    supported_tokens: frozenset[str]
    has_compliance: bool
    has_onchain_verification: bool

    async def initialize(self) -> None:
        """Connect to the backend; must succeed before ``is_ready``."""
        ...

    def is_ready(self) -> bool:
        ...

    def supports(self, operation: str, token: str, privacy: PrivacyLevel) -> bool:
        ...

    async def get_balance(self, token: str, address: str | None = None) -> float:
        ...

    async def estimate(self, request: EstimateRequest) -> CostEstimate:
        ...

    async def transfer(self, request: TransferRequest) -> TransferResult:
        ...

    async def deposit(self, request: DepositRequest) -> DepositResult:
        ...

    async def withdraw(self, request: WithdrawRequest) -> WithdrawResult:
        ...

    async def prove(self, request: ProveRequest) -> ProveResult:
        ...

def supports_token(provider: PrivacyProvider, token: str) -> bool:
    """Case-insensitive token membership; a wildcard entry matches any token."""
    tokens = provider.supported_tokens
    return WILDCARD_TOKEN in tokens or token.upper() in tokens

def supports_level(provider: PrivacyProvider, level: PrivacyLevel) -> bool:
    return level in provider.supported_levels

def declared_support(
    provider: PrivacyProvider,
    operation: str,
    token: str,
    privacy: PrivacyLevel,
) -> bool:
    """Default ``supports`` semantics shared by provider implementations."""
    if not supports_token(provider, token):
        return False
    if not supports_level(provider, privacy):
        return False
    return operation in {op.value for op in OperationType}
