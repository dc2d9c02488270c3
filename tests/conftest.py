"""Shared fixtures: scripted providers, isolated metrics, ready registries."""

from collections.abc import Iterable
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from privacykit.core.config import Settings
from privacykit.core.types import (
    CostEstimate,
    DepositResult,
    PrivacyLevel,
    ProveResult,
    TransferResult,
    WithdrawResult,
)
from privacykit.infra.runtime.router import ProviderProfile, RoutingPolicy
from privacykit.infra.telemetry.metrics import MetricsCollector
from privacykit.providers.base import declared_support
from privacykit.providers.memory import default_development_providers
from privacykit.providers.registry import ProviderRegistry


class StubProvider:
    """Scripted provider: fixed estimate, canned results, every request recorded."""

    def __init__(
        self,
        provider_id: str,
        *,
        levels: Iterable[PrivacyLevel] = (PrivacyLevel.AMOUNT_HIDDEN,),
        tokens: Iterable[str] = ("SOL",),
        has_compliance: bool = False,
        has_onchain_verification: bool = False,
        fee: float = 0.01,
        latency_ms: float = 1000.0,
        anonymity_set: int | None = None,
        warnings: Iterable[str] = (),
        commitment: str | None = "abc",
        ready: bool = True,
        forbid_operations: bool = False,
        estimate_error: Exception | None = None,
        fail_with: Exception | None = None,
        balance: float = 0.0,
        balance_error: Exception | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.name = provider_id.title()
        self.supported_levels = frozenset(levels)
        self.supported_tokens = frozenset(t.upper() for t in tokens)
        self.has_compliance = has_compliance
        self.has_onchain_verification = has_onchain_verification
        self.fee = fee
        self.latency_ms = latency_ms
        self.anonymity_set = anonymity_set
        self.warnings = list(warnings)
        self.commitment = commitment
        self.forbid_operations = forbid_operations
        self.estimate_error = estimate_error
        self.fail_with = fail_with
        self.balance = balance
        self.balance_error = balance_error
        self._ready = ready
        self.estimate_calls = 0
        self.requests: list[tuple[str, Any]] = []

    async def initialize(self) -> None:
        self._ready = True

    def is_ready(self) -> bool:
        return self._ready

    def supports(self, operation, token, privacy) -> bool:
        return declared_support(self, operation, token, privacy)

    async def get_balance(self, token, address=None) -> float:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def estimate(self, request) -> CostEstimate:
        self.estimate_calls += 1
        if self.estimate_error is not None:
            raise self.estimate_error
        return CostEstimate(
            fee=self.fee,
            provider_id=self.provider_id,
            latency_ms=self.latency_ms,
            anonymity_set=self.anonymity_set,
            warnings=list(self.warnings),
        )

    async def transfer(self, request) -> TransferResult:
        self._record("transfer", request)
        return TransferResult(
            signature=f"{self.provider_id}-transfer-sig",
            provider_id=self.provider_id,
            privacy_level=request.privacy,
            fee=self.fee,
        )

    async def deposit(self, request) -> DepositResult:
        self._record("deposit", request)
        return DepositResult(
            signature=f"{self.provider_id}-deposit-sig",
            provider_id=self.provider_id,
            fee=self.fee,
            commitment=self.commitment,
        )

    async def withdraw(self, request) -> WithdrawResult:
        self._record("withdraw", request)
        return WithdrawResult(
            signature=f"{self.provider_id}-withdraw-sig",
            provider_id=self.provider_id,
            fee=self.fee,
        )

    async def prove(self, request) -> ProveResult:
        self._record("prove", request)
        return ProveResult(
            proof=b"proof", public_inputs=dict(request.public_inputs), provider_id=self.provider_id
        )

    def _record(self, operation: str, request: Any) -> None:
        if self.forbid_operations:
            raise AssertionError(f"{operation} must not be called")
        self.requests.append((operation, request))
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture
def stub_provider():
    """Factory for scripted providers."""
    return StubProvider


@pytest.fixture
def metrics():
    """Metrics collector on a private registry, isolated per test."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        PROVIDER_INIT_MAX_ATTEMPTS=2,
        PROVIDER_INIT_INITIAL_DELAY_S=0.0,
        PROVIDER_INIT_MAX_DELAY_S=0.0,
    )


@pytest.fixture
def flat_policy():
    """Policy where providers ``a`` and ``b`` have identical reference profiles."""
    return RoutingPolicy(
        profiles={
            "a": ProviderProfile(avg_fee_percent=0.5, avg_latency_ms=5000),
            "b": ProviderProfile(avg_fee_percent=0.5, avg_latency_ms=5000),
        },
        concurrent_estimates=False,
    )


@pytest_asyncio.fixture
async def dev_registry():
    """Registry holding the four initialized development providers."""
    registry = ProviderRegistry()
    for provider in default_development_providers():
        await provider.initialize()
        registry.register(provider)
    return registry
