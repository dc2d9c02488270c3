"""
PrivacyKit Facade — Unit Tests
===============================

Covers initialization with retries, direct operations, lifecycle
callbacks, estimates with fallback and balance aggregation.
"""

import pytest
import pytest_asyncio

from privacykit.core.exceptions import (
    NoCandidateAvailableError,
    NoProvidersAvailableError,
    ProviderNotFoundError,
    ProviderOperationError,
    UnsupportedOperationError,
)
from privacykit.core.types import (
    DepositRequest,
    EstimateRequest,
    OperationType,
    PrivacyLevel,
    ProveRequest,
    TransferRequest,
    WithdrawRequest,
)
from privacykit.infra.runtime.pipeline import PipelineBuilder
from privacykit.kit import PrivacyKit
from privacykit.providers.memory import InMemoryProvider, default_development_providers


class FlakyProvider(InMemoryProvider):
    """Fails ``initialize`` a fixed number of times before succeeding."""

    def __init__(self, provider_id, failures, **kwargs):
        super().__init__(provider_id, **kwargs)
        self.failures = failures
        self.attempts = 0

    async def initialize(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("handshake failed")
        await super().initialize()


def _transfer(**overrides):
    values = {
        "recipient": "dest",
        "amount": 1.0,
        "token": "SOL",
        "privacy": PrivacyLevel.AMOUNT_HIDDEN,
    }
    values.update(overrides)
    return TransferRequest(**values)


@pytest_asyncio.fixture
async def kit(test_settings):
    kit = PrivacyKit(settings=test_settings)
    await kit.initialize(default_development_providers())
    return kit


class TestInitialization:
    @pytest.mark.asyncio
    async def test_initializes_all_providers(self, test_settings):
        kit = PrivacyKit(settings=test_settings)
        await kit.initialize(default_development_providers())

        assert kit.initialized
        assert all(p.is_ready() for p in kit.providers())
        assert kit.registry.ids() == ("shadowwire", "arcium", "noir", "privacycash")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, test_settings):
        flaky = FlakyProvider("flaky", failures=1)
        kit = PrivacyKit(settings=test_settings).register_provider(flaky)

        await kit.initialize()

        assert flaky.attempts == 2
        assert flaky.is_ready()

    @pytest.mark.asyncio
    async def test_failing_provider_unregistered(self, test_settings):
        broken = FlakyProvider("broken", failures=99)
        kit = PrivacyKit(settings=test_settings)

        await kit.initialize([broken, InMemoryProvider("ok")])

        assert broken.attempts == test_settings.PROVIDER_INIT_MAX_ATTEMPTS
        assert kit.registry.ids() == ("ok",)

    @pytest.mark.asyncio
    async def test_no_provider_initialized(self, test_settings):
        kit = PrivacyKit(settings=test_settings)

        with pytest.raises(NoProvidersAvailableError):
            await kit.initialize([FlakyProvider("broken", failures=99)])

        assert not kit.initialized

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, test_settings):
        flaky = FlakyProvider("flaky", failures=0)
        kit = PrivacyKit(settings=test_settings)

        await kit.initialize([flaky])
        await kit.initialize()

        assert flaky.attempts == 1


class TestDirectOperations:
    @pytest.mark.asyncio
    async def test_transfer_auto_selects(self, kit):
        events = []
        kit.on("transfer:start", lambda req: events.append(("start", req.amount)))
        kit.on("transfer:complete", lambda res: events.append(("complete", res.provider_id)))

        result = await kit.transfer(_transfer())

        assert result.provider_id == "shadowwire"
        assert result.fee == pytest.approx(0.0075)
        assert events == [("start", 1.0), ("complete", "shadowwire")]

    @pytest.mark.asyncio
    async def test_transfer_explicit_provider(self, kit):
        result = await kit.transfer(_transfer(provider="arcium"))
        assert result.provider_id == "arcium"

    @pytest.mark.asyncio
    async def test_transfer_without_candidate(self, kit):
        with pytest.raises(NoCandidateAvailableError):
            await kit.transfer(_transfer(token="DOGE"))

    @pytest.mark.asyncio
    async def test_transfer_failure_wrapped(self, test_settings):
        kit = PrivacyKit(settings=test_settings)
        await kit.initialize([InMemoryProvider("sw", fail_on=[OperationType.TRANSFER])])
        errors = []
        kit.on("transfer:error", lambda exc, req: errors.append(exc))

        with pytest.raises(ProviderOperationError) as exc_info:
            await kit.transfer(_transfer(provider="sw"))

        assert exc_info.value.error_code == "TRANSFER_FAILED"
        assert isinstance(exc_info.value.original_error, ConnectionError)
        assert errors == [exc_info.value]

    @pytest.mark.asyncio
    async def test_deposit_then_withdraw_default_provider(self, kit):
        deposit = await kit.deposit(DepositRequest(amount=10.0, token="SOL"))

        assert deposit.provider_id == "shadowwire"
        assert deposit.commitment

        withdraw = await kit.withdraw(
            WithdrawRequest(recipient="dest", commitment=deposit.commitment)
        )
        assert withdraw.provider_id == "shadowwire"

        summary = await kit.get_balance("SOL")
        assert summary.total == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_prove_defaults_to_noir(self, kit):
        result = await kit.prove(ProveRequest(circuit="balance_gt", public_inputs={"min": 1}))

        assert result.provider_id == "noir"
        assert isinstance(result.proof, bytes)
        assert result.public_inputs == {"min": 1}

    @pytest.mark.asyncio
    async def test_prove_on_non_zk_provider(self, kit):
        with pytest.raises(UnsupportedOperationError):
            await kit.prove(ProveRequest(circuit="c", provider="arcium"))

    @pytest.mark.asyncio
    async def test_unknown_provider(self, kit):
        with pytest.raises(ProviderNotFoundError):
            await kit.deposit(DepositRequest(amount=1.0, token="SOL", provider="ghost"))

    def test_unknown_event_kind(self, test_settings):
        with pytest.raises(ValueError):
            PrivacyKit(settings=test_settings).on("transfer:done", print)


class TestEstimateAndBalance:
    @pytest.mark.asyncio
    async def test_named_provider_estimate(self, kit):
        estimate = await kit.estimate(
            EstimateRequest(operation=OperationType.DEPOSIT, token="SOL", amount=10, provider="arcium")
        )
        assert estimate.provider_id == "arcium"
        assert estimate.fee == pytest.approx(0.02)

    @pytest.mark.asyncio
    async def test_estimate_by_privacy_level(self, kit):
        estimate = await kit.estimate(
            EstimateRequest(
                operation=OperationType.TRANSFER,
                token="USDC",
                amount=100,
                privacy=PrivacyLevel.COMPLIANT_POOL,
            )
        )
        assert estimate.provider_id == "privacycash"

    @pytest.mark.asyncio
    async def test_estimate_by_level_reuses_selection_estimate(self, test_settings, stub_provider):
        provider = stub_provider("a", fee=0.03)
        kit = PrivacyKit(settings=test_settings).register_provider(provider)

        estimate = await kit.estimate(
            EstimateRequest(
                operation=OperationType.TRANSFER,
                token="SOL",
                amount=1,
                privacy=PrivacyLevel.AMOUNT_HIDDEN,
            )
        )

        assert estimate.provider_id == "a"
        assert estimate.fee == pytest.approx(0.03)
        assert provider.estimate_calls == 1

    @pytest.mark.asyncio
    async def test_estimate_falls_back_to_first_ready(self, kit):
        estimate = await kit.estimate(
            EstimateRequest(
                operation=OperationType.TRANSFER, token="SOL", privacy=PrivacyLevel.NONE
            )
        )
        assert estimate.provider_id == "shadowwire"
        assert estimate.warnings

    @pytest.mark.asyncio
    async def test_estimate_without_providers(self, test_settings):
        with pytest.raises(NoProvidersAvailableError):
            await PrivacyKit(settings=test_settings).estimate(
                EstimateRequest(operation=OperationType.TRANSFER)
            )

    @pytest.mark.asyncio
    async def test_balance_aggregation(self, test_settings, stub_provider):
        kit = PrivacyKit(settings=test_settings)
        kit.register_provider(stub_provider("a", balance=1.5))
        kit.register_provider(stub_provider("b", balance=0.0))
        kit.register_provider(stub_provider("c", balance_error=ConnectionError("rpc")))
        kit.register_provider(stub_provider("d", balance=2.0, ready=False))

        summary = await kit.get_balance("sol")

        assert summary.token == "SOL"
        assert summary.shielded == {"a": 1.5}
        assert summary.failed_providers == ["c"]
        assert summary.total == pytest.approx(1.5)

    def test_pipeline_bound_to_registry(self, test_settings):
        kit = PrivacyKit(settings=test_settings)
        builder = kit.pipeline()
        assert isinstance(builder, PipelineBuilder)
        assert builder is not kit.pipeline()
