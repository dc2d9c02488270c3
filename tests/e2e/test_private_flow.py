"""
E2E Test for the Private Transfer Flow
Tests complete flow: initialize → recommend → dry run → deposit → transfer → withdraw
against the in-memory development providers.
"""
import pytest

from privacykit import PrivacyKit, PrivacyLevel, TransferRequest
from privacykit.core.config import Settings
from privacykit.providers.memory import default_development_providers

pytestmark = pytest.mark.e2e


@pytest.fixture
def settings():
    return Settings(_env_file=None, ENVIRONMENT="test", PROVIDER_INIT_INITIAL_DELAY_S=0.0)


class TestPrivateTransferFlow:
    """Recommendation, cost preview and execution agree with each other."""

    @pytest.mark.asyncio
    async def test_full_flow(self, settings):
        kit = PrivacyKit(settings=settings)
        await kit.initialize(default_development_providers())

        rec = await kit.recommend(
            TransferRequest(
                recipient="recipient-address",
                amount=10.0,
                token="SOL",
                privacy=PrivacyLevel.AMOUNT_HIDDEN,
            )
        )
        provider = rec.recommended.provider_id
        assert provider == "shadowwire"
        assert rec.explanation.startswith("Recommended: ShadowWire")

        builder = (
            kit.pipeline()
            .set_context("recipient", "recipient-address")
            .add_deposit(provider, 10.0, "SOL")
            .add_transfer(provider, 5.0, "SOL", PrivacyLevel.AMOUNT_HIDDEN)
            .add_wait(1)
            .add_withdraw(provider)
        )

        preview = await builder.dry_run()
        assert preview.estimated_fee == pytest.approx(0.075 + 0.0375)
        assert preview.estimated_latency_ms == pytest.approx(4000 * 3 + 1)

        result = await builder.execute()

        assert result.success, result.error
        assert len(result.steps) == 4
        # withdraw by commitment carries its own fee on top of deposit and transfer
        assert result.total_fee == pytest.approx(0.075 + 0.0375 + 9.925 * 0.0075)
        assert result.context["last_signature"] == result.steps[-1].result.signature

        balance = await kit.get_balance("SOL")
        assert balance.total == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_failure_midway_reports_partial_progress(self, settings):
        kit = PrivacyKit(settings=settings)
        await kit.initialize(default_development_providers())

        result = await (
            kit.pipeline()
            .add_deposit("arcium", 2.0, "USDC")
            .add_transfer("arcium", 1.0, "BONK", PrivacyLevel.FULL_ENCRYPTED, "dest")
            .add_withdraw("arcium", recipient="dest", token="USDC")
            .execute()
        )

        assert not result.success
        assert len(result.steps) == 2
        assert result.total_fee == pytest.approx(0.004)
        assert result.error.step_index == 1

        balance = await kit.get_balance("USDC")
        assert balance.shielded == {"arcium": pytest.approx(1.996)}
