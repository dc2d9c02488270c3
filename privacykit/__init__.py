"""
PrivacyKit Router
==================

Selects among interchangeable privacy providers for a private value
transfer and composes multi-step private operations.

Usage:
    from privacykit import PrivacyKit, PrivacyLevel, TransferRequest

    kit = PrivacyKit()
    kit.register_provider(provider)
    await kit.initialize()
    rec = await kit.recommend(
        TransferRequest(recipient="addr", amount=1.0, token="SOL",
                        privacy=PrivacyLevel.AMOUNT_HIDDEN)
    )
    print(rec.explanation)
"""

from privacykit.core.exceptions import (
    EstimationError,
    NoCandidateAvailableError,
    NoProvidersAvailableError,
    PrivacyKitError,
    ProviderNotFoundError,
    ProviderNotReadyError,
    ProviderOperationError,
    StepExecutionError,
    UnsupportedOperationError,
)
from privacykit.core.types import (
    CostEstimate,
    DepositRequest,
    EstimateRequest,
    OperationType,
    PrivacyLevel,
    ProveRequest,
    StepType,
    TransferRequest,
    WithdrawRequest,
)
from privacykit.infra.runtime import (
    PipelineBuilder,
    PrivacyRouter,
    RoutingPolicy,
    SelectionCriteria,
)
from privacykit.kit import PrivacyKit, configure_observability
from privacykit.providers import InMemoryProvider, PrivacyProvider, ProviderRegistry

__version__ = "0.1.0"

__all__ = [
    "CostEstimate",
    "DepositRequest",
    "EstimateRequest",
    "EstimationError",
    "InMemoryProvider",
    "NoCandidateAvailableError",
    "NoProvidersAvailableError",
    "OperationType",
    "PipelineBuilder",
    "PrivacyKit",
    "PrivacyKitError",
    "PrivacyLevel",
    "PrivacyProvider",
    "PrivacyRouter",
    "ProveRequest",
    "ProviderNotFoundError",
    "ProviderNotReadyError",
    "ProviderOperationError",
    "ProviderRegistry",
    "RoutingPolicy",
    "SelectionCriteria",
    "StepExecutionError",
    "StepType",
    "TransferRequest",
    "UnsupportedOperationError",
    "WithdrawRequest",
    "configure_observability",
]
