"""
Runtime Layer — Provider Selection & Operation Pipelines
==========================================================

Provides:
  - Provider selection (hard filters → live estimates → scoring → ranking)
  - Recommendations with ranked alternatives and a readable rationale
  - Ordered multi-step pipelines with context threading and dry runs

Depends on: providers, telemetry
Depended on by: kit
"""

from privacykit.infra.runtime.pipeline import (
    DryRunResult,
    PipelineBuilder,
    PipelineContext,
    PipelineEvent,
    PipelineResult,
    PipelineStep,
    StepOutcome,
    StepProjection,
)
from privacykit.infra.runtime.router import (
    Candidate,
    PrivacyRouter,
    ProviderProfile,
    Recommendation,
    RejectedProvider,
    RoutingPolicy,
    ScoringPolicy,
    SelectionCriteria,
    SelectionResult,
)

__all__ = [
    "Candidate",
    "DryRunResult",
    "PipelineBuilder",
    "PipelineContext",
    "PipelineEvent",
    "PipelineResult",
    "PipelineStep",
    "PrivacyRouter",
    "ProviderProfile",
    "Recommendation",
    "RejectedProvider",
    "RoutingPolicy",
    "ScoringPolicy",
    "SelectionCriteria",
    "SelectionResult",
    "StepOutcome",
    "StepProjection",
]
