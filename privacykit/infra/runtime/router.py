"""
Privacy Router — Provider Selection
=====================================

Routes a request to the best-fit privacy provider based on:
  - Declared support (privacy level, token, compliance, verification)
  - Live readiness
  - Live cost estimates against fee / latency ceilings
  - A static reference profile of each provider's typical cost

Selection is a two-phase process:
  1. Hard filters, applied before any cost query is issued, then one
     estimate per survivor and the numeric constraints.
  2. A deterministic score per candidate; candidates are ranked by score
     with ties kept in registry order.

Routing decisions carry a human-readable rationale that is advisory
only and never parsed.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from privacykit.core.config import Settings, get_settings
from privacykit.core.exceptions import EstimationError, NoCandidateAvailableError
from privacykit.core.types import (
    CostEstimate,
    EstimateRequest,
    OperationType,
    PrivacyLevel,
    TransferRequest,
)
from privacykit.infra.telemetry import get_logger, get_metrics, get_tracer
from privacykit.infra.telemetry.metrics import MetricsCollector
from privacykit.providers.base import PrivacyProvider, supports_level, supports_token
from privacykit.providers.registry import ProviderRegistry

logger = get_logger(__name__)
tracer = get_tracer(__name__)

EstimateFailurePolicy = Literal["skip", "abort"]

class SelectionCriteria(BaseModel):
    """Constraints for one selection call. Immutable."""

    model_config = ConfigDict(frozen=True)

    privacy_level: PrivacyLevel
    token: str = Field(..., min_length=1)
    amount: float | None = Field(default=None, ge=0)
    max_fee: float | None = Field(default=None, ge=0)
    max_latency_ms: float | None = Field(default=None, ge=0)
    preferred_provider: str | None = None
    require_compliance: bool = False
    require_onchain_verification: bool = False

    @field_validator("token")
    @classmethod
    def _upper_token(cls, v: str) -> str:
        return v.strip().upper()

    @classmethod
    def from_request(cls, request: TransferRequest) -> SelectionCriteria:
        return cls(
            privacy_level=request.privacy,
            token=request.token,
            amount=request.amount,
            max_fee=request.max_fee,
            preferred_provider=request.provider,
        )

# ── Policy ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderProfile:
    """Static reference cost of a provider (not the live estimate)."""

    avg_fee_percent: float
    avg_latency_ms: float

def _default_level_scores() -> dict[PrivacyLevel, float]:
    return {
        PrivacyLevel.FULL_ENCRYPTED: 25.0,
        PrivacyLevel.ZK_PROVEN: 20.0,
        PrivacyLevel.COMPLIANT_POOL: 20.0,
        PrivacyLevel.AMOUNT_HIDDEN: 15.0,
        PrivacyLevel.SENDER_HIDDEN: 10.0,
        PrivacyLevel.NONE: 0.0,
    }

@dataclass(frozen=True)
class ScoringPolicy:
    """Weights of the scoring function."""

    base: float = 100.0
    preferred_bonus: float = 50.0
    fee_cap: float = 20.0
    fee_multiplier: float = 10.0
    latency_cap: float = 20.0
    latency_divisor_ms: float = 1000.0
    anonymity_cap: float = 15.0
    anonymity_multiplier: float = 5.0
    warning_penalty: float = 5.0
    level_scores: dict[PrivacyLevel, float] = field(default_factory=_default_level_scores)

@dataclass
class RoutingPolicy:
    """Everything the router needs besides the registry, injected at construction."""

    profiles: dict[str, ProviderProfile] = field(default_factory=dict)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    estimate_failure_policy: EstimateFailurePolicy = "skip"
    concurrent_estimates: bool = True
    default_providers: dict[PrivacyLevel, str] = field(default_factory=dict)
    fallback_provider: str = "shadowwire"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RoutingPolicy:
        settings = settings or get_settings()
        return cls(
            profiles={
                pid: ProviderProfile(p.avg_fee_percent, p.avg_latency_ms)
                for pid, p in settings.PROVIDER_PROFILES.items()
            },
            estimate_failure_policy=settings.ESTIMATE_FAILURE_POLICY,
            concurrent_estimates=settings.CONCURRENT_ESTIMATES,
            default_providers=dict(settings.DEFAULT_PROVIDERS),
            fallback_provider=settings.FALLBACK_PROVIDER,
        )

# ── Results ────────────────────────────────────────────────────────

@dataclass
class Candidate:
    """A provider that survived every filter, prior to scoring."""

    provider: PrivacyProvider
    estimate: CostEstimate
    reasons: list[str] = field(default_factory=list)

    @property
    def provider_id(self) -> str:
        return self.provider.provider_id

@dataclass
class SelectionResult:
    """A scored candidate."""

    provider_id: str
    provider: PrivacyProvider
    estimate: CostEstimate
    score: float
    reasons: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.provider.name

@dataclass
class Recommendation:
    recommended: SelectionResult
    alternatives: list[SelectionResult]
    explanation: str

@dataclass(frozen=True)
class RejectedProvider:
    """Why a registered provider did not become a candidate."""

    provider_id: str
    reason: str

# ── Router ─────────────────────────────────────────────────────────

class PrivacyRouter:
    """
    Selects the best provider for a request.

    Pure with respect to its own state: identical registry contents and
    criteria always yield identical scores and ranking. Estimates are
    fetched fresh on every call.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        policy: RoutingPolicy | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.registry = registry if registry is not None else ProviderRegistry()
        self.policy = policy or RoutingPolicy.from_settings()
        self._metrics = metrics or get_metrics()
        self._selections = 0
        self._last_rejections: list[RejectedProvider] = []

    def register_provider(self, provider: PrivacyProvider) -> None:
        """Register (or replace) a provider under its id."""
        self.registry.register(provider)

    # ── Public API ─────────────────────────────────────────────────

    async def select_best(self, criteria: SelectionCriteria) -> SelectionResult:
        """Return the highest-scoring usable provider."""
        ranked = await self.rank(criteria)
        best = ranked[0]
        logger.info(
            "provider_selected",
            provider=best.provider_id,
            score=round(best.score, 2),
            level=criteria.privacy_level.value,
            token=criteria.token,
        )
        return best

    async def recommend(
        self, request: TransferRequest | SelectionCriteria
    ) -> Recommendation:
        """Best provider, ranked alternatives and an explanation."""
        criteria = (
            request
            if isinstance(request, SelectionCriteria)
            else SelectionCriteria.from_request(request)
        )
        ranked = await self.rank(criteria)
        recommended, alternatives = ranked[0], ranked[1:]
        return Recommendation(
            recommended=recommended,
            alternatives=alternatives,
            explanation=self.explain(recommended, alternatives, criteria),
        )

    async def rank(self, criteria: SelectionCriteria) -> list[SelectionResult]:
        """
        Filter, score and rank every registered provider.

        Raises:
            NoCandidateAvailableError: filtering removed every provider.
            EstimationError: an estimate failed under the ``abort`` policy.
        """
        with tracer.span(
            "router.rank",
            attributes={
                "privacy_level": criteria.privacy_level.value,
                "token": criteria.token,
            },
        ) as span:
            try:
                candidates, rejections = await self._candidates(criteria)
            except EstimationError:
                self._metrics.record_selection(outcome="error", candidates=0)
                raise

            self._selections += 1
            self._last_rejections = rejections
            self._metrics.record_selection(
                outcome="selected" if candidates else "no_candidate",
                candidates=len(candidates),
            )
            span.set_attribute("candidates", len(candidates))

            if not candidates:
                logger.info(
                    "no_candidate_available",
                    level=criteria.privacy_level.value,
                    token=criteria.token,
                    rejected=len(rejections),
                )
                raise NoCandidateAvailableError(
                    criteria.privacy_level.value, criteria.token, rejections
                )

            scored = [self._to_result(c, criteria) for c in candidates]
            # list.sort is stable: ties keep candidate (registry) order.
            scored.sort(key=lambda r: r.score, reverse=True)
            span.set_attribute("provider", scored[0].provider_id)
            return scored

    def score(self, candidate: Candidate, criteria: SelectionCriteria) -> float:
        """Deterministic score of a candidate; never negative."""
        w = self.policy.scoring
        score = w.base

        if criteria.preferred_provider == candidate.provider_id:
            score += w.preferred_bonus

        profile = self.policy.profiles.get(candidate.provider_id)
        if profile is not None:
            score += max(0.0, w.fee_cap - profile.avg_fee_percent * w.fee_multiplier)
            score += max(0.0, w.latency_cap - profile.avg_latency_ms / w.latency_divisor_ms)

        score += w.level_scores.get(criteria.privacy_level, 0.0)

        anonymity_set = candidate.estimate.anonymity_set
        if anonymity_set and anonymity_set > 0:
            score += min(w.anonymity_cap, math.log10(anonymity_set) * w.anonymity_multiplier)

        score -= len(candidate.estimate.warnings) * w.warning_penalty
        return max(0.0, score)

    def default_provider(self, level: PrivacyLevel) -> str:
        """Static level → provider mapping used when no selection is run."""
        return self.policy.default_providers.get(level, self.policy.fallback_provider)

    def explain(
        self,
        recommended: SelectionResult,
        alternatives: list[SelectionResult],
        criteria: SelectionCriteria,
    ) -> str:
        """Human-readable rationale for a recommendation."""
        est = recommended.estimate
        lines = [f"Recommended: {recommended.name}", "Reasons:"]
        lines.extend(f"  - {reason}" for reason in recommended.reasons)
        lines.append(f"Estimated fee: {est.fee:.4f} {criteria.token}")
        lines.append(f"Estimated latency: {est.latency_ms / 1000:.1f}s")
        if est.anonymity_set:
            lines.append(f"Anonymity set: ~{est.anonymity_set} users")

        if alternatives:
            lines.append("")
            lines.append("Alternatives:")
            for alt in alternatives[:2]:
                lines.append(f"  - {alt.name} (score: {alt.score:.0f})")

        return "\n".join(lines)

    def get_stats(self) -> dict[str, Any]:
        """Get routing statistics."""
        return {
            "registered_providers": len(self.registry),
            "ready_providers": sum(1 for p in self.registry.providers() if p.is_ready()),
            "selections": self._selections,
            "estimate_failure_policy": self.policy.estimate_failure_policy,
            "last_rejections": {r.provider_id: r.reason for r in self._last_rejections},
        }

    # ── Internal ───────────────────────────────────────────────────

    def _hard_filter(
        self, provider: PrivacyProvider, criteria: SelectionCriteria
    ) -> str | None:
        """Reason the provider is excluded before any cost query, or None."""
        if not provider.is_ready():
            return "not ready"
        if not supports_level(provider, criteria.privacy_level):
            return f"does not support {criteria.privacy_level} privacy"
        if not supports_token(provider, criteria.token):
            return f"does not support {criteria.token} token"
        if criteria.require_compliance and not provider.has_compliance:
            return "no compliance features"
        if criteria.require_onchain_verification and not provider.has_onchain_verification:
            return "no on-chain verification"
        return None

    def _constraint_violation(
        self, estimate: CostEstimate, criteria: SelectionCriteria
    ) -> str | None:
        if criteria.max_fee is not None and estimate.fee > criteria.max_fee:
            return f"fee {estimate.fee} exceeds max fee {criteria.max_fee}"
        if criteria.max_latency_ms is not None and estimate.latency_ms > criteria.max_latency_ms:
            return f"latency {estimate.latency_ms}ms exceeds max latency {criteria.max_latency_ms}ms"
        return None

    async def _candidates(
        self, criteria: SelectionCriteria
    ) -> tuple[list[Candidate], list[RejectedProvider]]:
        rejections: list[RejectedProvider] = []
        survivors: list[PrivacyProvider] = []

        for provider in self.registry.providers():
            reason = self._hard_filter(provider, criteria)
            if reason is None:
                survivors.append(provider)
            else:
                rejections.append(RejectedProvider(provider.provider_id, reason))

        request = EstimateRequest(
            operation=OperationType.TRANSFER,
            token=criteria.token,
            amount=criteria.amount,
            privacy=criteria.privacy_level,
        )
        estimates = await self._estimate_all(survivors, request)

        candidates: list[Candidate] = []
        for provider, outcome in zip(survivors, estimates, strict=True):
            if isinstance(outcome, BaseException):
                rejections.append(
                    RejectedProvider(provider.provider_id, f"estimation failed: {outcome}")
                )
                continue

            violation = self._constraint_violation(outcome, criteria)
            if violation is not None:
                rejections.append(RejectedProvider(provider.provider_id, violation))
                continue

            reasons = [
                f"Supports {criteria.privacy_level} privacy",
                f"Supports {criteria.token} token",
            ]
            if provider.has_compliance:
                reasons.append("Includes compliance features")
            if provider.has_onchain_verification:
                reasons.append("On-chain verification available")
            candidates.append(Candidate(provider=provider, estimate=outcome, reasons=reasons))

        return candidates, rejections

    async def _estimate_all(
        self, providers: list[PrivacyProvider], request: EstimateRequest
    ) -> list[CostEstimate | Exception]:
        if self.policy.concurrent_estimates:
            return list(
                await asyncio.gather(*(self._estimate(p, request) for p in providers))
            )
        return [await self._estimate(p, request) for p in providers]

    async def _estimate(
        self, provider: PrivacyProvider, request: EstimateRequest
    ) -> CostEstimate | Exception:
        """One estimate; failures are returned under ``skip`` and raised under ``abort``."""
        try:
            return await provider.estimate(request)
        except Exception as exc:
            self._metrics.record_estimate_failure(provider.provider_id)
            if self.policy.estimate_failure_policy == "abort":
                logger.error(
                    "estimate_failed", exc=exc, provider=provider.provider_id, policy="abort"
                )
                raise EstimationError(provider.provider_id, exc) from exc
            logger.warning(
                "estimate_failed",
                provider=provider.provider_id,
                error=str(exc),
                policy="skip",
            )
            return exc

    def _to_result(self, candidate: Candidate, criteria: SelectionCriteria) -> SelectionResult:
        reasons = list(candidate.reasons)
        if criteria.preferred_provider == candidate.provider_id:
            reasons.append("Preferred provider")
        return SelectionResult(
            provider_id=candidate.provider_id,
            provider=candidate.provider,
            estimate=candidate.estimate,
            score=self.score(candidate, criteria),
            reasons=reasons,
        )
