"""
PrivacyKit — Unified Facade
=============================

Single entry point over the provider registry, the router and the
pipeline engine:

  kit = PrivacyKit()
  kit.register_provider(provider)
  await kit.initialize()
  result = await kit.transfer(TransferRequest(...))

Direct operations pick the provider named in the request or, when none
is named, the router's best candidate (transfers) or the configured
default for the privacy level (deposits, withdrawals, proofs).
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from privacykit.core.config import Settings, get_settings
from privacykit.core.exceptions import (
    NoCandidateAvailableError,
    NoProvidersAvailableError,
    PrivacyKitError,
    ProviderNotReadyError,
    ProviderOperationError,
    RetryConfig,
    with_retry,
)
from privacykit.core.types import (
    BalanceSummary,
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
from privacykit.infra.runtime.pipeline import PipelineBuilder
from privacykit.infra.runtime.router import (
    PrivacyRouter,
    Recommendation,
    RoutingPolicy,
    SelectionCriteria,
    SelectionResult,
)
from privacykit.infra.telemetry import (
    get_logger,
    get_metrics,
    init_tracing,
    setup_logging,
    trace_span,
)
from privacykit.providers.base import PrivacyProvider
from privacykit.providers.registry import ProviderRegistry

logger = get_logger(__name__)

EventCallback = Callable[..., Any]

EVENT_KINDS = frozenset(
    f"{op}:{phase}"
    for op in OperationType
    for phase in ("start", "complete", "error")
)

def configure_observability(settings: Settings | None = None) -> None:
    """Install logging and tracing from settings. Call once at startup."""
    settings = settings or get_settings()
    setup_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.json_logs,
        log_dir=settings.LOG_DIR,
    )
    init_tracing(
        service_name=settings.TRACING_SERVICE_NAME,
        enabled=settings.TRACING_ENABLED,
    )

class PrivacyKit:
    """Facade over registry, router and pipelines."""

    def __init__(
        self,
        settings: Settings | None = None,
        registry: ProviderRegistry | None = None,
        policy: RoutingPolicy | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else ProviderRegistry()
        self.router = PrivacyRouter(
            self.registry,
            policy or RoutingPolicy.from_settings(self.settings),
        )
        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)
        self._initialized = False

    # ── Registration & Lifecycle ──────────────────────────────────

    def register_provider(self, provider: PrivacyProvider) -> PrivacyKit:
        self.registry.register(provider)
        return self

    def providers(self) -> tuple[PrivacyProvider, ...]:
        return self.registry.providers()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, providers: list[PrivacyProvider] | None = None) -> None:
        """
        Initialize every registered provider concurrently.

        Each provider is retried with exponential backoff; providers that
        still fail are unregistered. Providers already ready are skipped,
        so repeated calls are harmless.

        Raises:
            NoProvidersAvailableError: no provider is ready afterwards.
        """
        for provider in providers or []:
            self.register_provider(provider)

        if self._initialized and all(p.is_ready() for p in self.registry.providers()):
            logger.debug("kit_already_initialized", providers=len(self.registry))
            return

        pending = [p for p in self.registry.providers() if not p.is_ready()]
        outcomes = await asyncio.gather(
            *(self._initialize_provider(p) for p in pending), return_exceptions=True
        )
        for provider, outcome in zip(pending, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self.registry.unregister(provider.provider_id)
                logger.warning(
                    "provider_initialization_failed",
                    provider=provider.provider_id,
                    error=str(outcome),
                )

        if not any(p.is_ready() for p in self.registry.providers()):
            raise NoProvidersAvailableError("No provider could be initialized")

        self._initialized = True
        logger.info("kit_initialized", providers=",".join(self.registry.ids()))

    async def _initialize_provider(self, provider: PrivacyProvider) -> None:
        config = RetryConfig(
            max_attempts=self.settings.PROVIDER_INIT_MAX_ATTEMPTS,
            initial_delay=self.settings.PROVIDER_INIT_INITIAL_DELAY_S,
            max_delay=self.settings.PROVIDER_INIT_MAX_DELAY_S,
        )

        log = logger.bind(provider=provider.provider_id)

        def on_retry(attempt: int, exc: Exception, delay: float) -> None:
            log.info(
                "provider_initialization_retry",
                attempt=attempt,
                delay_s=round(delay, 3),
                error=str(exc),
            )

        initialize = with_retry(
            config=config,
            on_retry=on_retry,
            exception_wrapper=lambda exc: ProviderNotReadyError(provider.provider_id, exc),
        )(provider.initialize)
        await initialize()

    # ── Events ─────────────────────────────────────────────────────

    def on(self, event_kind: str, callback: EventCallback) -> PrivacyKit:
        """Register a callback for an operation lifecycle event, e.g. ``transfer:complete``."""
        if event_kind not in EVENT_KINDS:
            raise ValueError(f"unknown event kind {event_kind!r}")
        self._listeners[event_kind].append(callback)
        return self

    def _emit(self, event_kind: str, *args: Any) -> None:
        for callback in self._listeners.get(event_kind, ()):
            try:
                callback(*args)
            except Exception as exc:
                logger.error("event_callback_failed", exc=exc, event=event_kind)

    # ── Selection ──────────────────────────────────────────────────

    async def select_best(self, criteria: SelectionCriteria) -> SelectionResult:
        return await self.router.select_best(criteria)

    async def recommend(
        self, request: TransferRequest | SelectionCriteria
    ) -> Recommendation:
        return await self.router.recommend(request)

    @trace_span("kit.estimate")
    async def estimate(self, request: EstimateRequest) -> CostEstimate:
        """
        Cost of one operation.

        A named provider answers directly. Otherwise the router picks one
        for the requested privacy level, falling back to the first ready
        provider when nothing qualifies.
        """
        if request.provider:
            return await self.registry.require(request.provider).estimate(request)

        if request.privacy is not None:
            criteria = SelectionCriteria(
                privacy_level=request.privacy,
                token=request.token or "SOL",
                amount=request.amount,
            )
            try:
                return (await self.router.select_best(criteria)).estimate
            except NoCandidateAvailableError as exc:
                logger.info("estimate_fallback", reason=exc.detail)

        fallback = next((p for p in self.registry.providers() if p.is_ready()), None)
        if fallback is None:
            raise NoProvidersAvailableError()
        return await fallback.estimate(request)

    # ── Direct Operations ──────────────────────────────────────────

    @trace_span("kit.transfer")
    async def transfer(self, request: TransferRequest) -> TransferResult:
        if request.provider:
            provider = self.registry.require(request.provider)
        else:
            provider = (
                await self.router.select_best(SelectionCriteria.from_request(request))
            ).provider
        return await self._run(
            OperationType.TRANSFER, provider, request, provider.transfer(request)
        )

    @trace_span("kit.deposit")
    async def deposit(self, request: DepositRequest) -> DepositResult:
        provider = self.registry.require(
            request.provider or self.router.default_provider(PrivacyLevel.AMOUNT_HIDDEN)
        )
        return await self._run(
            OperationType.DEPOSIT, provider, request, provider.deposit(request)
        )

    @trace_span("kit.withdraw")
    async def withdraw(self, request: WithdrawRequest) -> WithdrawResult:
        provider = self.registry.require(
            request.provider or self.router.default_provider(PrivacyLevel.AMOUNT_HIDDEN)
        )
        return await self._run(
            OperationType.WITHDRAW, provider, request, provider.withdraw(request)
        )

    @trace_span("kit.prove")
    async def prove(self, request: ProveRequest) -> ProveResult:
        provider = self.registry.require(request.provider or self.settings.PROOF_PROVIDER)
        return await self._run(OperationType.PROVE, provider, request, provider.prove(request))

    async def _run(
        self,
        operation: OperationType,
        provider: PrivacyProvider,
        request: Any,
        call: Awaitable[Any],
    ) -> Any:
        self._emit(f"{operation}:start", request)
        try:
            result = await call
        except PrivacyKitError as exc:
            self._emit(f"{operation}:error", exc, request)
            raise
        except Exception as exc:
            error = ProviderOperationError(operation.value, provider.provider_id, exc)
            self._emit(f"{operation}:error", error, request)
            raise error from exc

        logger.info(
            "operation_completed",
            operation=operation.value,
            provider=provider.provider_id,
            fee=getattr(result, "fee", None),
        )
        self._emit(f"{operation}:complete", result)
        return result

    # ── Balances & Pipelines ───────────────────────────────────────

    async def get_balance(self, token: str, address: str | None = None) -> BalanceSummary:
        """Shielded balance of ``token`` across every ready provider."""
        token = token.upper()
        ready = [p for p in self.registry.providers() if p.is_ready()]
        outcomes = await asyncio.gather(
            *(p.get_balance(token, address) for p in ready), return_exceptions=True
        )

        summary = BalanceSummary(token=token)
        for provider, outcome in zip(ready, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "balance_query_failed", provider=provider.provider_id, error=str(outcome)
                )
                summary.failed_providers.append(provider.provider_id)
            elif outcome > 0:
                summary.shielded[provider.provider_id] = outcome
        return summary

    def pipeline(self) -> PipelineBuilder:
        """A new pipeline builder bound to this kit's registry."""
        return PipelineBuilder(self.registry, metrics=get_metrics())

    def get_stats(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "router": self.router.get_stats(),
            "step_latency": get_metrics().get_summary(),
        }
