"""
Operation Pipeline — Ordered Multi-Step Execution
===================================================

Composes an ordered sequence of provider operations and local steps:
  DEPOSIT → TRANSFER → WITHDRAW, with optional PROVE / WAIT / CUSTOM steps

Each run:
  - Snapshots the step list and builds a fresh execution context
  - Executes steps strictly in insertion order, one at a time
  - Threads outputs forward (fee total, last commitment, last signature)
  - Stops at the first failure and reports exactly the attempted steps
  - Emits lifecycle events to the observers registered on the builder

A dry run walks the same steps but only asks providers for estimates.
Applied steps are never rolled back.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from privacykit.core.exceptions import (
    EstimationError,
    PrivacyKitError,
    ProviderNotFoundError,
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
from privacykit.infra.telemetry import get_logger, get_metrics, get_tracer, log_context
from privacykit.infra.telemetry.metrics import MetricsCollector
from privacykit.providers.base import PrivacyProvider
from privacykit.providers.registry import ProviderRegistry

logger = get_logger(__name__)
tracer = get_tracer(__name__)

# Well-known context keys.
TOTAL_FEE = "total_fee"
LAST_COMMITMENT = "last_commitment"
LAST_SIGNATURE = "last_signature"
RECIPIENT = "recipient"

CustomExecutor = Callable[[Mapping[str, Any]], Any]

# ── Steps & Context ────────────────────────────────────────────────

@dataclass(frozen=True)
class PipelineStep:
    """One immutable unit of work in a pipeline."""

    step_type: StepType
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    provider_id: str | None = None
    name: str | None = None
    executor: CustomExecutor | None = None
    duration_ms: float = 0.0

    @property
    def label(self) -> str:
        if self.step_type is StepType.CUSTOM:
            return f"custom:{self.name}"
        if self.provider_id:
            return f"{self.step_type}@{self.provider_id}"
        return str(self.step_type)

def _field(result: Any, key: str) -> Any:
    if isinstance(result, Mapping):
        return result.get(key)
    return getattr(result, key, None)

class PipelineContext:
    """
    Execution-scoped key/value store; last write wins.

    One instance per ``execute()`` call. Not shared between runs and not
    safe to share between tasks.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {TOTAL_FEE: 0.0}
        self._values.update(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only copy of the current values."""
        return MappingProxyType(dict(self._values))

    def merge_result(self, result: Any) -> None:
        """Thread a provider result's fee, commitment and signature forward."""
        fee = _field(result, "fee")
        if fee:
            self._values[TOTAL_FEE] = self._values.get(TOTAL_FEE, 0.0) + fee
        commitment = _field(result, "commitment")
        if commitment is not None:
            self._values[LAST_COMMITMENT] = commitment
        signature = _field(result, "signature")
        if signature is not None:
            self._values[LAST_SIGNATURE] = signature

# ── Results ────────────────────────────────────────────────────────

@dataclass
class StepOutcome:
    index: int
    step_type: StepType
    provider_id: str | None
    success: bool
    result: Any = None
    error: PrivacyKitError | None = None
    latency_ms: float = 0.0

    @property
    def fee(self) -> float:
        if not self.success or self.result is None or not self.step_type.provider_bound:
            return 0.0
        return _field(self.result, "fee") or 0.0

@dataclass
class PipelineResult:
    """
    Outcome of one ``execute()`` call; ``steps`` holds attempted steps only.

    ``total_fee`` sums provider-bound steps, matching the context's
    ``total_fee``; a fee returned by a custom step is not counted.
    """

    steps: list[StepOutcome]
    total_fee: float
    success: bool
    error: PrivacyKitError | None = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error

@dataclass
class StepProjection:
    index: int
    step_type: StepType
    provider_id: str | None
    estimated_fee: float = 0.0
    estimated_latency_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)

@dataclass
class DryRunResult:
    steps: list[StepProjection]
    estimated_fee: float
    estimated_latency_ms: float

    @property
    def warnings(self) -> list[str]:
        return [w for step in self.steps for w in step.warnings]

@dataclass
class PipelineEvent:
    """Lifecycle notification delivered to ``on_event`` observers."""

    kind: str  # pipeline_start | step_start | step_complete | step_failed | pipeline_complete
    index: int | None = None
    step: PipelineStep | None = None
    result: Any = None
    error: PrivacyKitError | None = None

EventObserver = Callable[[PipelineEvent], None]

# ── Builder ────────────────────────────────────────────────────────

class PipelineBuilder:
    """
    Fluent builder and executor of multi-step private operations.

    Usage:
        result = await (
            kit.pipeline()
            .add_deposit("shadowwire", 1.0, "SOL")
            .add_transfer("shadowwire", 1.0, "SOL", PrivacyLevel.AMOUNT_HIDDEN, "addr")
            .add_withdraw("shadowwire", recipient="addr")
            .execute()
        )
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._metrics = metrics or get_metrics()
        self._steps: list[PipelineStep] = []
        self._seed: dict[str, Any] = {}
        self._observers: list[EventObserver] = []

    # ── Composition ────────────────────────────────────────────────

    def add_deposit(self, provider: str, amount: float, token: str) -> PipelineBuilder:
        return self._add_provider_step(
            StepType.DEPOSIT, provider, {"amount": amount, "token": token}
        )

    def add_transfer(
        self,
        provider: str,
        amount: float,
        token: str,
        privacy: PrivacyLevel,
        recipient: str | None = None,
    ) -> PipelineBuilder:
        return self._add_provider_step(
            StepType.TRANSFER,
            provider,
            {"amount": amount, "token": token, "privacy": privacy, "recipient": recipient},
        )

    def add_withdraw(
        self,
        provider: str,
        recipient: str | None = None,
        amount: float = 0.0,
        token: str = "SOL",
        commitment: str | None = None,
    ) -> PipelineBuilder:
        return self._add_provider_step(
            StepType.WITHDRAW,
            provider,
            {
                "recipient": recipient,
                "amount": amount,
                "token": token,
                "commitment": commitment,
            },
        )

    def add_prove(
        self,
        provider: str,
        circuit: str,
        public_inputs: dict[str, Any] | None = None,
        private_inputs: dict[str, Any] | None = None,
    ) -> PipelineBuilder:
        return self._add_provider_step(
            StepType.PROVE,
            provider,
            {
                "circuit": circuit,
                "public_inputs": dict(public_inputs or {}),
                "private_inputs": dict(private_inputs or {}),
            },
        )

    def add_wait(self, duration_ms: float) -> PipelineBuilder:
        if duration_ms < 0:
            raise ValueError(f"wait duration must be non-negative, got {duration_ms}")
        self._steps.append(PipelineStep(StepType.WAIT, duration_ms=duration_ms))
        return self

    def add_custom(self, name: str, executor: CustomExecutor) -> PipelineBuilder:
        if not callable(executor):
            raise TypeError("custom step executor must be callable")
        self._steps.append(PipelineStep(StepType.CUSTOM, name=name, executor=executor))
        return self

    def set_context(self, key: str, value: Any) -> PipelineBuilder:
        """Seed a value into the context of every subsequent run."""
        self._seed[key] = value
        return self

    def on_event(self, callback: EventObserver) -> PipelineBuilder:
        self._observers.append(callback)
        return self

    def clear(self) -> PipelineBuilder:
        self._steps.clear()
        self._seed.clear()
        return self

    @property
    def steps(self) -> tuple[PipelineStep, ...]:
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def _add_provider_step(
        self, step_type: StepType, provider: str, params: dict[str, Any]
    ) -> PipelineBuilder:
        if not provider:
            raise ValueError(f"{step_type} step requires an explicit provider id")
        self._steps.append(
            PipelineStep(step_type, params=MappingProxyType(params), provider_id=provider)
        )
        return self

    # ── Execution ──────────────────────────────────────────────────

    async def execute(self) -> PipelineResult:
        """
        Run every step in order, stopping at the first failure.

        Cancelling the awaiting task stops issuing new steps; completed
        steps stay applied.
        """
        with log_context(pipeline_id=uuid.uuid4().hex[:12]):
            return await self._execute(tuple(self._steps), PipelineContext(self._seed))

    async def _execute(
        self, steps: tuple[PipelineStep, ...], context: PipelineContext
    ) -> PipelineResult:
        outcomes: list[StepOutcome] = []
        total_fee = 0.0
        failure: PrivacyKitError | None = None

        logger.info("pipeline_started", steps=len(steps))
        self._emit(PipelineEvent("pipeline_start"))

        with tracer.span("pipeline.execute", attributes={"steps": len(steps)}) as span:
            for index, step in enumerate(steps):
                self._emit(PipelineEvent("step_start", index=index, step=step))
                start = time.perf_counter()
                try:
                    result = await self._run_step(index, step, context)
                except PrivacyKitError as exc:
                    failure = exc
                except Exception as exc:
                    failure = StepExecutionError(index, step.step_type, step.provider_id, exc)
                latency_s = time.perf_counter() - start

                if failure is not None:
                    outcomes.append(
                        StepOutcome(
                            index, step.step_type, step.provider_id, False,
                            error=failure, latency_ms=latency_s * 1000,
                        )
                    )
                    self._metrics.record_step(
                        step_type=step.step_type, status="error", latency_s=latency_s
                    )
                    logger.warning(
                        "pipeline_step_failed",
                        index=index,
                        step=step.label,
                        error=failure.detail,
                    )
                    self._emit(
                        PipelineEvent("step_failed", index=index, step=step, error=failure)
                    )
                    break

                outcome = StepOutcome(
                    index, step.step_type, step.provider_id, True,
                    result=result, latency_ms=latency_s * 1000,
                )
                outcomes.append(outcome)
                total_fee += outcome.fee
                self._metrics.record_step(
                    step_type=step.step_type,
                    status="success",
                    latency_s=latency_s,
                    provider=step.provider_id,
                    fee=outcome.fee,
                )
                logger.debug("pipeline_step_completed", index=index, step=step.label)
                self._emit(
                    PipelineEvent("step_complete", index=index, step=step, result=result)
                )

            span.set_attribute("attempted", len(outcomes))
            span.set_attribute("success", failure is None)

        result = PipelineResult(
            steps=outcomes,
            total_fee=total_fee,
            success=failure is None,
            error=failure,
            context=context.snapshot(),
        )
        self._metrics.record_pipeline(mode="execute", success=result.success)
        logger.info(
            "pipeline_finished",
            success=result.success,
            attempted=len(outcomes),
            total_fee=total_fee,
        )
        self._emit(PipelineEvent("pipeline_complete", result=result, error=failure))
        return result

    async def dry_run(self) -> DryRunResult:
        """Project total fee and latency without executing any operation."""
        projections: list[StepProjection] = []

        for index, step in enumerate(tuple(self._steps)):
            projection = StepProjection(index, step.step_type, step.provider_id)
            if step.step_type is StepType.WAIT:
                projection.estimated_latency_ms = step.duration_ms
            elif step.step_type.provider_bound:
                provider = self._registry.get(step.provider_id)
                if provider is None:
                    projection.warnings.append(
                        f"provider {step.provider_id} is not registered"
                    )
                else:
                    estimate = await self._estimate_step(provider, step)
                    projection.estimated_fee = estimate.fee
                    projection.estimated_latency_ms = estimate.latency_ms
                    projection.warnings.extend(estimate.warnings)
            projections.append(projection)

        self._metrics.record_pipeline(mode="dry_run", success=True)
        return DryRunResult(
            steps=projections,
            estimated_fee=sum(p.estimated_fee for p in projections),
            estimated_latency_ms=sum(p.estimated_latency_ms for p in projections),
        )

    # ── Internal ───────────────────────────────────────────────────

    async def _run_step(
        self, index: int, step: PipelineStep, context: PipelineContext
    ) -> Any:
        try:
            if step.step_type is StepType.WAIT:
                await asyncio.sleep(step.duration_ms / 1000)
                return None
            if step.step_type is StepType.CUSTOM:
                value = step.executor(context.snapshot())
                if inspect.isawaitable(value):
                    value = await value
                return value
            provider = self._registry.require(step.provider_id)
            result = await self._invoke(provider, step, context)
        except ProviderNotFoundError as exc:
            raise ProviderNotFoundError(
                exc.provider_id, step_index=index, step_type=step.step_type
            ) from exc
        except UnsupportedOperationError as exc:
            raise exc.annotate(index, step.step_type) from exc
        except Exception as exc:
            raise StepExecutionError(index, step.step_type, step.provider_id, exc) from exc

        context.merge_result(result)
        return result

    async def _invoke(
        self, provider: PrivacyProvider, step: PipelineStep, context: PipelineContext
    ) -> Any:
        p = step.params
        match step.step_type:
            case StepType.DEPOSIT:
                return await provider.deposit(
                    DepositRequest(amount=p["amount"], token=p["token"], provider=step.provider_id)
                )
            case StepType.TRANSFER:
                return await provider.transfer(
                    TransferRequest(
                        recipient=p["recipient"] or context.get(RECIPIENT),
                        amount=p["amount"],
                        token=p["token"],
                        privacy=p["privacy"],
                        provider=step.provider_id,
                    )
                )
            case StepType.WITHDRAW:
                return await provider.withdraw(
                    WithdrawRequest(
                        recipient=p["recipient"] or context.get(RECIPIENT),
                        amount=p["amount"],
                        token=p["token"],
                        commitment=p["commitment"] or context.get(LAST_COMMITMENT),
                        provider=step.provider_id,
                    )
                )
            case StepType.PROVE:
                return await provider.prove(
                    ProveRequest(
                        circuit=p["circuit"],
                        public_inputs=p["public_inputs"],
                        private_inputs=p["private_inputs"],
                        provider=step.provider_id,
                    )
                )
        raise ValueError(f"unhandled step type {step.step_type}")

    async def _estimate_step(
        self, provider: PrivacyProvider, step: PipelineStep
    ) -> CostEstimate:
        p = step.params
        try:
            return await provider.estimate(
                EstimateRequest(
                    operation=OperationType(step.step_type.value),
                    token=p.get("token"),
                    amount=p.get("amount") or None,
                    privacy=p.get("privacy"),
                    provider=step.provider_id,
                )
            )
        except Exception as exc:
            raise EstimationError(provider.provider_id, exc) from exc

    def _emit(self, event: PipelineEvent) -> None:
        for observer in self._observers:
            try:
                observer(event)
            except Exception as exc:
                logger.error("pipeline_observer_failed", exc=exc, kind=event.kind)
