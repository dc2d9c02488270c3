"""
Metrics Collector — Prometheus Metrics
========================================

Centralized metrics registry for routing and pipeline execution.

Design:
  - Single collector, no scattered metric creation
  - Private CollectorRegistry per collector so independent instances
    (tests, embedded kits) never clash on metric names
  - Internal rolling percentile tracking for step latency summaries

Metric Naming Convention:
  - privacykit_{component}_{metric}_{unit}
  - e.g., privacykit_pipeline_step_latency_seconds
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

# ── Percentile Tracker ─────────────────────────────────────────────

class PercentileTracker:
    """Thread-safe rolling window percentile calculator."""

    __slots__ = ("_lock", "_values")

    def __init__(self, window_size: int = 1000):
        self._values: deque[float] = deque(maxlen=window_size)
        self._lock = threading.Lock()

    def record(self, value: float) -> None:
        with self._lock:
            self._values.append(value)

    def percentile(self, p: float) -> float:
        """Get percentile value (0-100)."""
        with self._lock:
            if not self._values:
                return 0.0
            ordered = sorted(self._values)
        idx = int(len(ordered) * p / 100)
        return ordered[min(idx, len(ordered) - 1)]

    @property
    def count(self) -> int:
        return len(self._values)

    def mean(self) -> float:
        with self._lock:
            if not self._values:
                return 0.0
            return sum(self._values) / len(self._values)

# ── Metrics Collector ──────────────────────────────────────────────

class MetricsCollector:
    """
    Centralized metrics collection.

    Pre-defines all routing and pipeline metrics with proper labels.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._lock = threading.Lock()
        self.registry = registry or CollectorRegistry()
        self._step_trackers: dict[str, PercentileTracker] = {}

        # ── Routing Metrics ──
        self.selections = Counter(
            "privacykit_router_selections_total",
            "Provider selections by outcome",
            labelnames=["outcome"],  # selected / no_candidate / error
            registry=self.registry,
        )

        self.candidates = Histogram(
            "privacykit_router_candidates",
            "Providers surviving all filters per selection",
            buckets=(0, 1, 2, 3, 4, 6, 8, 16),
            registry=self.registry,
        )

        self.estimate_failures = Counter(
            "privacykit_router_estimate_failures_total",
            "Provider cost estimates that raised",
            labelnames=["provider"],
            registry=self.registry,
        )

        # ── Pipeline Metrics ──
        self.pipeline_runs = Counter(
            "privacykit_pipeline_runs_total",
            "Pipeline executions by outcome",
            labelnames=["mode", "status"],  # mode: execute / dry_run
            registry=self.registry,
        )

        self.pipeline_steps = Counter(
            "privacykit_pipeline_steps_total",
            "Pipeline steps attempted",
            labelnames=["step_type", "status"],
            registry=self.registry,
        )

        self.step_latency = Histogram(
            "privacykit_pipeline_step_latency_seconds",
            "Pipeline step latency",
            labelnames=["step_type"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0),
            registry=self.registry,
        )

        self.pipeline_fees = Counter(
            "privacykit_pipeline_fees_total",
            "Fees paid by successful pipeline steps",
            labelnames=["provider"],
            registry=self.registry,
        )

    # ── Recording Methods ──────────────────────────────────────────

    def record_selection(self, *, outcome: str, candidates: int) -> None:
        self.selections.labels(outcome=outcome).inc()
        self.candidates.observe(candidates)

    def record_estimate_failure(self, provider: str) -> None:
        self.estimate_failures.labels(provider=provider).inc()

    def record_step(
        self,
        *,
        step_type: str,
        status: str,
        latency_s: float,
        provider: str | None = None,
        fee: float = 0.0,
    ) -> None:
        self._get_step_tracker(step_type).record(latency_s)
        self.pipeline_steps.labels(step_type=step_type, status=status).inc()
        self.step_latency.labels(step_type=step_type).observe(latency_s)
        if provider and fee > 0:
            self.pipeline_fees.labels(provider=provider).inc(fee)

    def record_pipeline(self, *, mode: str, success: bool) -> None:
        self.pipeline_runs.labels(mode=mode, status="success" if success else "error").inc()

    # ── Summaries ──────────────────────────────────────────────────

    def _get_step_tracker(self, step_type: str) -> PercentileTracker:
        if step_type not in self._step_trackers:
            with self._lock:
                if step_type not in self._step_trackers:
                    self._step_trackers[step_type] = PercentileTracker()
        return self._step_trackers[step_type]

    def get_summary(self) -> dict[str, Any]:
        """Step latency percentiles per step type."""
        return {
            step_type: {
                "p50": tracker.percentile(50),
                "p95": tracker.percentile(95),
                "mean": tracker.mean(),
                "count": tracker.count,
            }
            for step_type, tracker in self._step_trackers.items()
        }

    def export_prometheus(self) -> bytes:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry)

# ── Singleton ──────────────────────────────────────────────────────

_metrics: MetricsCollector | None = None

def get_metrics() -> MetricsCollector:
    # Lock-free benign-race singleton.
    global _metrics
    if _metrics is not None:
        return _metrics
    _metrics = MetricsCollector()
    return _metrics
