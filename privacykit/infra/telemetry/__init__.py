"""
Telemetry Layer — Unified Observability
========================================

All other layers depend on this.

Provides:
  - Structured logging with bound and scoped (pipeline) context
  - Distributed tracing (OpenTelemetry)
  - Metrics collection (Prometheus)

Usage:
    from privacykit.infra.telemetry import get_logger, get_metrics, get_tracer

    logger = get_logger(__name__)
    with get_tracer(__name__).span("router.select") as span:
        span.set_attribute("provider", "arcium")
        logger.info("provider_selected", provider="arcium")
"""

from privacykit.infra.telemetry.logger import (
    StructuredLogger,
    get_logger,
    log_context,
    setup_logging,
)
from privacykit.infra.telemetry.metrics import MetricsCollector, get_metrics
from privacykit.infra.telemetry.tracer import Tracer, get_tracer, init_tracing, trace_span

__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "Tracer",
    "get_logger",
    "get_metrics",
    "get_tracer",
    "init_tracing",
    "log_context",
    "setup_logging",
    "trace_span",
]
