"""
Tracing — OpenTelemetry Spans
===============================

Spans around selections, pipeline runs and kit operations.

Design:
  - Only the OpenTelemetry API is touched on the hot path; spans stay
    non-recording until ``init_tracing`` installs an SDK provider
  - Fields scoped with ``log_context()`` (e.g. ``pipeline_id``) are copied
    onto every span opened inside that scope, so logs and spans correlate
  - A span that sees an exception records it, marks ERROR, and re-raises

Usage:
    tracer = get_tracer(__name__)
    with tracer.span("router.rank", attributes={"privacy_level": "amount-hidden"}) as span:
        ranked = await self._rank(criteria)
        span.set_attribute("candidates", len(ranked))
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Span, Status, StatusCode

from privacykit.infra.telemetry.logger import current_context, get_logger

logger = get_logger(__name__)

ATTRIBUTE_PREFIX = "privacykit."

_Scalar = (str, bool, int, float)

def _attributes(extra: dict[str, Any] | None) -> dict[str, Any]:
    """Scoped log fields plus ``extra``; values OTel cannot carry are stringified, None dropped."""
    merged = {f"{ATTRIBUTE_PREFIX}{k}": v for k, v in current_context().items()}
    merged.update(extra or {})
    return {
        key: value if isinstance(value, _Scalar) else str(value)
        for key, value in merged.items()
        if value is not None
    }

class Tracer:
    """Named OpenTelemetry tracer with error recording."""

    __slots__ = ("_otel",)

    def __init__(self, name: str):
        self._otel = otel_trace.get_tracer(name)

    @contextmanager
    def span(self, name: str, *, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
        with self._otel.start_as_current_span(
            name,
            attributes=_attributes(attributes),
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, f"{type(exc).__name__}: {exc}"))
                raise

_tracers: dict[str, Tracer] = {}

def get_tracer(name: str) -> Tracer:
    tracer = _tracers.get(name)
    if tracer is None:
        tracer = _tracers[name] = Tracer(name)
    return tracer

def init_tracing(
    *,
    service_name: str = "privacykit",
    enabled: bool = True,
    exporter: Any = None,
) -> None:
    """
    Install an SDK tracer provider.

    Spans go to ``exporter`` when given (tests pass an in-memory one);
    otherwise they are batched to the console. With ``enabled=False`` the
    API's no-op provider stays in place.
    """
    if not enabled:
        return

    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter is None:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    otel_trace.set_tracer_provider(provider)
    logger.info("tracing_initialized", service=service_name, exporter=type(exporter).__name__)

def trace_span(
    name: str | None = None,
    *,
    attributes: dict[str, Any] | None = None,
) -> Callable:
    """
    Run the decorated function (sync or async) inside a span.

        @trace_span("kit.transfer")
        async def transfer(self, request): ...
    """

    def decorator(func: Callable) -> Callable:
        span_name = name or func.__qualname__
        tracer = get_tracer(func.__module__)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def traced_async(*args: Any, **kwargs: Any) -> Any:
                with tracer.span(span_name, attributes=attributes):
                    return await func(*args, **kwargs)

            return traced_async

        @functools.wraps(func)
        def traced(*args: Any, **kwargs: Any) -> Any:
            with tracer.span(span_name, attributes=attributes):
                return func(*args, **kwargs)

        return traced

    return decorator
