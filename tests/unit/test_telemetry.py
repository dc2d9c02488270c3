"""Structured logging, metrics and tracing helpers."""

import json
import logging
import sys

import pytest

from privacykit.infra.telemetry.logger import (
    StructuredFormatter,
    current_context,
    get_logger,
    log_context,
    setup_logging,
)
from privacykit.infra.telemetry.metrics import MetricsCollector, PercentileTracker
from privacykit.infra.telemetry.tracer import _attributes, get_tracer, trace_span


class TestStructuredFormatter:
    def _record(self, **extra):
        record = logging.LogRecord(
            "privacykit.test", logging.INFO, __file__, 10, "provider_selected", None, None
        )
        record.__dict__.update(extra)
        return record

    def test_json_output_with_context(self):
        with log_context(pipeline_id="pipe-1"):
            entry = json.loads(
                StructuredFormatter(json_output=True).format(self._record(provider="arcium"))
            )

        assert entry["event"] == "provider_selected"
        assert entry["level"] == "INFO"
        assert entry["context"] == {"pipeline_id": "pipe-1"}
        assert entry["fields"] == {"provider": "arcium"}

    def test_json_output_records_error(self):
        try:
            raise ConnectionError("rpc down")
        except ConnectionError:
            record = self._record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter(json_output=True).format(record))
        assert entry["error"]["type"] == "ConnectionError"
        assert entry["error"]["message"] == "rpc down"

    def test_human_output(self):
        with log_context(pipeline_id="abc123"):
            line = StructuredFormatter(json_output=False).format(self._record(score=155.0))
        assert "[abc123]" in line
        assert "provider_selected" in line
        assert "score=155.0" in line


class TestLogContext:
    def test_scope_is_restored(self):
        with log_context(pipeline_id="outer"):
            with log_context(step=2):
                assert current_context() == {"pipeline_id": "outer", "step": 2}
            assert current_context() == {"pipeline_id": "outer"}
        assert current_context() == {}

    def test_bound_logger_merges_fields(self, caplog):
        log = get_logger("privacykit.test").bind(provider="noir").bind(attempt=2)
        with caplog.at_level(logging.INFO, logger="privacykit.test"):
            log.info("provider_initialization_retry", delay_s=0.5)

        record = caplog.records[-1]
        assert record.getMessage() == "provider_initialization_retry"
        assert record.provider == "noir"
        assert record.attempt == 2
        assert record.delay_s == 0.5

    def test_setup_logging_replaces_only_own_handlers(self):
        foreign = logging.NullHandler()
        target = logging.getLogger("privacykit.setup_test")
        target.addHandler(foreign)
        try:
            setup_logging(level="DEBUG", logger_name="privacykit.setup_test")
            setup_logging(level="WARNING", logger_name="privacykit.setup_test")

            assert foreign in target.handlers
            assert len(target.handlers) == 2
            assert target.level == logging.WARNING
        finally:
            for handler in list(target.handlers):
                target.removeHandler(handler)
            target.propagate = True


class TestMetrics:
    def test_percentiles(self):
        tracker = PercentileTracker(window_size=10)
        for value in range(1, 11):
            tracker.record(float(value))
        assert tracker.count == 10
        assert tracker.mean() == pytest.approx(5.5)
        assert tracker.percentile(100) == 10.0

    def test_summary_and_export(self, metrics: MetricsCollector):
        metrics.record_selection(outcome="selected", candidates=2)
        metrics.record_step(step_type="deposit", status="success", latency_s=0.02)

        assert metrics.get_summary()["deposit"]["count"] == 1
        exported = metrics.export_prometheus().decode()
        assert 'privacykit_router_selections_total{outcome="selected"} 1.0' in exported


class TestTracing:
    def test_span_reraises(self):
        tracer = get_tracer("privacykit.test")
        with pytest.raises(RuntimeError):
            with tracer.span("op", attributes={"provider": "noir", "skip": None}):
                raise RuntimeError("boom")

    @pytest.mark.asyncio
    async def test_trace_span_decorator(self):
        @trace_span("test.op")
        async def op(x):
            return x * 2

        assert await op(2) == 4
        assert op.__name__ == "op"

    def test_span_attributes_include_log_context(self):
        with log_context(pipeline_id="pipe-9"):
            attrs = _attributes({"provider": "arcium", "level": None, "fee": 0.1})

        assert attrs == {
            "privacykit.pipeline_id": "pipe-9",
            "provider": "arcium",
            "fee": 0.1,
        }
