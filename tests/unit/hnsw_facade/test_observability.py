"""Tests for optional metrics and spans around facade operations."""

from unittest.mock import MagicMock, patch

import pytest
from hnsw_facade import IndexConfig, IndexFacade, InvalidInputError
from hnsw_facade.observability import (
    METRICS_ENV_VAR,
    TRACE_ENV_VAR,
    FacadeMetrics,
    is_enabled,
    observe_operation,
)


class TestIsEnabled:
    """Tests for env-based enablement."""

    def test_disabled_by_default(self):
        """Without env vars or an exporter endpoint, telemetry is off."""
        assert is_enabled(METRICS_ENV_VAR) is False

    def test_follows_exporter_endpoint(self, monkeypatch):
        """An OTLP endpoint enables telemetry when no override is set."""
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
        assert is_enabled(METRICS_ENV_VAR) is True

    def test_explicit_override(self, monkeypatch):
        """An explicit false wins over a configured exporter."""
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
        monkeypatch.setenv(METRICS_ENV_VAR, "false")
        assert is_enabled(METRICS_ENV_VAR) is False

    def test_invalid_override(self, monkeypatch):
        """An unparseable override is treated as disabled."""
        monkeypatch.setenv(METRICS_ENV_VAR, "sometimes")
        assert is_enabled(METRICS_ENV_VAR) is False


class TestFacadeMetrics:
    """Tests for the OTEL metrics wrapper."""

    def test_no_emission_when_disabled(self):
        """Disabled metrics never touch the meter."""
        metrics = FacadeMetrics()
        with patch("hnsw_facade.observability.metrics.get_meter") as get_meter:
            metrics.add_counter("hnsw_facade.operations")

        get_meter.assert_not_called()

    def test_counter_is_cached(self, monkeypatch):
        """Instruments are created once and reused."""
        monkeypatch.setenv(METRICS_ENV_VAR, "true")
        metrics = FacadeMetrics()
        with patch("hnsw_facade.observability.metrics.get_meter") as get_meter:
            metrics.add_counter(
                "hnsw_facade.operations", description="Operations", attributes={"ok": True}
            )
            metrics.add_counter("hnsw_facade.operations")

        meter = get_meter.return_value
        meter.create_counter.assert_called_once_with(
            name="hnsw_facade.operations", description="Operations", unit="1"
        )
        counter = meter.create_counter.return_value
        counter.add.assert_any_call(1, {"ok": "true"})

    def test_emission_errors_are_swallowed(self, monkeypatch):
        """A failing meter never breaks the caller."""
        monkeypatch.setenv(METRICS_ENV_VAR, "1")
        metrics = FacadeMetrics()
        with patch(
            "hnsw_facade.observability.metrics.get_meter", side_effect=RuntimeError("no sdk")
        ):
            metrics.record_histogram("hnsw_facade.operation.duration_ms", 1.5)


class TestObserveOperation:
    """Tests for the operation wrapper."""

    def test_records_status(self):
        """Successful and failing operations are counted with their status."""
        with patch("hnsw_facade.observability.facade_metrics") as metrics:
            with observe_operation("search", metric="l2"):
                pass
            with pytest.raises(ValueError):
                with observe_operation("search", metric="l2"):
                    raise ValueError("bad")

        statuses = [
            c.kwargs["attributes"]["status"] for c in metrics.add_counter.call_args_list
        ]
        assert statuses == ["ok", "error"]
        assert metrics.record_histogram.call_count == 2

    def test_instruments_carry_descriptions(self):
        """Operation counters and histograms are created with descriptions."""
        with patch("hnsw_facade.observability.facade_metrics") as metrics:
            with observe_operation("compact", metric="dot"):
                pass

        counter_call = metrics.add_counter.call_args
        histogram_call = metrics.record_histogram.call_args
        assert counter_call.args == ("hnsw_facade.operations",)
        assert counter_call.kwargs["description"]
        assert histogram_call.args[0] == "hnsw_facade.operation.duration_ms"
        assert histogram_call.kwargs["description"]

    def test_span_when_tracing_enabled(self, monkeypatch):
        """Tracing opens an hnsw_facade.<operation> span."""
        monkeypatch.setenv(TRACE_ENV_VAR, "on")
        with patch("hnsw_facade.observability.trace") as trace:
            tracer = MagicMock()
            trace.get_tracer.return_value = tracer
            with observe_operation("save", metric="cosine"):
                pass

        tracer.start_as_current_span.assert_called_once_with("hnsw_facade.save")
        span = tracer.start_as_current_span.return_value.__enter__.return_value
        span.set_attribute.assert_any_call("hnsw.operation", "save")
        span.set_attribute.assert_any_call("hnsw.status", "ok")

    def test_facade_operations_are_observed(self):
        """Facade calls go through the operation wrapper, including failures."""
        with patch("hnsw_facade.observability.facade_metrics") as metrics:
            with IndexFacade(IndexConfig(dimension=2), backend="brute_force") as index:
                index.insert([1.0, 0.0], 1)
                with pytest.raises(InvalidInputError):
                    index.search([1.0, 0.0], k=0)

        operations = [
            (c.kwargs["attributes"]["operation"], c.kwargs["attributes"]["status"])
            for c in metrics.add_counter.call_args_list
        ]
        assert ("insert", "ok") in operations
        assert ("search", "error") in operations
