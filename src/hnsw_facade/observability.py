"""Optional low-cardinality metrics and spans for facade operations."""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from opentelemetry import metrics, trace

from .env import get_env_bool

logger = logging.getLogger(__name__)

METRICS_ENV_VAR = "HNSW_FACADE_METRICS"
TRACE_ENV_VAR = "HNSW_FACADE_TRACE"


def is_otel_exporter_configured() -> bool:
    """Return True when OTEL exporter environment indicates external export is configured."""
    if get_env_bool("OTEL_DISABLE_EXPORTER", False):
        return False
    endpoint = (os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip()
    return bool(endpoint)


def is_enabled(enabled_env_var: str) -> bool:
    """Resolve enablement with explicit override support."""
    raw = os.getenv(enabled_env_var)
    if raw is not None:
        try:
            return get_env_bool(enabled_env_var, False) is True
        except ValueError:
            logger.warning("Invalid %s value '%s'; treating as disabled.", enabled_env_var, raw)
            return False
    return is_otel_exporter_configured()


def _normalize_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            normalized[key] = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            normalized[key] = value
        else:
            normalized[key] = str(value)
    return normalized


@dataclass
class FacadeMetrics:
    """Thin wrapper around OTEL metrics with env-based enablement."""

    meter_name: str = "hnsw_facade"
    enabled_env_var: str = METRICS_ENV_VAR
    _meter: Any = None
    _instruments: dict[str, Any] = field(default_factory=dict)

    def _get_meter(self):
        if self._meter is None:
            self._meter = metrics.get_meter(self.meter_name)
        return self._meter

    def add_counter(
        self,
        name: str,
        value: int = 1,
        *,
        description: str = "",
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Add to a monotonic counter when metrics are enabled."""
        if not is_enabled(self.enabled_env_var):
            return
        try:
            counter = self._instruments.get(name)
            if counter is None:
                counter = self._get_meter().create_counter(
                    name=name, description=description, unit="1"
                )
                self._instruments[name] = counter
            counter.add(int(value), _normalize_attributes(attributes))
        except Exception as exc:
            logger.debug("Counter metric emission failed for %s: %s", name, exc)

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        description: str = "",
        unit: str = "ms",
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a histogram datapoint when metrics are enabled."""
        if not is_enabled(self.enabled_env_var):
            return
        try:
            histogram = self._instruments.get(name)
            if histogram is None:
                histogram = self._get_meter().create_histogram(
                    name=name, description=description, unit=unit
                )
                self._instruments[name] = histogram
            histogram.record(float(value), _normalize_attributes(attributes))
        except Exception as exc:
            logger.debug("Histogram metric emission failed for %s: %s", name, exc)


facade_metrics = FacadeMetrics()


@contextmanager
def observe_operation(operation: str, **attributes: Any) -> Iterator[None]:
    """Wrap a facade operation in an optional span and duration/count metrics."""
    attrs = _normalize_attributes({"operation": operation, **attributes})
    start = time.perf_counter()
    status = "ok"
    span_cm = None
    if is_enabled(TRACE_ENV_VAR):
        span_cm = trace.get_tracer("hnsw_facade").start_as_current_span(f"hnsw_facade.{operation}")

    try:
        if span_cm is None:
            yield
        else:
            with span_cm as span:
                for key, value in attrs.items():
                    span.set_attribute(f"hnsw.{key}", value)
                try:
                    yield
                except Exception:
                    span.set_attribute("hnsw.status", "error")
                    raise
                span.set_attribute("hnsw.status", "ok")
    except Exception:
        status = "error"
        raise
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        facade_metrics.add_counter(
            "hnsw_facade.operations",
            description="Facade operations by outcome",
            attributes={**attrs, "status": status},
        )
        facade_metrics.record_histogram(
            "hnsw_facade.operation.duration_ms",
            elapsed_ms,
            description="Facade operation time on the worker",
            attributes=attrs,
        )
