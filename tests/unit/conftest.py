"""Unit test environment helpers."""

import pytest

_FACADE_ENV_VARS = (
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_DISABLE_EXPORTER",
    "HNSW_FACADE_METRICS",
    "HNSW_FACADE_TRACE",
    "HNSW_FACADE_BACKEND",
    "HNSW_MAX_ELEMENTS",
    "HNSW_MAX_CONNECTIONS",
    "HNSW_MAX_LAYERS",
    "HNSW_EF_CONSTRUCTION",
    "HNSW_DISTANCE_METRIC",
)


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Clear facade env vars so tests start from defaults with telemetry off."""
    for name in _FACADE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
