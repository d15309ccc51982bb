"""Index configuration.

IndexConfig is the immutable parameter bundle an engine is built from. The
defaults mirror the reference bindings; only ``dimension`` is required.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .env import get_env_int, get_env_str
from .errors import InvalidInputError

DEFAULT_MAX_CONNECTIONS = 16
DEFAULT_MAX_ELEMENTS = 10_000
DEFAULT_MAX_LAYERS = 16
DEFAULT_EF_CONSTRUCTION = 200
DEFAULT_EF_SEARCH_FLOOR = 50


class DistanceMetric(str, Enum):
    """Distance metric an engine is specialized for."""

    L2 = "l2"
    COSINE = "cosine"
    DOT = "dot"
    L1 = "l1"

    @classmethod
    def parse(cls, value: "DistanceMetric | str") -> "DistanceMetric":
        """Parse a metric from its enum value or name, case-insensitively."""
        if isinstance(value, DistanceMetric):
            return value
        normalized = str(value).strip().lower()
        for metric in cls:
            if normalized in (metric.value, metric.name.lower()):
                return metric
        supported = ", ".join(m.value for m in cls)
        raise InvalidInputError(
            f"unknown distance metric '{value}'. Supported values: {supported}"
        )


class IndexConfig(BaseModel):
    """Immutable configuration for one engine instance."""

    model_config = ConfigDict(frozen=True)

    dimension: int = Field(..., gt=0, lt=2**32, description="Vector dimensionality")
    max_elements: int = Field(
        DEFAULT_MAX_ELEMENTS, gt=0, lt=2**64, description="Initial engine capacity"
    )
    max_layers: int = Field(
        DEFAULT_MAX_LAYERS, gt=0, lt=2**32, description="Maximum graph layers"
    )
    max_connections: int = Field(
        DEFAULT_MAX_CONNECTIONS, gt=0, lt=2**32, description="M: edges per node per layer"
    )
    ef_construction: int = Field(
        DEFAULT_EF_CONSTRUCTION, gt=0, lt=2**32, description="Beam width used while building"
    )
    distance_metric: DistanceMetric = Field(
        DistanceMetric.L2, description="Distance metric, fixed for the engine lifetime"
    )

    @classmethod
    def from_env(cls, dimension: int, **overrides: Any) -> "IndexConfig":
        """Build a config from HNSW_* environment variables.

        Explicit keyword overrides win over environment values.

        Raises:
            InvalidInputError: If an environment variable holds a malformed value.
        """
        try:
            values: dict[str, Any] = {
                "dimension": dimension,
                "max_elements": get_env_int("HNSW_MAX_ELEMENTS", DEFAULT_MAX_ELEMENTS),
                "max_connections": get_env_int("HNSW_MAX_CONNECTIONS", DEFAULT_MAX_CONNECTIONS),
                "max_layers": get_env_int("HNSW_MAX_LAYERS", DEFAULT_MAX_LAYERS),
                "ef_construction": get_env_int("HNSW_EF_CONSTRUCTION", DEFAULT_EF_CONSTRUCTION),
            }
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc

        metric_name = get_env_str("HNSW_DISTANCE_METRIC")
        if metric_name:
            values["distance_metric"] = DistanceMetric.parse(metric_name)

        values.update(overrides)
        return cls(**values)

    def with_capacity(self, max_elements: int) -> "IndexConfig":
        """Return a copy with a different ``max_elements``."""
        return self.model_copy(update={"max_elements": max_elements})


def default_ef_search(k: int) -> int:
    """Return the search beam width used when the caller does not pass one."""
    return max(k, DEFAULT_EF_SEARCH_FLOOR)
