"""Thread-serialized HNSW index facade with soft deletion and persistence."""

from .config import DistanceMetric, IndexConfig
from .errors import (
    CompactMissingConfigError,
    DimensionMismatchError,
    DistanceMismatchError,
    EmptyIndexError,
    ErrorCode,
    HnswFacadeError,
    InvalidInputError,
    LoadFailedError,
    SaveFailedError,
)
from .facade import IndexFacade
from .protocol import GraphEngine, SearchResult
from .tombstones import TombstoneSet

__all__ = [
    "CompactMissingConfigError",
    "DimensionMismatchError",
    "DistanceMetric",
    "DistanceMismatchError",
    "EmptyIndexError",
    "ErrorCode",
    "GraphEngine",
    "HnswFacadeError",
    "IndexConfig",
    "IndexFacade",
    "InvalidInputError",
    "LoadFailedError",
    "SaveFailedError",
    "SearchResult",
    "TombstoneSet",
]
