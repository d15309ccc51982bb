"""Factory for creating and reloading GraphEngine instances.

Uses the HNSW_FACADE_BACKEND environment variable to select the backend
when none is passed explicitly.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Type

from ..config import DistanceMetric, IndexConfig
from ..env import get_env_str
from ..errors import InvalidInputError, LoadFailedError
from ..persistence import IndexFiles, read_payload_header
from .brute_force import BruteForceEngine
from .hnsw import HnswlibEngine

if TYPE_CHECKING:
    from ..protocol import GraphEngine

BACKEND_ENV_VAR = "HNSW_FACADE_BACKEND"
SUPPORTED_BACKENDS = ("auto", "hnsw", "brute_force")

ENGINE_CLASSES: Dict[str, Type["GraphEngine"]] = {
    HnswlibEngine.ENGINE_KIND: HnswlibEngine,
    BruteForceEngine.ENGINE_KIND: BruteForceEngine,
}


def resolve_backend(backend: Optional[str] = None) -> str:
    """Return the normalized backend name.

    Raises:
        InvalidInputError: If the backend is unknown.
    """
    if backend is None:
        backend = get_env_str(BACKEND_ENV_VAR, "auto") or "auto"

    backend = backend.lower().strip()
    if backend not in SUPPORTED_BACKENDS:
        raise InvalidInputError(
            f"unknown {BACKEND_ENV_VAR}: '{backend}'. "
            f"Supported values: {', '.join(SUPPORTED_BACKENDS)}"
        )
    return backend


def engine_class_for(
    metric: DistanceMetric, backend: Optional[str] = None
) -> Type["GraphEngine"]:
    """Select the engine class specialized for ``metric``.

    ``auto`` picks hnswlib for every metric it supports and the exact-scan
    engine otherwise.

    Raises:
        InvalidInputError: If the backend is unknown or cannot serve the metric.
    """
    backend = resolve_backend(backend)
    if backend == "brute_force":
        return BruteForceEngine
    if metric in HnswlibEngine.SUPPORTED_METRICS:
        return HnswlibEngine
    if backend == "hnsw":
        raise InvalidInputError(f"the hnsw backend does not support the '{metric.value}' metric")
    return BruteForceEngine


def create_engine(config: IndexConfig, backend: Optional[str] = None) -> "GraphEngine":
    """Create an empty engine for ``config``."""
    return engine_class_for(config.distance_metric, backend).create(config)


def load_engine(
    directory: "str | Path",
    basename: str,
    dimension: int,
    metric: DistanceMetric,
) -> "GraphEngine":
    """Reload an engine, dispatching on the engine kind recorded in its data file.

    Raises:
        LoadFailedError: If the files are missing, corrupt or of an unknown kind.
        DimensionMismatchError: If the stored dimension differs.
        DistanceMismatchError: If the stored metric differs.
    """
    header = read_payload_header(IndexFiles.at(directory, basename).data)
    engine_cls = ENGINE_CLASSES.get(str(header["engine"]))
    if engine_cls is None:
        raise LoadFailedError(f"unknown engine kind '{header['engine']}'")
    return engine_cls.load(directory, basename, dimension, metric)
