"""Exact-scan engine.

O(n) search against every stored vector, for any supported metric. Used for
the L1 metric (hnswlib has no L1 space), for small datasets, and as a
baseline when checking approximate recall.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import DistanceMetric, IndexConfig
from ..errors import DimensionMismatchError, InvalidInputError, LoadFailedError, SaveFailedError
from ..persistence import (
    PAYLOAD_FORMAT_VERSION,
    EnginePayload,
    IndexFiles,
    check_payload_matches,
    read_payload,
    write_payload,
)
from ..protocol import SearchResult
from .distance import distance_function

logger = logging.getLogger(__name__)


class BruteForceEngine:
    """Exact nearest-neighbor search over a dense vector matrix.

    The graph file holds a small JSON manifest; vectors live in the data file.
    Re-inserting an existing id replaces its stored vector.
    """

    ENGINE_KIND = "brute_force"
    SUPPORTED_METRICS = frozenset(DistanceMetric)

    def __init__(
        self,
        config: IndexConfig,
        ids: Optional[Sequence[int]] = None,
        vectors: Optional[np.ndarray] = None,
    ) -> None:
        """Initialize an engine, optionally pre-populated with vectors."""
        self._config = config
        self._distance = distance_function(config.distance_metric)
        self._searching_mode = False
        self._ids: List[int] = []
        self._id_to_row: Dict[int, int] = {}
        self._vectors = np.empty((0, config.dimension), dtype=np.float32)
        if ids is not None and vectors is not None and len(ids):
            self.insert_batch(vectors, ids)

    @classmethod
    def create(cls, config: IndexConfig) -> "BruteForceEngine":
        logger.info(
            "Created brute-force engine (metric=%s, dim=%d)",
            config.distance_metric.value,
            config.dimension,
        )
        return cls(config)

    @classmethod
    def load(
        cls,
        directory: "str | Path",
        basename: str,
        dimension: int,
        metric: DistanceMetric,
    ) -> "BruteForceEngine":
        """Reload an engine saved by :meth:`save`.

        Raises:
            LoadFailedError: If either file is missing or corrupt, or they disagree.
            DimensionMismatchError: If the stored dimension differs from ``dimension``.
            DistanceMismatchError: If the stored metric differs from ``metric``.
        """
        files = IndexFiles.at(directory, basename)
        payload = read_payload(files.data)
        if payload.engine != cls.ENGINE_KIND:
            raise LoadFailedError(
                f"{files.data} was written by the '{payload.engine}' engine, "
                f"not '{cls.ENGINE_KIND}'"
            )
        check_payload_matches(payload, dimension, metric)
        config = payload.to_config()

        manifest = _read_manifest(files.graph)
        if manifest.get("engine") != cls.ENGINE_KIND or manifest.get("points") != len(payload.ids):
            raise LoadFailedError(
                f"graph file {files.graph} does not match data file {files.data}"
            )

        engine = cls(config, ids=[int(i) for i in payload.ids], vectors=payload.vectors)
        logger.info("Loaded brute-force engine from %s (%d elements)", files.graph, len(engine))
        return engine

    @property
    def metric(self) -> DistanceMetric:
        return self._config.distance_metric

    @property
    def searching_mode(self) -> bool:
        return self._searching_mode

    def insert(self, vector: np.ndarray, id: int) -> None:
        self.insert_batch(np.asarray(vector, dtype=np.float32).reshape(1, -1), [id])

    def insert_batch(self, vectors: np.ndarray, ids: Sequence[int]) -> None:
        """Add or replace vectors. Later duplicates within a batch win."""
        matrix = np.asarray(vectors, dtype=np.float32)
        # Ensure 2D (must happen before length check)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        if len(matrix) != len(ids):
            raise InvalidInputError(
                f"vectors and ids length mismatch: {len(matrix)} vs {len(ids)}"
            )
        if len(ids) == 0:
            return
        if matrix.shape[1] != self._config.dimension:
            raise DimensionMismatchError(expected=self._config.dimension, got=matrix.shape[1])

        self._searching_mode = False
        new_rows: List[np.ndarray] = []
        new_ids: List[int] = []
        pending: Dict[int, int] = {}
        for row_vector, raw_id in zip(matrix, ids):
            ident = int(raw_id)
            row = self._id_to_row.get(ident)
            if row is not None:
                self._vectors[row] = row_vector
            elif ident in pending:
                new_rows[pending[ident]] = row_vector
            else:
                pending[ident] = len(new_rows)
                new_rows.append(row_vector)
                new_ids.append(ident)

        if new_rows:
            start = len(self._ids)
            self._vectors = np.vstack([self._vectors, np.asarray(new_rows, dtype=np.float32)])
            for offset, ident in enumerate(new_ids):
                self._id_to_row[ident] = start + offset
            self._ids.extend(new_ids)

    def search(self, query: np.ndarray, k: int, ef_search: int) -> List[SearchResult]:
        """Return the exact ``k`` nearest neighbors. ``ef_search`` is ignored."""
        if not self._ids or k <= 0:
            return []

        vector = np.asarray(query, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self._config.dimension:
            raise DimensionMismatchError(expected=self._config.dimension, got=vector.shape[0])

        distances = self._distance(vector, self._vectors)
        k = min(k, len(self._ids))
        top = np.argsort(distances, kind="stable")[:k]
        return [
            SearchResult(id=self._ids[idx], distance=float(distances[idx])) for idx in top
        ]

    def save(self, directory: "str | Path", basename: str) -> None:
        """Write the JSON manifest graph file and the vector data file.

        Raises:
            SaveFailedError: If either file cannot be written.
        """
        files = IndexFiles.at(directory, basename)
        manifest = {
            "format_version": PAYLOAD_FORMAT_VERSION,
            "engine": self.ENGINE_KIND,
            "metric": self.metric.value,
            "points": len(self._ids),
        }
        try:
            files.graph.write_text(json.dumps(manifest, sort_keys=True))
        except OSError as exc:
            raise SaveFailedError(f"could not write graph file {files.graph}: {exc}") from exc

        ids, vectors = self.items()
        write_payload(
            files.data,
            EnginePayload(
                engine=self.ENGINE_KIND,
                metric=self.metric,
                dimension=self._config.dimension,
                max_elements=max(self._config.max_elements, len(ids)),
                max_connections=self._config.max_connections,
                max_layers=self._config.max_layers,
                ef_construction=self._config.ef_construction,
                ids=ids,
                vectors=vectors,
            ),
        )

    def items(self) -> Tuple[np.ndarray, np.ndarray]:
        return np.asarray(self._ids, dtype=np.uint64), self._vectors.copy()

    def is_empty(self) -> bool:
        return not self._ids

    def get_dimension(self) -> int:
        return self._config.dimension

    def set_searching_mode(self, enabled: bool) -> None:
        self._searching_mode = bool(enabled)

    def __len__(self) -> int:
        return len(self._ids)


def _read_manifest(path: Path) -> dict:
    try:
        manifest = json.loads(path.read_text())
    except FileNotFoundError as exc:
        raise LoadFailedError(f"graph file not found: {path}") from exc
    except (OSError, ValueError) as exc:
        raise LoadFailedError(f"corrupt graph file {path}: {exc}") from exc
    if not isinstance(manifest, dict):
        raise LoadFailedError(f"corrupt graph file {path}: manifest is not an object")
    return manifest
