"""HNSW graph engine backed by hnswlib.

hnswlib supports the L2, cosine and inner-product spaces. Distances are
reported with the same conventions as the exact-scan engine:
    - L2: Euclidean distance (hnswlib returns the squared value)
    - Cosine: 1 - cosine similarity
    - Dot: 1 - inner product
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Sequence, Tuple

import numpy as np

from ..config import DistanceMetric, IndexConfig
from ..errors import DimensionMismatchError, InvalidInputError, LoadFailedError, SaveFailedError
from ..persistence import (
    EnginePayload,
    IndexFiles,
    check_payload_matches,
    read_payload,
    write_payload,
)
from ..protocol import SearchResult

if TYPE_CHECKING:
    import hnswlib  # noqa: F401

logger = logging.getLogger(__name__)

_SPACES: Dict[DistanceMetric, str] = {
    DistanceMetric.L2: "l2",
    DistanceMetric.COSINE: "cosine",
    DistanceMetric.DOT: "ip",
}


def _require_hnswlib():
    try:
        import hnswlib  # noqa: F811
    except ImportError:
        raise ImportError(
            "hnswlib is required for HnswlibEngine. " "Install with: pip install hnswlib"
        )
    return hnswlib


class HnswlibEngine:
    """Approximate nearest neighbor engine over an hnswlib graph.

    Re-inserting an existing id replaces its stored vector. Capacity grows
    automatically when an insert would exceed ``max_elements``.

    hnswlib has no layer-count parameter; ``max_layers`` is recorded in the
    data file but does not affect the graph.
    """

    ENGINE_KIND = "hnsw"
    SUPPORTED_METRICS = frozenset(_SPACES)

    # Insertion and search random seed, fixed so builds are reproducible.
    RANDOM_SEED = 100

    def __init__(self, index: "hnswlib.Index", config: IndexConfig) -> None:
        """Wrap an initialized hnswlib index. Use :meth:`create` or :meth:`load`."""
        self._index = index
        self._config = config
        self._searching_mode = False

    @classmethod
    def create(cls, config: IndexConfig) -> "HnswlibEngine":
        """Build an empty engine from a config.

        Raises:
            InvalidInputError: If the metric has no hnswlib space.
        """
        space = cls._space_for(config.distance_metric)
        hnswlib = _require_hnswlib()
        index = hnswlib.Index(space=space, dim=config.dimension)
        index.init_index(
            max_elements=config.max_elements,
            ef_construction=config.ef_construction,
            M=config.max_connections,
            random_seed=cls.RANDOM_SEED,
        )
        logger.info(
            "Created hnswlib engine (space=%s, dim=%d, max_elements=%d, M=%d)",
            space,
            config.dimension,
            config.max_elements,
            config.max_connections,
        )
        return cls(index, config)

    @classmethod
    def load(
        cls,
        directory: "str | Path",
        basename: str,
        dimension: int,
        metric: DistanceMetric,
    ) -> "HnswlibEngine":
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
        if not files.graph.is_file():
            raise LoadFailedError(f"graph file not found: {files.graph}")

        hnswlib = _require_hnswlib()
        index = hnswlib.Index(space=cls._space_for(metric), dim=dimension)
        try:
            index.load_index(str(files.graph), max_elements=config.max_elements)
        except (RuntimeError, OSError, ValueError, MemoryError) as exc:
            raise LoadFailedError(f"corrupt graph file {files.graph}: {exc}") from exc

        if index.get_current_count() != len(payload.ids):
            raise LoadFailedError(
                f"graph file {files.graph} holds {index.get_current_count()} elements, "
                f"data file holds {len(payload.ids)}"
            )

        logger.info("Loaded hnswlib engine from %s (%d elements)", files.graph, len(payload.ids))
        return cls(index, config)

    @staticmethod
    def _space_for(metric: DistanceMetric) -> str:
        space = _SPACES.get(metric)
        if space is None:
            raise InvalidInputError(f"hnswlib does not support the '{metric.value}' metric")
        return space

    @property
    def metric(self) -> DistanceMetric:
        return self._config.distance_metric

    @property
    def searching_mode(self) -> bool:
        return self._searching_mode

    def insert(self, vector: np.ndarray, id: int) -> None:
        """Insert one vector, replacing the stored vector if ``id`` exists."""
        matrix = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        self._add(matrix, [id], num_threads=1)

    def insert_batch(self, vectors: np.ndarray, ids: Sequence[int]) -> None:
        """Insert a (n_items, dimension) matrix using all available threads."""
        matrix = np.asarray(vectors, dtype=np.float32)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        if len(matrix) != len(ids):
            raise InvalidInputError(
                f"vectors and ids length mismatch: {len(matrix)} vs {len(ids)}"
            )
        if len(ids) == 0:
            return
        self._add(matrix, ids, num_threads=-1)

    def _add(self, matrix: np.ndarray, ids: Sequence[int], num_threads: int) -> None:
        if matrix.shape[1] != self._config.dimension:
            raise DimensionMismatchError(expected=self._config.dimension, got=matrix.shape[1])

        if self._searching_mode:
            logger.debug("Insert received in searching mode; resuming construction mode")
            self._searching_mode = False

        # Check capacity and resize if needed
        needed = self._index.get_current_count() + len(ids)
        capacity = self._index.get_max_elements()
        if needed > capacity:
            new_capacity = max(needed, capacity * 2)
            logger.info("Resizing hnswlib engine from %d to %d elements", capacity, new_capacity)
            self._index.resize_index(new_capacity)

        labels = np.asarray(ids, dtype=np.uint64)
        self._index.add_items(matrix, labels, num_threads=num_threads)

    def search(self, query: np.ndarray, k: int, ef_search: int) -> List[SearchResult]:
        """Return up to ``k`` approximate neighbors, ascending by distance."""
        count = self._index.get_current_count()
        if count == 0 or k <= 0:
            return []

        vector = np.asarray(query, dtype=np.float32).reshape(1, -1)
        if vector.shape[1] != self._config.dimension:
            raise DimensionMismatchError(expected=self._config.dimension, got=vector.shape[1])

        # Limit k to number of elements
        k = min(k, count)
        self._index.set_ef(max(ef_search, k))
        labels, distances = self._index.knn_query(vector, k=k, num_threads=1)

        row = distances[0]
        if self.metric is DistanceMetric.L2:
            row = np.sqrt(np.maximum(row, 0.0))

        return [
            SearchResult(id=int(label), distance=float(dist))
            for label, dist in zip(labels[0], row)
        ]

    def save(self, directory: "str | Path", basename: str) -> None:
        """Write ``<basename>.hnsw.graph`` and ``<basename>.hnsw.data``.

        Raises:
            SaveFailedError: If the directory is missing or a file cannot be written.
        """
        files = IndexFiles.at(directory, basename)
        # hnswlib does not report write failures, so check the target up front.
        if not files.directory.is_dir():
            raise SaveFailedError(f"directory does not exist: {files.directory}")

        try:
            self._index.save_index(str(files.graph))
        except (RuntimeError, OSError) as exc:
            raise SaveFailedError(f"could not write graph file {files.graph}: {exc}") from exc

        ids, vectors = self.items()
        write_payload(
            files.data,
            EnginePayload(
                engine=self.ENGINE_KIND,
                metric=self.metric,
                dimension=self._config.dimension,
                max_elements=self._index.get_max_elements(),
                max_connections=self._config.max_connections,
                max_layers=self._config.max_layers,
                ef_construction=self._config.ef_construction,
                ids=ids,
                vectors=vectors,
            ),
        )
        logger.debug("Saved hnswlib engine to %s (%d elements)", files.graph, len(ids))

    def items(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return stored (ids, vectors).

        For the cosine space hnswlib stores normalized vectors, so those are
        what is returned.
        """
        ids = np.asarray(self._index.get_ids_list(), dtype=np.uint64)
        if ids.size == 0:
            return ids, np.empty((0, self._config.dimension), dtype=np.float32)
        vectors = np.asarray(self._index.get_items(ids.tolist()), dtype=np.float32)
        return ids, vectors.reshape(-1, self._config.dimension)

    def is_empty(self) -> bool:
        return self._index.get_current_count() == 0

    def get_dimension(self) -> int:
        return self._config.dimension

    def set_searching_mode(self, enabled: bool) -> None:
        """Toggle read-optimized mode. hnswlib needs no extra work for it."""
        self._searching_mode = bool(enabled)
        logger.debug("hnswlib engine searching mode set to %s", self._searching_mode)

    def __len__(self) -> int:
        """Return number of stored vectors."""
        return self._index.get_current_count()
