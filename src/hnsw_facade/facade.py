"""Serialized index facade with soft deletion, compaction and persistence.

Every public operation of one :class:`IndexFacade` runs on that facade's
single-worker executor, so operations are mutually exclusive and complete in
submission order no matter how many threads call in.
"""

from __future__ import annotations

import gc
import logging
import numbers
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional, Sequence, TypeVar, Union

import numpy as np

from .config import DistanceMetric, IndexConfig, default_ef_search
from .engines.factory import create_engine, load_engine
from .errors import (
    CompactMissingConfigError,
    DimensionMismatchError,
    DistanceMismatchError,
    InvalidInputError,
)
from .observability import facade_metrics, observe_operation
from .persistence import IndexFiles, read_tombstones, write_tombstones
from .protocol import SearchResult
from .tombstones import TombstoneSet, validate_id

if TYPE_CHECKING:
    from .protocol import GraphEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IndexFacade:
    """Thread-serialized handle to one metric-specialized graph engine.

    Adds what the engine lacks:
    1. Soft deletion: deleted ids are tombstoned and filtered from searches.
    2. Compaction: a shadow engine is rebuilt from live vectors and swapped in.
    3. Persistence: engine files plus a ``<basename>.deleted`` sidecar.

    Usage:
        with IndexFacade(IndexConfig(dimension=4)) as index:
            index.insert([1.0, 0.0, 0.0, 0.0], 0)
            results = index.search([1.0, 0.0, 0.0, 0.0], k=1)
    """

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        *,
        engine: "GraphEngine | None" = None,
        tombstones: Optional[TombstoneSet] = None,
        backend: Optional[str] = None,
    ) -> None:
        """Create a facade from a config, or wrap an existing engine.

        Args:
            config: Config to build a fresh engine from. When an engine is
                also given, the config is checked against it and remembered
                for later compaction.
            engine: Pre-built engine to own.
            tombstones: Initial tombstones (used when reloading from disk).
            backend: Engine backend override ("auto", "hnsw", "brute_force").

        Raises:
            InvalidInputError: If neither config nor engine is given.
            DimensionMismatchError: If config and engine dimensions differ.
            DistanceMismatchError: If config and engine metrics differ.
        """
        if engine is None:
            if config is None:
                raise InvalidInputError("an IndexConfig or an engine is required")
            engine = create_engine(config, backend)
        elif config is not None:
            _check_compatible(config, engine.get_dimension(), engine.metric)

        self._engine: "GraphEngine" = engine
        self._config = config
        self._tombstones = tombstones if tombstones is not None else TombstoneSet()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hnsw-facade")
        self._worker = threading.local()
        self._lifecycle_lock = threading.Lock()
        self._closed = False

    # =========================================================================
    # SERIALIZATION
    # =========================================================================
    def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        """Run ``func`` on the worker queue and block until it finishes."""
        if getattr(self._worker, "active", False):
            # Already on the worker: run inline rather than deadlock on our own queue.
            with observe_operation(operation, metric=self._engine.metric.value):
                return func(*args)

        with self._lifecycle_lock:
            if self._closed:
                raise InvalidInputError("index facade is closed")
            future = self._executor.submit(self._invoke, operation, func, args)
        return future.result()

    def _invoke(self, operation: str, func: Callable[..., T], args: tuple) -> T:
        self._worker.active = True
        with observe_operation(operation, metric=self._engine.metric.value):
            return func(*args)

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================
    def insert(self, vector: Sequence[float], id: int) -> None:
        """Insert one vector. A tombstoned ``id`` becomes live again.

        Raises:
            DimensionMismatchError: If ``len(vector)`` differs from the dimension.
            InvalidInputError: If the vector is not 1-D or the id is not a uint64.
        """
        self._run("insert", self._insert, vector, id)

    def insert_batch(self, vectors: Sequence[Sequence[float]], ids: Sequence[int]) -> None:
        """Insert many vectors at once; the engine may parallelize internally.

        Raises:
            InvalidInputError: If the lengths differ or an id is not a uint64.
            DimensionMismatchError: If the vector width differs from the dimension.
        """
        self._run("insert_batch", self._insert_batch, vectors, ids)

    def delete(self, ids: Union[int, Iterable[int]]) -> None:
        """Tombstone one id or an iterable of ids. Idempotent.

        Ids are not checked against the engine. Tombstoning an id that was
        never inserted still lowers :meth:`count` (floored at zero), while
        search keeps returning every inserted vector.

        Raises:
            InvalidInputError: If any id is not a uint64; nothing is deleted then.
        """
        self._run("delete", self._delete, ids)

    def search(
        self, query: Sequence[float], k: int, ef_search: Optional[int] = None
    ) -> List[SearchResult]:
        """Return up to ``k`` live neighbors of ``query``, ascending by distance.

        Args:
            query: Query vector of length ``dimension``.
            k: Number of neighbors wanted.
            ef_search: Search beam width. Defaults to ``max(k, 50)``.

        Returns:
            List of SearchResult. Tombstoned ids are never returned; when
            deletions cluster near the query fewer than ``k`` may come back.
        """
        return self._run("search", self._search, query, k, ef_search)

    def compact(self, config: Optional[IndexConfig] = None) -> None:
        """Rebuild the engine from live vectors only and drop all tombstones.

        All-or-nothing: if the rebuild fails, the previous engine and
        tombstones remain in place and the error is re-raised.

        Raises:
            CompactMissingConfigError: If no config is given or remembered.
            DimensionMismatchError: If the config dimension differs.
            DistanceMismatchError: If the config metric differs.
        """
        self._run("compact", self._compact, config)

    def save(self, directory: "str | Path", basename: str) -> None:
        """Write the engine files, then the tombstone sidecar.

        An engine with no vectors is saved too, so a compaction that dropped
        every vector replaces the files of an earlier save.

        Not atomic across files: a sidecar failure after the engine files
        were written leaves them in place.

        Raises:
            SaveFailedError: If any file cannot be written.
        """
        self._run("save", self._save, directory, basename)

    @classmethod
    def load(
        cls,
        directory: "str | Path",
        basename: str,
        dimension: int,
        distance_metric: "DistanceMetric | str",
        config: Optional[IndexConfig] = None,
    ) -> "IndexFacade":
        """Reconstruct a facade from files written by :meth:`save`.

        Args:
            directory: Directory holding the files.
            basename: Shared file basename.
            dimension: Expected vector dimension.
            distance_metric: Expected distance metric.
            config: Optional config, checked against the arguments and
                remembered for compaction.

        Raises:
            DimensionMismatchError: If config or stored dimension differs.
            InvalidInputError: If config or stored metric differs.
            LoadFailedError: If the engine files are missing or corrupt.
        """
        metric = DistanceMetric.parse(distance_metric)
        dimension = _positive_int("dimension", dimension)

        with observe_operation("load", metric=metric.value):
            if config is not None:
                _check_compatible(config, dimension, metric)

            engine = load_engine(directory, basename, dimension, metric)
            files = IndexFiles.at(directory, basename)
            tombstones = TombstoneSet(read_tombstones(files.tombstones))
            logger.info(
                "Loaded index %s from %s (%d stored, %d tombstoned)",
                basename,
                directory,
                len(engine),
                len(tombstones),
            )
            return cls(config, engine=engine, tombstones=tombstones)

    def count(self) -> int:
        """Return the number of live vectors."""
        return self._run("count", self._count)

    def is_empty(self) -> bool:
        return self._run("is_empty", lambda: self._count() == 0)

    def get_dimension(self) -> int:
        return self._run("get_dimension", self._engine_dimension)

    def set_searching_mode(self, enabled: bool) -> None:
        """Tell the engine bulk insertion has concluded (or resumed).

        Call with True before issuing concurrent searches after batch
        construction.
        """
        self._run("set_searching_mode", self._set_searching_mode, bool(enabled))

    def deleted_ids(self) -> List[int]:
        """Return a sorted snapshot of tombstoned ids."""
        return self._run("deleted_ids", self._tombstones.sorted_ids)

    @property
    def metric(self) -> DistanceMetric:
        """Distance metric, fixed for the facade lifetime."""
        return self._engine.metric

    @property
    def config(self) -> Optional[IndexConfig]:
        """Config remembered for compaction, if any."""
        return self._config

    def close(self) -> None:
        """Stop the worker thread. Queued operations finish first."""
        with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
        in_worker = getattr(self._worker, "active", False)
        self._executor.shutdown(wait=not in_worker)

    def __enter__(self) -> "IndexFacade":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __len__(self) -> int:
        """Return number of live vectors."""
        return self.count()

    def __repr__(self) -> str:
        return (
            f"IndexFacade(metric={self._engine.metric.value}, "
            f"engine={type(self._engine).__name__}, closed={self._closed})"
        )

    def __del__(self) -> None:
        """Cleanup on deletion."""
        try:
            self._executor.shutdown(wait=False)
        except Exception:
            pass

    # =========================================================================
    # WORKER-SIDE IMPLEMENTATIONS
    # =========================================================================
    def _engine_dimension(self) -> int:
        return self._engine.get_dimension()

    def _as_vector(self, vector: Sequence[float]) -> np.ndarray:
        try:
            array = np.asarray(vector, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"vector must be numeric: {exc}") from exc
        if array.ndim != 1:
            raise InvalidInputError(f"vector must be 1-D, got shape {array.shape}")
        dimension = self._engine_dimension()
        if array.shape[0] != dimension:
            raise DimensionMismatchError(expected=dimension, got=array.shape[0])
        return array

    def _insert(self, vector: Sequence[float], id: int) -> None:
        array = self._as_vector(vector)
        ident = validate_id(id)
        self._engine.insert(array, ident)
        if self._tombstones.discard(ident):
            logger.debug("Resurrected tombstoned id %d", ident)

    def _insert_batch(self, vectors: Sequence[Sequence[float]], ids: Sequence[int]) -> None:
        if len(vectors) != len(ids):
            raise InvalidInputError(
                f"vectors and ids length mismatch: {len(vectors)} vs {len(ids)}"
            )
        if len(ids) == 0:
            return

        try:
            matrix = np.asarray(vectors, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"vectors must be a numeric matrix: {exc}") from exc
        if matrix.ndim != 2:
            raise InvalidInputError(f"vectors must be 2-D, got shape {matrix.shape}")
        dimension = self._engine_dimension()
        if matrix.shape[1] != dimension:
            raise DimensionMismatchError(expected=dimension, got=matrix.shape[1])
        idents = [validate_id(ident) for ident in ids]

        resurrected = self._tombstones.discard_many(idents)
        try:
            self._engine.insert_batch(matrix, idents)
        except Exception:
            self._tombstones.update(resurrected)
            raise
        logger.debug("Inserted batch of %d (%d resurrected)", len(idents), len(resurrected))

    def _delete(self, ids: Union[int, Iterable[int]]) -> None:
        if isinstance(ids, (numbers.Integral, np.integer)):
            self._tombstones.add(ids)
            return
        try:
            candidates = list(ids)
        except TypeError as exc:
            raise InvalidInputError("ids must be an integer or an iterable of integers") from exc
        self._tombstones.update(candidates)

    def _search(
        self, query: Sequence[float], k: int, ef_search: Optional[int]
    ) -> List[SearchResult]:
        k = _positive_int("k", k)
        ef = default_ef_search(k) if ef_search is None else _positive_int("ef_search", ef_search)
        vector = self._as_vector(query)
        if self._engine.is_empty():
            return []

        # The engine cannot filter by id, so over-fetch to make room for tombstones.
        fetch = k + min(len(self._tombstones), k)
        candidates = self._engine.search(vector, fetch, max(ef, fetch))
        results = [r for r in candidates if r.id not in self._tombstones][:k]

        if len(results) < k and self._count() >= k:
            logger.warning(
                "Search returned %d of %d results; tombstones cluster near the query. "
                "Consider compacting.",
                len(results),
                k,
            )
            facade_metrics.add_counter(
                "hnsw_facade.search.underfilled",
                description="Searches that returned fewer than k results",
                attributes={"metric": self.metric.value},
            )
        return results

    def _compact(self, config: Optional[IndexConfig]) -> None:
        resolved = config if config is not None else self._config
        if resolved is None:
            raise CompactMissingConfigError()
        _check_compatible(resolved, self._engine_dimension(), self._engine.metric)

        old_engine = self._engine
        ids, vectors = old_engine.items()
        seen: set[int] = set()
        keep: List[int] = []
        for row, ident in enumerate(ids.tolist()):
            if ident in self._tombstones or ident in seen:
                continue
            seen.add(ident)
            keep.append(row)

        build_config = resolved.with_capacity(max(resolved.max_elements, len(keep)))
        new_engine: "GraphEngine | None" = None
        try:
            # 1. Shadow Build: build the new engine without touching the live one
            logger.info(
                "Compacting: rebuilding %d live of %d stored vectors", len(keep), len(ids)
            )
            new_engine = type(old_engine).create(build_config)
            if keep:
                new_engine.insert_batch(vectors[keep], [int(i) for i in ids[keep]])
            new_engine.set_searching_mode(old_engine.searching_mode)
        except Exception as e:
            logger.error(f"Compaction rebuild failed; keeping previous engine: {e}")
            if new_engine is not None:
                del new_engine
                gc.collect()
            raise

        # 2. Swap: the worker queue already excludes every other operation
        self._engine = new_engine
        dropped = len(self._tombstones)
        self._tombstones.clear()
        self._config = resolved
        logger.info(
            "Compaction finished: %d live vectors, %d tombstones dropped", len(keep), dropped
        )

        # 3. Garbage Collection: dispose of the old engine
        # For hnswlib, the C++ destructor will be called
        del old_engine
        gc.collect()

    def _save(self, directory: "str | Path", basename: str) -> None:
        self._engine.save(directory, basename)
        files = IndexFiles.at(directory, basename)
        write_tombstones(files.tombstones, self._tombstones)
        logger.info(
            "Saved index %s to %s (%d stored, %d tombstoned)",
            basename,
            directory,
            len(self._engine),
            len(self._tombstones),
        )

    def _count(self) -> int:
        return max(len(self._engine) - len(self._tombstones), 0)

    def _set_searching_mode(self, enabled: bool) -> None:
        self._engine.set_searching_mode(enabled)


def _check_compatible(config: IndexConfig, dimension: int, metric: DistanceMetric) -> None:
    if config.dimension != dimension:
        raise DimensionMismatchError(expected=dimension, got=config.dimension)
    if config.distance_metric != metric:
        raise DistanceMismatchError(expected=metric, got=config.distance_metric)


def _positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (numbers.Integral, np.integer)):
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    if value <= 0:
        raise InvalidInputError(f"{name} must be a positive integer, got {value}")
    return int(value)
