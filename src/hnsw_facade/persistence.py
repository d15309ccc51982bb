"""On-disk layout and codecs for persisted index state.

For a ``(directory, basename)`` pair an index occupies three files:

- ``<basename>.hnsw.graph``: engine-owned graph file.
- ``<basename>.hnsw.data``: engine-owned vector payload (numpy ``.npz``
  archive with a JSON header, written without pickle).
- ``<basename>.deleted``: tombstone sidecar, a sorted concatenation of
  8-byte little-endian uint64 ids.

Saving is not atomic across the three files.
"""

from __future__ import annotations

import json
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Set

import numpy as np
from pydantic import ValidationError

from .config import DistanceMetric, IndexConfig
from .errors import DimensionMismatchError, DistanceMismatchError, LoadFailedError, SaveFailedError

logger = logging.getLogger(__name__)

GRAPH_SUFFIX = ".hnsw.graph"
DATA_SUFFIX = ".hnsw.data"
TOMBSTONE_SUFFIX = ".deleted"

PAYLOAD_FORMAT_VERSION = 1
TOMBSTONE_DTYPE = np.dtype("<u8")

_REQUIRED_HEADER_KEYS = (
    "format_version",
    "engine",
    "metric",
    "dimension",
    "max_elements",
    "max_connections",
    "max_layers",
    "ef_construction",
)


@dataclass(frozen=True)
class IndexFiles:
    """Paths of the files that make up one persisted index."""

    directory: Path
    basename: str

    @classmethod
    def at(cls, directory: "str | Path", basename: str) -> "IndexFiles":
        return cls(Path(directory), basename)

    @property
    def graph(self) -> Path:
        return self.directory / f"{self.basename}{GRAPH_SUFFIX}"

    @property
    def data(self) -> Path:
        return self.directory / f"{self.basename}{DATA_SUFFIX}"

    @property
    def tombstones(self) -> Path:
        return self.directory / f"{self.basename}{TOMBSTONE_SUFFIX}"


# =============================================================================
# TOMBSTONE SIDECAR
# =============================================================================
def encode_tombstones(ids: Iterable[int]) -> bytes:
    """Encode ids as sorted 8-byte little-endian unsigned integers."""
    ordered = sorted(ids)
    return np.asarray(ordered, dtype=TOMBSTONE_DTYPE).tobytes()


def decode_tombstones(data: bytes) -> Optional[Set[int]]:
    """Decode sidecar bytes. Returns None when the length is not a multiple of 8."""
    if len(data) % TOMBSTONE_DTYPE.itemsize != 0:
        return None
    return {int(value) for value in np.frombuffer(data, dtype=TOMBSTONE_DTYPE)}


def write_tombstones(path: Path, ids: Iterable[int]) -> None:
    """Write the tombstone sidecar, truncating any previous file.

    Raises:
        SaveFailedError: If the file cannot be written.
    """
    try:
        path.write_bytes(encode_tombstones(ids))
    except OSError as exc:
        raise SaveFailedError(f"could not write tombstone sidecar {path}: {exc}") from exc


def read_tombstones(path: Path) -> Set[int]:
    """Read the tombstone sidecar.

    Missing, unreadable or size-inconsistent files yield an empty set; the
    sidecar is a recoverability aid, not the source of truth for vectors.
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        logger.debug("No tombstone sidecar at %s; starting with no deletions", path)
        return set()
    except OSError as exc:
        logger.warning("Unreadable tombstone sidecar %s (%s); ignoring it", path, exc)
        return set()

    ids = decode_tombstones(data)
    if ids is None:
        logger.warning(
            "Tombstone sidecar %s has %d bytes, not a multiple of %d; ignoring it",
            path,
            len(data),
            TOMBSTONE_DTYPE.itemsize,
        )
        return set()
    return ids


# =============================================================================
# ENGINE PAYLOAD
# =============================================================================
@dataclass(frozen=True)
class EnginePayload:
    """Vector payload and build parameters persisted in the data file."""

    engine: str
    metric: DistanceMetric
    dimension: int
    max_elements: int
    max_connections: int
    max_layers: int
    ef_construction: int
    ids: np.ndarray
    vectors: np.ndarray

    def header(self) -> Dict[str, Any]:
        return {
            "format_version": PAYLOAD_FORMAT_VERSION,
            "engine": self.engine,
            "metric": self.metric.value,
            "dimension": self.dimension,
            "max_elements": self.max_elements,
            "max_connections": self.max_connections,
            "max_layers": self.max_layers,
            "ef_construction": self.ef_construction,
        }

    def to_config(self) -> IndexConfig:
        """Rebuild the IndexConfig the engine was saved with.

        Raises:
            LoadFailedError: If the stored parameters are out of range.
        """
        try:
            return IndexConfig(
                dimension=self.dimension,
                max_elements=max(self.max_elements, len(self.ids), 1),
                max_layers=self.max_layers,
                max_connections=self.max_connections,
                ef_construction=self.ef_construction,
                distance_metric=self.metric,
            )
        except ValidationError as exc:
            raise LoadFailedError(f"stored build parameters are invalid: {exc}") from exc


def write_payload(path: Path, payload: EnginePayload) -> None:
    """Write the engine data file.

    Raises:
        SaveFailedError: If the file cannot be written.
    """
    try:
        with open(path, "wb") as f:
            np.savez(
                f,
                header=np.array(json.dumps(payload.header(), sort_keys=True)),
                ids=np.asarray(payload.ids, dtype=np.uint64),
                vectors=np.asarray(payload.vectors, dtype=np.float32),
            )
    except OSError as exc:
        raise SaveFailedError(f"could not write data file {path}: {exc}") from exc


def read_payload_header(path: Path) -> Dict[str, Any]:
    """Read only the JSON header of a data file.

    Raises:
        LoadFailedError: If the file is missing, corrupt or from an unknown format.
    """
    try:
        with np.load(path, allow_pickle=False) as archive:
            header = json.loads(archive["header"].item())
    except FileNotFoundError as exc:
        raise LoadFailedError(f"data file not found: {path}") from exc
    except (OSError, ValueError, KeyError, zipfile.BadZipFile) as exc:
        raise LoadFailedError(f"corrupt data file {path}: {exc}") from exc
    return _validate_header(path, header)


def read_payload(path: Path) -> EnginePayload:
    """Read a data file written by :func:`write_payload`.

    Raises:
        LoadFailedError: If the file is missing, corrupt or internally inconsistent.
    """
    header = read_payload_header(path)
    try:
        with np.load(path, allow_pickle=False) as archive:
            ids = np.asarray(archive["ids"], dtype=np.uint64)
            vectors = np.asarray(archive["vectors"], dtype=np.float32)
    except (OSError, ValueError, KeyError, zipfile.BadZipFile) as exc:
        raise LoadFailedError(f"corrupt data file {path}: {exc}") from exc

    dimension = int(header["dimension"])
    if vectors.ndim != 2 or vectors.shape[0] != ids.shape[0]:
        raise LoadFailedError(
            f"corrupt data file {path}: {ids.shape[0]} ids for vectors of shape {vectors.shape}"
        )
    if vectors.shape[0] and vectors.shape[1] != dimension:
        raise LoadFailedError(
            f"corrupt data file {path}: header dimension {dimension}, "
            f"vectors have {vectors.shape[1]}"
        )

    return EnginePayload(
        engine=str(header["engine"]),
        metric=DistanceMetric(header["metric"]),
        dimension=dimension,
        max_elements=int(header["max_elements"]),
        max_connections=int(header["max_connections"]),
        max_layers=int(header["max_layers"]),
        ef_construction=int(header["ef_construction"]),
        ids=ids,
        vectors=vectors.reshape(-1, dimension),
    )


def check_payload_matches(
    payload: EnginePayload, dimension: int, metric: DistanceMetric
) -> None:
    """Check a loaded payload against the caller's expected dimension and metric.

    Raises:
        DimensionMismatchError: If the stored dimension differs.
        DistanceMismatchError: If the stored metric differs.
    """
    if payload.dimension != dimension:
        raise DimensionMismatchError(expected=dimension, got=payload.dimension)
    if payload.metric != metric:
        raise DistanceMismatchError(expected=metric, got=payload.metric)


def _validate_header(path: Path, header: Any) -> Dict[str, Any]:
    if not isinstance(header, dict):
        raise LoadFailedError(f"corrupt data file {path}: header is not an object")
    missing = [key for key in _REQUIRED_HEADER_KEYS if key not in header]
    if missing:
        raise LoadFailedError(f"corrupt data file {path}: header missing {', '.join(missing)}")
    if header["format_version"] != PAYLOAD_FORMAT_VERSION:
        raise LoadFailedError(
            f"unsupported data file version {header['format_version']} in {path}"
        )
    try:
        DistanceMetric(header["metric"])
    except ValueError as exc:
        raise LoadFailedError(f"corrupt data file {path}: {exc}") from exc
    return header
