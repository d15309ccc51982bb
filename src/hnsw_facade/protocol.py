"""GraphEngine Protocol and SearchResult dataclass.

Defines the contract the facade requires from an ANN engine.
"""

from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple

import numpy as np

from .config import DistanceMetric, IndexConfig


@dataclass(frozen=True)
class SearchResult:
    """Result from a nearest-neighbor search.

    Attributes:
        id: Identifier of the matched vector.
        distance: Distance to the query (lower = closer).
    """

    id: int
    distance: float


class GraphEngine(Protocol):
    """Protocol for metric-specialized ANN engines.

    Implementations must provide:
    - create/load: Build a fresh engine or reload one from disk.
    - insert/insert_batch: Add vectors with their ids.
    - search: Find up to k nearest neighbors, ascending by distance.
    - save: Write the engine-owned graph and data files.
    - items: Export stored ids and vectors.
    """

    @classmethod
    def create(cls, config: IndexConfig) -> "GraphEngine":
        """Build an empty engine from a config."""
        ...

    @classmethod
    def load(
        cls, directory: str, basename: str, dimension: int, metric: DistanceMetric
    ) -> "GraphEngine":
        """Reload an engine from its graph and data files.

        Raises:
            LoadFailedError: If the files are missing or corrupt.
            DimensionMismatchError: If the stored dimension differs.
        """
        ...

    @property
    def metric(self) -> DistanceMetric:
        """Distance metric fixed at construction."""
        ...

    @property
    def searching_mode(self) -> bool:
        """Whether read-optimized mode is enabled."""
        ...

    def insert(self, vector: np.ndarray, id: int) -> None:
        """Insert one vector of shape (dimension,)."""
        ...

    def insert_batch(self, vectors: np.ndarray, ids: Sequence[int]) -> None:
        """Insert a (n_items, dimension) matrix of vectors."""
        ...

    def search(self, query: np.ndarray, k: int, ef_search: int) -> List[SearchResult]:
        """Search for up to k nearest neighbors, ascending by distance."""
        ...

    def save(self, directory: str, basename: str) -> None:
        """Write the graph and data files.

        Raises:
            SaveFailedError: If the files cannot be written.
        """
        ...

    def items(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (ids, vectors) for every stored element."""
        ...

    def is_empty(self) -> bool:
        """Return True if no vectors are stored."""
        ...

    def get_dimension(self) -> int:
        """Return the vector dimension."""
        ...

    def set_searching_mode(self, enabled: bool) -> None:
        """Signal that bulk insertion has concluded (or resumed)."""
        ...

    def __len__(self) -> int:
        """Return number of stored vectors."""
        ...
