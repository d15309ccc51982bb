"""Soft-delete bookkeeping for ids that are still physically in the engine."""

from __future__ import annotations

from typing import Iterable, Iterator, List, Optional, Set

from .errors import InvalidInputError

MAX_ID = 2**64 - 1


def validate_id(value: object) -> int:
    """Return ``value`` as an int in the uint64 range.

    Raises:
        InvalidInputError: If the value is not an integer id in [0, 2**64).
    """
    if isinstance(value, bool):
        raise InvalidInputError(f"id must be an integer, got {value!r}")
    try:
        ident = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"id must be an integer, got {value!r}") from exc
    if ident != value:
        raise InvalidInputError(f"id must be an integer, got {value!r}")
    if ident < 0 or ident > MAX_ID:
        raise InvalidInputError(f"id {ident} is outside the uint64 range")
    return ident


class TombstoneSet:
    """Set of ids marked deleted but still stored by the engine.

    An id in this set must never surface in search results or in counts.
    """

    __slots__ = ("_ids",)

    def __init__(self, ids: Optional[Iterable[int]] = None) -> None:
        self._ids: Set[int] = set()
        if ids is not None:
            self.update(ids)

    def add(self, ident: int) -> None:
        self._ids.add(validate_id(ident))

    def update(self, ids: Iterable[int]) -> None:
        validated = [validate_id(ident) for ident in ids]
        self._ids.update(validated)

    def discard(self, ident: int) -> bool:
        """Remove an id; return True if it was tombstoned."""
        if ident in self._ids:
            self._ids.remove(ident)
            return True
        return False

    def discard_many(self, ids: Iterable[int]) -> List[int]:
        """Remove ids; return the ones that were tombstoned."""
        removed = [ident for ident in dict.fromkeys(ids) if ident in self._ids]
        self._ids.difference_update(removed)
        return removed

    def clear(self) -> None:
        self._ids.clear()

    def sorted_ids(self) -> List[int]:
        """Return ids in ascending order."""
        return sorted(self._ids)

    def __contains__(self, ident: object) -> bool:
        return ident in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)

    def __repr__(self) -> str:
        return f"TombstoneSet(size={len(self._ids)})"
