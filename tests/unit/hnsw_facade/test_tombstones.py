"""Tests for TombstoneSet and id validation."""

import numpy as np
import pytest
from hnsw_facade.errors import InvalidInputError
from hnsw_facade.tombstones import MAX_ID, TombstoneSet, validate_id


class TestValidateId:
    """Tests for uint64 id validation."""

    @pytest.mark.parametrize("value", [0, 1, MAX_ID, np.uint64(7), np.int32(3)])
    def test_accepts_uint64_range(self, value):
        """Integers in [0, 2**64) are accepted and returned as int."""
        result = validate_id(value)
        assert result == int(value)
        assert type(result) is int

    @pytest.mark.parametrize("value", [-1, MAX_ID + 1, 1.5, "3", None, True])
    def test_rejects_others(self, value):
        """Negative, oversized, fractional, string, None and bool ids are rejected."""
        with pytest.raises(InvalidInputError):
            validate_id(value)


class TestTombstoneSet:
    """Tests for TombstoneSet."""

    def test_add_is_idempotent(self):
        """Adding the same id twice keeps one entry."""
        tombstones = TombstoneSet()
        tombstones.add(5)
        tombstones.add(5)

        assert len(tombstones) == 1
        assert 5 in tombstones

    def test_update_validates_before_mutating(self):
        """A bad id in a batch leaves the set unchanged."""
        tombstones = TombstoneSet([1])
        with pytest.raises(InvalidInputError):
            tombstones.update([2, -3])

        assert tombstones.sorted_ids() == [1]

    def test_discard(self):
        """discard reports whether the id was tombstoned."""
        tombstones = TombstoneSet([1, 2])

        assert tombstones.discard(1) is True
        assert tombstones.discard(1) is False
        assert tombstones.sorted_ids() == [2]

    def test_discard_many(self):
        """discard_many returns only the ids that were present, once each."""
        tombstones = TombstoneSet([1, 2, 3])

        removed = tombstones.discard_many([3, 9, 3, 1])

        assert removed == [3, 1]
        assert tombstones.sorted_ids() == [2]

    def test_clear_and_iter(self):
        """Iteration yields members; clear empties the set."""
        tombstones = TombstoneSet([10, 2])

        assert set(tombstones) == {2, 10}
        tombstones.clear()
        assert len(tombstones) == 0
