"""
Unit tests for mixed-radix cell indexing.

Covers flat_index/decode as a bijection, vectorised cell_indices with
missing and out-of-range codes, and the bases <-> metadata round trip.
"""

from __future__ import annotations

import itertools

import numpy as np
import pytest

from mbmdrc.errors import InvalidArgumentError
from mbmdrc.indexing import (
    INVALID_CELL,
    bases_for,
    cardinality_metadata,
    cell_indices,
    decode,
    flat_index,
)

# ---------------------------------------------------------------------------
# flat_index / decode
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestFlatIndex:
    """Tests for single-tuple encoding and decoding."""

    @pytest.mark.parametrize("bases", [[3], [3, 3], [2, 4], [4, 1], [1, 5]])
    def test_bijection(self, bases):
        """Every genotype tuple maps to a distinct index in [0, prod(bases))."""
        seen = set()
        for genotypes in itertools.product(*[range(b) for b in bases]):
            index = flat_index(list(genotypes), bases)
            assert 0 <= index < int(np.prod(bases))
            assert decode(index, bases) == list(genotypes)
            seen.add(index)
        assert len(seen) == int(np.prod(bases))

    def test_first_feature_varies_fastest(self):
        """Incrementing the first code moves the index by one."""
        assert flat_index([0, 0], [3, 3]) == 0
        assert flat_index([1, 0], [3, 3]) == 1
        assert flat_index([0, 1], [3, 3]) == 3
        assert flat_index([2, 2], [3, 3]) == 8

    def test_code_out_of_range_raises(self):
        """A code not below its base is rejected."""
        with pytest.raises(InvalidArgumentError):
            flat_index([3, 0], [3, 3])

    def test_length_mismatch_raises(self):
        """Genotype tuple and bases must have equal length."""
        with pytest.raises(InvalidArgumentError):
            flat_index([0], [3, 3])

    def test_decode_out_of_range_raises(self):
        """decode rejects indices outside the genotype space."""
        with pytest.raises(InvalidArgumentError):
            decode(9, [3, 3])


# ---------------------------------------------------------------------------
# cell_indices
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCellIndices:
    """Tests for the vectorised indexer."""

    def test_matches_scalar_index(self):
        """Each row equals flat_index of that row."""
        genotypes = np.array([[0, 0], [2, 1], [1, 2], [2, 2]])
        expected = [flat_index(list(row), [3, 3]) for row in genotypes]
        np.testing.assert_array_equal(cell_indices(genotypes, [3, 3]), expected)

    def test_missing_codes_are_invalid(self):
        """Negative codes give INVALID_CELL instead of aliasing a valid cell."""
        genotypes = np.array([[-1, 0], [0, -9], [1, 1]])
        result = cell_indices(genotypes, [3, 3])
        assert result[0] == INVALID_CELL
        assert result[1] == INVALID_CELL
        assert result[2] == 4

    def test_codes_beyond_base_are_invalid(self):
        """Codes that were never seen in training do not wrap into other cells."""
        result = cell_indices(np.array([[3, 0], [0, 3]]), [3, 3])
        np.testing.assert_array_equal(result, [INVALID_CELL, INVALID_CELL])

    def test_one_dimensional_input(self):
        """A 1-D vector is treated as a single-feature model."""
        np.testing.assert_array_equal(cell_indices(np.array([0, 2, 1]), [3]), [0, 2, 1])

    def test_column_count_mismatch_raises(self):
        """The genotype matrix needs one column per base."""
        with pytest.raises(InvalidArgumentError):
            cell_indices(np.zeros((2, 3), dtype=int), [3, 3])


# ---------------------------------------------------------------------------
# Cardinality metadata
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCardinalityMetadata:
    """Tests for rebuilding bases from stored n_rows / n_cells."""

    @pytest.mark.parametrize("bases", [[3], [3, 3], [2, 3], [4, 2]])
    def test_round_trip(self, bases):
        """bases_for inverts cardinality_metadata."""
        n_rows, n_cells = cardinality_metadata(bases)
        assert bases_for(n_rows, n_cells, len(bases)) == bases

    def test_single_feature_metadata(self):
        """One-feature models store n_rows == 1."""
        assert cardinality_metadata([4]) == (1, 4)
        assert bases_for(1, 4) == [4]

    def test_order_resolves_single_level_second_feature(self):
        """A two-feature model whose second marker has one level keeps two bases."""
        n_rows, n_cells = cardinality_metadata([3, 1])
        assert (n_rows, n_cells) == (1, 3)
        assert bases_for(n_rows, n_cells, order=2) == [3, 1]

    def test_inconsistent_metadata_raises(self):
        """n_cells must be a multiple of n_rows."""
        with pytest.raises(InvalidArgumentError):
            bases_for(2, 5)
