# File: mbmdrc/indexing.py
# Location: mbmdrc/mbmdrc/indexing.py
"""
Mixed-radix cell indexing shared by fitting and prediction.

A model over features f_1..f_k with cardinalities (bases) b_1..b_k has
``prod(b)`` cells. A genotype tuple (g_1..g_k), each ``0 <= g_i < b_i``, is
flattened to

    index = g_1 + g_2 * b_1 + ... + g_k * (b_1 * ... * b_{k-1})

which is the 0-based position of the cell in the model's label and
prediction arrays. The first feature varies fastest.

Fitted models only store ``n_rows`` and ``n_cells``; ``bases_for`` rebuilds
the bases from them. Both the classifier and the predictor go through this
module so the two can never disagree on the layout.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from .errors import InvalidArgumentError

INVALID_CELL = -1


def bases_for(n_rows: int, n_cells: int, order: Optional[int] = None) -> List[int]:
    """
    Rebuild per-feature bases from stored cardinality metadata.

    One-feature models store ``n_rows == 1`` and have bases ``[n_cells]``.
    Two-feature models have bases ``[n_cells // n_rows, n_rows]``. Passing
    ``order`` settles the one case the metadata alone cannot: a two-feature
    model whose second feature has a single level also has ``n_rows == 1``.
    """
    if order == 1 or (order is None and n_rows == 1):
        return [int(n_cells)]
    if n_rows <= 0 or n_cells % n_rows != 0:
        raise InvalidArgumentError(
            [f"n_cells={n_cells} is not a positive multiple of n_rows={n_rows}"]
        )
    return [int(n_cells // n_rows), int(n_rows)]


def cardinality_metadata(bases: Sequence[int]) -> tuple:
    """Inverse of ``bases_for``: ``(n_rows, n_cells)`` for the given bases."""
    n_cells = int(np.prod(bases)) if len(bases) else 0
    n_rows = 1 if len(bases) == 1 else int(bases[-1])
    return n_rows, n_cells


def _multipliers(bases: Sequence[int]) -> np.ndarray:
    return np.cumprod([1] + [int(b) for b in bases[:-1]]).astype(np.int64)


def flat_index(genotypes: Sequence[int], bases: Sequence[int]) -> int:
    """Flat cell index of one genotype tuple."""
    if len(genotypes) != len(bases):
        raise InvalidArgumentError(
            [f"{len(genotypes)} genotype codes given for {len(bases)} bases"]
        )
    for g, b in zip(genotypes, bases):
        if not 0 <= g < b:
            raise InvalidArgumentError([f"genotype code {g} outside [0, {b})"])
    return int(np.dot(np.asarray(genotypes, dtype=np.int64), _multipliers(bases)))


def decode(index: int, bases: Sequence[int]) -> List[int]:
    """Genotype tuple of a flat cell index."""
    n_cells = int(np.prod(bases))
    if not 0 <= index < n_cells:
        raise InvalidArgumentError([f"cell index {index} outside [0, {n_cells})"])
    genotypes = []
    for b in bases:
        index, g = divmod(int(index), int(b))
        genotypes.append(g)
    return genotypes


def cell_indices(genotypes: np.ndarray, bases: Sequence[int]) -> np.ndarray:
    """
    Vectorised flat index for a genotype matrix.

    Parameters
    ----------
    genotypes : np.ndarray, shape (n, k)
        Per-feature positional codes, one column per model feature.
    bases : sequence of int, length k

    Returns
    -------
    np.ndarray of int64, shape (n,)
        Flat cell index, or ``INVALID_CELL`` (-1) for rows where any code is
        negative (missing) or not smaller than its feature's base. Such rows
        cannot alias a valid cell.
    """
    genotypes = np.asarray(genotypes, dtype=np.int64)
    if genotypes.ndim == 1:
        genotypes = genotypes.reshape(-1, 1)
    if genotypes.shape[1] != len(bases):
        raise InvalidArgumentError(
            [f"genotype matrix has {genotypes.shape[1]} columns for {len(bases)} bases"]
        )
    base_arr = np.asarray(bases, dtype=np.int64)
    valid = np.all((genotypes >= 0) & (genotypes < base_arr), axis=1)
    index = genotypes @ _multipliers(bases)
    return np.where(valid, index, INVALID_CELL)
