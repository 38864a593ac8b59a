"""Matrix utilities for the inverse-Jacobian approximation."""

from __future__ import annotations

from typing import Dict, Iterator

import numpy as np

__all__ = ["MatrixPool", "mtx_l1norm", "mtx_neg_identity", "mtx_zero"]


def _ensure_matrix(a: np.ndarray) -> np.ndarray:
    if not isinstance(a, np.ndarray):
        raise TypeError("Expected a numpy array that can be modified in place")
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError("Expected a square matrix")
    return a


def mtx_neg_identity(a: np.ndarray) -> np.ndarray:
    """Overwrite *a* with the negative identity and return it."""

    arr = _ensure_matrix(a)
    arr.fill(0.0)
    np.fill_diagonal(arr, -1.0)
    return arr


def mtx_zero(a: np.ndarray) -> np.ndarray:
    """Overwrite *a* with zeros and return it."""

    arr = _ensure_matrix(a)
    arr.fill(0.0)
    return arr


def mtx_l1norm(a: np.ndarray) -> float:
    """Induced L1 norm: the largest absolute column sum.

    NaN entries propagate to the result so the norm doubles as a cheap
    finiteness test for the whole matrix.
    """

    arr = _ensure_matrix(np.asarray(a, dtype=float))
    if arr.size == 0:
        return 0.0
    column_sums = np.sum(np.abs(arr), axis=0)
    if np.isnan(column_sums).any():
        return float("nan")
    return float(np.max(column_sums))


class MatrixPool:
    """Square work matrices keyed by dimension.

    A matrix is allocated the first time a dimension is requested and the same
    object is handed out on every later request, so repeated searches of the
    same size never reallocate.  The pool does not reset contents; callers
    initialise the matrix they take.
    """

    def __init__(self) -> None:
        self._matrices: Dict[int, np.ndarray] = {}

    def get(self, size: int) -> np.ndarray:
        size = int(size)
        if size < 1:
            raise ValueError("Matrix dimension must be positive")
        matrix = self._matrices.get(size)
        if matrix is None:
            matrix = np.zeros((size, size), dtype=float)
            self._matrices[size] = matrix
        return matrix

    def __contains__(self, size: object) -> bool:
        return size in self._matrices

    def __len__(self) -> int:
        return len(self._matrices)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._matrices))
