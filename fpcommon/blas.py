"""Subset of BLAS level-1/2 routines used by the Broyden solver.

Routines that produce vectors or matrices accept an optional ``out`` buffer so
that the solver can keep working in preallocated storage.  When ``out`` is
omitted a fresh array is returned.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

__all__ = ["daxpy", "dcopy", "ddot", "dger", "dgemv", "dnrm2", "dscal", "dsum"]


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _check_out(out: np.ndarray | None, shape: tuple[int, ...], name: str) -> np.ndarray:
    if out is None:
        return np.empty(shape, dtype=float)
    if out.shape != shape:
        raise ValueError(f"{name} output buffer has shape {out.shape}, expected {shape}")
    return out


def ddot(dx: Sequence[float], dy: Sequence[float]) -> float:
    """Dot product between two vectors."""

    dx_arr = _as_array(dx)
    dy_arr = _as_array(dy)
    if dx_arr.shape != dy_arr.shape:
        raise ValueError("ddot requires arrays of the same shape")
    return float(np.dot(dx_arr, dy_arr))


def dnrm2(dx: Sequence[float]) -> float:
    """Euclidean norm of *dx*."""

    return float(np.linalg.norm(_as_array(dx)))


def dsum(dx: Sequence[float]) -> float:
    """Plain component sum; signs are kept so opposite entries cancel."""

    return float(np.sum(_as_array(dx)))


def daxpy(
    da: float, dx: Sequence[float], dy: Sequence[float], out: np.ndarray | None = None
) -> np.ndarray:
    """Compute ``da * dx + dy``.

    ``out`` may alias ``dy`` to update it in place.
    """

    dx_arr = _as_array(dx)
    dy_arr = _as_array(dy)
    if dx_arr.shape != dy_arr.shape:
        raise ValueError("daxpy requires arrays of the same shape")
    result = _check_out(out, dy_arr.shape, "daxpy")
    np.add(da * dx_arr, dy_arr, out=result)
    return result


def dscal(da: float, dx: np.ndarray) -> np.ndarray:
    """Scale *dx* by *da* in place and return it."""

    dx *= da
    return dx


def dcopy(dx: Sequence[float], out: np.ndarray | None = None) -> np.ndarray:
    """Copy *dx* into *out* (or a new array)."""

    dx_arr = _as_array(dx)
    result = _check_out(out, dx_arr.shape, "dcopy")
    np.copyto(result, dx_arr)
    return result


def dgemv(
    a: np.ndarray, x: Sequence[float], out: np.ndarray | None = None, *, trans: bool = False
) -> np.ndarray:
    """Matrix-vector product ``a @ x`` or, with *trans*, ``a.T @ x``.

    The transposed form is the row-vector product ``x^T a``.
    """

    a_arr = np.asarray(a, dtype=float)
    x_arr = _as_array(x)
    if a_arr.ndim != 2:
        raise ValueError("dgemv expects a two dimensional matrix")
    rows, cols = a_arr.shape
    inner, outer = (rows, cols) if trans else (cols, rows)
    if x_arr.shape != (inner,):
        raise ValueError(f"dgemv vector has shape {x_arr.shape}, expected ({inner},)")
    result = _check_out(out, (outer,), "dgemv")
    if trans:
        np.dot(x_arr, a_arr, out=result)
    else:
        np.dot(a_arr, x_arr, out=result)
    return result


def dger(alpha: float, x: Sequence[float], y: Sequence[float], a: np.ndarray) -> np.ndarray:
    """Rank-one update ``a += alpha * outer(x, y)`` performed in place."""

    x_arr = _as_array(x)
    y_arr = _as_array(y)
    if a.shape != (x_arr.size, y_arr.size):
        raise ValueError(
            f"dger matrix has shape {a.shape}, expected ({x_arr.size}, {y_arr.size})"
        )
    a += alpha * np.outer(x_arr, y_arr)
    return a
