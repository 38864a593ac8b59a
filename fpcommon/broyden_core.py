"""Python implementation of Broyden's inverse rank-one update."""

from __future__ import annotations

import numpy as np

from .blas import ddot, dger, dgemv

__all__ = ["broyden_inverse_update"]


def broyden_inverse_update(
    jinv: np.ndarray,
    del_x: np.ndarray,
    del_g: np.ndarray,
    jdg: np.ndarray,
    dxj: np.ndarray,
) -> np.ndarray:
    """Apply Broyden's "good" update to an inverse Jacobian in place.

    Parameters
    ----------
    jinv:
        Current inverse-Jacobian estimate of shape ``(n, n)``; updated in place.
    del_x:
        Last step taken in solver space.
    del_g:
        Change of the residual caused by that step.
    jdg, dxj:
        Work vectors of length ``n``.  On return ``jdg`` holds the scaled
        correction ``(del_x - J del_g) / (del_x . J del_g)`` and ``dxj`` holds
        ``del_x^T J`` (taken before the update).

    Returns
    -------
    numpy.ndarray
        ``jinv`` after ``J += outer(jdg, dxj)``.

    Notes
    -----
    A vanishing denominator is not guarded here; the division yields
    ``inf``/``nan`` entries and the caller decides how to recover.
    """

    dgemv(jinv, del_g, out=jdg)
    denom = ddot(del_x, jdg)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        np.subtract(del_x, jdg, out=jdg)
        jdg /= denom
        dgemv(jinv, del_x, out=dxj, trans=True)
        dger(1.0, jdg, dxj, jinv)
    return jinv
