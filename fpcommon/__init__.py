"""Numerical building blocks for the Broyden fixed-point solver.

The submodules provide the dense vector and matrix primitives, the
bound-variable abstraction and the rank-one inverse update.  They only depend
on :mod:`numpy` and can be used without the solver package.
"""

from .blas import daxpy, dcopy, ddot, dger, dgemv, dnrm2, dscal, dsum
from .bounds import BoundVariable, make_bound_variables, read_scaled_values, write_scaled_values
from .broyden_core import broyden_inverse_update
from .mtx import MatrixPool, mtx_l1norm, mtx_neg_identity, mtx_zero

__all__ = [
    "BoundVariable",
    "MatrixPool",
    "broyden_inverse_update",
    "daxpy",
    "dcopy",
    "ddot",
    "dger",
    "dgemv",
    "dnrm2",
    "dscal",
    "dsum",
    "make_bound_variables",
    "mtx_l1norm",
    "mtx_neg_identity",
    "mtx_zero",
    "read_scaled_values",
    "write_scaled_values",
]
