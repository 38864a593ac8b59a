"""Exceptions raised by the Broyden solver."""

from __future__ import annotations

__all__ = ["BroydenError", "DimensionError", "NumericalDivergenceError"]


class BroydenError(Exception):
    """Base class for solver failures."""


class NumericalDivergenceError(BroydenError, ArithmeticError):
    """A residual contained NaN or infinite components."""

    def __init__(self, message: str, *, indices: tuple[int, ...] = ()) -> None:
        super().__init__(message)
        self.indices = indices


class DimensionError(BroydenError, ValueError):
    """Problem size does not fit the solver buffers or the inverse Jacobian."""
