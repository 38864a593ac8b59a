"""Bound variables mapping solver-space coordinates to physical values.

The solver works on *scaled* values: ``scaled = physical / scale``.  Every
variable carries an inclusive physical box ``[lower, upper]`` (either side may
be infinite).  Writes through the setters are clamped into the box, while the
:meth:`BoundVariable.is_out_of_bounds` predicate lets callers test a candidate
without touching the stored value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

__all__ = ["BoundVariable", "make_bound_variables", "read_scaled_values", "write_scaled_values"]


@dataclass
class BoundVariable:
    """One unknown of a fixed-point problem.

    Parameters
    ----------
    value:
        Initial physical value.  It is stored as given, even when it lies
        outside the box, so that a search may start from an infeasible point.
    lower, upper:
        Inclusive physical bounds.
    scale:
        Positive factor between solver space and physical space.
    name:
        Optional label used in the bounds clipper's log messages.
    """

    value: float
    lower: float = -math.inf
    upper: float = math.inf
    scale: float = 1.0
    name: str = ""
    _scaled: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.lower = float(self.lower)
        self.upper = float(self.upper)
        self.scale = float(self.scale)
        if self.lower > self.upper:
            raise ValueError(f"Lower bound {self.lower} exceeds upper bound {self.upper}")
        if not self.scale > 0.0:
            raise ValueError("The scale of a bound variable must be positive")
        self._scaled = float(self.value) / self.scale

    def _clamp(self, physical: float) -> float:
        # NaN passes through unchanged.
        if physical < self.lower:
            return self.lower
        if physical > self.upper:
            return self.upper
        return physical

    @property
    def scaled_value(self) -> float:
        return self._scaled

    @scaled_value.setter
    def scaled_value(self, scaled: float) -> None:
        self._scaled = self._clamp(float(scaled) * self.scale) / self.scale

    @property
    def physical_value(self) -> float:
        return self._scaled * self.scale

    def set_physical(self, physical: float) -> None:
        """Store a physical value, clamped into the box."""

        self._scaled = self.transform(physical)

    def transform(self, physical: float) -> float:
        """Map a physical value to solver space without storing it."""

        return self._clamp(float(physical)) / self.scale

    def is_out_of_bounds(self, candidate: float) -> bool:
        """Return ``True`` when the scaled *candidate* lies outside the box."""

        physical = float(candidate) * self.scale
        return physical < self.lower or physical > self.upper


def make_bound_variables(
    values: Sequence[float],
    lower: Sequence[float] | float = -math.inf,
    upper: Sequence[float] | float = math.inf,
    scale: Sequence[float] | float = 1.0,
) -> list[BoundVariable]:
    """Build one :class:`BoundVariable` per entry of *values*.

    Bounds and scales broadcast against *values*.
    """

    vals = np.asarray(values, dtype=float)
    if vals.ndim != 1:
        raise ValueError("Expected a one dimensional array of values")
    lo = np.broadcast_to(np.asarray(lower, dtype=float), vals.shape)
    hi = np.broadcast_to(np.asarray(upper, dtype=float), vals.shape)
    sc = np.broadcast_to(np.asarray(scale, dtype=float), vals.shape)
    return [
        BoundVariable(float(v), float(l), float(u), float(s), name=f"x{i}")
        for i, (v, l, u, s) in enumerate(zip(vals, lo, hi, sc))
    ]


def read_scaled_values(variables: Sequence[BoundVariable], out: np.ndarray) -> np.ndarray:
    """Copy the scaled values of *variables* into *out*."""

    if out.shape != (len(variables),):
        raise ValueError("Output buffer does not match the number of bound variables")
    for i, var in enumerate(variables):
        out[i] = var.scaled_value
    return out


def write_scaled_values(variables: Sequence[BoundVariable], values: Sequence[float]) -> None:
    """Assign *values* to the scaled values of *variables* (clamped)."""

    if len(values) != len(variables):
        raise ValueError("Value count does not match the number of bound variables")
    for var, value in zip(variables, values):
        var.scaled_value = value
