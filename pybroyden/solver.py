"""Bounded, adaptively damped Broyden iteration for fixed points ``f(x) = x``.

The solver never forms a Jacobian.  It keeps an approximation of the inverse
Jacobian of the residual ``g(x) = f(x) - x`` and refines it with Broyden's
rank-one update after every step.  Steps are halved until they respect the
bounds of every variable, may be refined by a short backtracking search, and a
global scale factor is halved whenever the residual regresses so that a
diverging search terminates.

A :class:`BroydenSolver` owns fixed-size work buffers that are reused by every
search.  It is therefore not reentrant: concurrent searches need one solver
instance each.
"""

from __future__ import annotations

import enum
import logging
import math
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from fpcommon.blas import daxpy, dcopy, dgemv, dnrm2, dscal, dsum
from fpcommon.bounds import BoundVariable, make_bound_variables, read_scaled_values, write_scaled_values
from fpcommon.broyden_core import broyden_inverse_update
from fpcommon.mtx import MatrixPool, mtx_l1norm, mtx_neg_identity, mtx_zero

from .config import SolverConfig
from .errors import DimensionError, NumericalDivergenceError

LOGGER = logging.getLogger(__name__)

FixedPointFunction = Callable[[np.ndarray, np.ndarray], Optional[np.ndarray]]

__all__ = [
    "BroydenSolver",
    "FixedPointFunction",
    "ScaleFactor",
    "SearchResult",
    "SearchStatus",
    "StepResult",
    "StepStatus",
    "solve_fixed_point",
]


class StepStatus(enum.Enum):
    FIRST_ITERATION = "first_iteration"
    CONTINUE = "continue"
    CONVERGED = "converged"
    STAGNATED = "stagnated"
    BOUNDS_EXHAUSTED = "bounds_exhausted"
    STEP_EXHAUSTED = "step_exhausted"


class SearchStatus(enum.Enum):
    FINISHED = "finished"
    SCALE_EXHAUSTED = "scale_exhausted"
    MAX_STEPS = "max_steps"


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one Broyden step.

    ``residual_norm`` is ``None`` only for the first step of a search, whose
    residual must not take part in divergence bookkeeping.
    """

    status: StepStatus
    residual_norm: float | None
    keep_going: bool

    @classmethod
    def first(cls) -> StepResult:
        return cls(StepStatus.FIRST_ITERATION, None, True)

    @property
    def first_iteration(self) -> bool:
        return self.status is StepStatus.FIRST_ITERATION


@dataclass(slots=True)
class SearchResult:
    """Outcome of a complete fixed-point search."""

    residual_norm: float
    converged: bool
    steps: int
    scale_factor: float
    best_residual_norm: float
    status: SearchStatus
    step_status: StepStatus
    residual_history: list[float] = field(default_factory=list)
    scale_history: list[float] = field(default_factory=list)


@dataclass(slots=True)
class ScaleFactor:
    """Mutable step-scale cell shared by the driver and the bounds clipper."""

    value: float = 1.0

    def halve(self) -> float:
        self.value *= 0.5
        return self.value


class BroydenSolver:
    """Reusable Broyden engine for problems with up to *max_length* unknowns.

    Parameters
    ----------
    max_length:
        Capacity of the work buffers.  Searches over fewer variables use the
        leading part of every buffer.
    config:
        Tuning constants; defaults to :class:`SolverConfig`.
    """

    def __init__(self, max_length: int, config: SolverConfig | None = None) -> None:
        if int(max_length) < 1:
            raise ValueError("max_length must be positive")
        self.max_length = int(max_length)
        self.config = config if config is not None else SolverConfig()

        size = self.max_length
        self._del_x = np.zeros(size, dtype=float)
        self._last_gx = np.zeros(size, dtype=float)
        self._initial_x = np.zeros(size, dtype=float)
        self._jdg = np.zeros(size, dtype=float)
        self._dxj = np.zeros(size, dtype=float)
        self._del_g = np.zeros(size, dtype=float)
        self._new_dx = np.zeros(size, dtype=float)
        self._x = np.zeros(size, dtype=float)
        self._gx = np.zeros(size, dtype=float)
        self._fx = np.zeros(size, dtype=float)
        self._first_loop = True

    @property
    def first_loop(self) -> bool:
        return self._first_loop

    def reset(self) -> None:
        """Make the next :meth:`step` start a new search."""

        self._first_loop = True

    def _clear(self, n: int) -> None:
        for buffer in (
            self._del_x,
            self._last_gx,
            self._initial_x,
            self._jdg,
            self._dxj,
            self._del_g,
            self._new_dx,
            self._x,
            self._gx,
            self._fx,
        ):
            buffer[:n] = 0.0

    def _check_dimension(self, n: int, inverse_jacobian: np.ndarray) -> np.ndarray:
        if n < 1:
            raise DimensionError("At least one bound variable is required")
        if n > self.max_length:
            raise DimensionError(
                f"Problem has {n} variables but the solver was sized for {self.max_length}"
            )
        if inverse_jacobian.ndim != 2 or min(inverse_jacobian.shape) < n:
            raise DimensionError(
                f"Inverse Jacobian of shape {inverse_jacobian.shape} cannot hold a {n}x{n} problem"
            )
        return inverse_jacobian[:n, :n]

    def _validate(self, gx: np.ndarray) -> None:
        if not self.config.check_finite:
            return
        bad = np.flatnonzero(~np.isfinite(gx))
        if bad.size:
            indices = tuple(int(i) for i in bad)
            raise NumericalDivergenceError(
                f"Residual has non-finite components at indices {list(indices)}", indices=indices
            )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def evaluate_residual(
        self, func: FixedPointFunction, x: np.ndarray, bound_vars: Sequence[BoundVariable]
    ) -> np.ndarray:
        """Return ``transform(f(x)) - x`` as a new array.

        ``func`` receives a read-only view of *x* and the solver's output
        buffer.  It may fill the buffer or return the values instead.
        """

        n = len(bound_vars)
        x_arr = np.asarray(x, dtype=float)
        if x_arr.shape != (n,):
            raise ValueError(f"Point has shape {x_arr.shape}, expected ({n},)")

        x_view = x_arr.view()
        x_view.flags.writeable = False
        fx = self._fx[:n]
        returned = func(x_view, fx)
        if returned is not None:
            returned = np.asarray(returned, dtype=float)
            if returned.shape != (n,):
                raise ValueError(f"Function returned shape {returned.shape}, expected ({n},)")
            np.copyto(fx, returned)

        gx = np.empty(n, dtype=float)
        for i, var in enumerate(bound_vars):
            gx[i] = var.transform(fx[i])
        gx -= x_arr
        return gx

    def update_inverse_jacobian(
        self, inverse_jacobian: np.ndarray, del_x: np.ndarray, del_g: np.ndarray
    ) -> bool:
        """Apply the Broyden update; zero the matrix if it breaks down.

        Returns ``False`` when the updated matrix was not finite and had to be
        discarded.
        """

        n = del_x.shape[0]
        broyden_inverse_update(inverse_jacobian, del_x, del_g, self._jdg[:n], self._dxj[:n])
        norm = mtx_l1norm(inverse_jacobian)
        if not math.isfinite(norm):
            LOGGER.debug("Inverse Jacobian update broke down (L1 norm %s); resetting to zero", norm)
            mtx_zero(inverse_jacobian)
            return False
        return True

    def clip_to_bounds(
        self,
        initial_x: np.ndarray,
        new_dx: np.ndarray,
        bound_vars: Sequence[BoundVariable],
        scale: ScaleFactor,
    ) -> bool:
        """Halve *new_dx* in place until ``initial_x - new_dx`` is feasible.

        Every halving also halves *scale*.  Returns ``False`` when the step
        decayed to the noise floor while still infeasible, or when the step is
        not finite and halving can never make it feasible.
        """

        halvings = 0
        violator = self._first_violation(initial_x, new_dx, bound_vars)
        blocking = violator
        while violator is not None:
            norm = dnrm2(new_dx)
            if not math.isfinite(norm):
                LOGGER.debug(
                    "Step norm %s is not finite; %s cannot be brought back into bounds",
                    norm,
                    violator.name or "variable",
                )
                return False
            if norm <= self.config.step_noise_floor:
                LOGGER.debug(
                    "Step decayed to noise after %d halvings without satisfying the bounds of %s",
                    halvings,
                    violator.name or "variable",
                )
                return False
            dscal(0.5, new_dx)
            scale.halve()
            halvings += 1
            violator = self._first_violation(initial_x, new_dx, bound_vars)
        if halvings:
            LOGGER.debug(
                "Step halved %d times to respect the bounds of %s (K=%.3e)",
                halvings,
                blocking.name or "variable",
                scale.value,
            )
        return True

    @staticmethod
    def _first_violation(
        initial_x: np.ndarray, new_dx: np.ndarray, bound_vars: Sequence[BoundVariable]
    ) -> Optional[BoundVariable]:
        for i, var in enumerate(bound_vars):
            if var.is_out_of_bounds(initial_x[i] - new_dx[i]):
                return var
        return None

    def backtrack(
        self,
        func: FixedPointFunction,
        initial_x: np.ndarray,
        new_dx: np.ndarray,
        bound_vars: Sequence[BoundVariable],
    ) -> int:
        """Shrink *new_dx* in place while the residual keeps decreasing.

        Each sub-iteration evaluates the residual at ``initial_x - new_dx``.
        A strict improvement is accepted by shrinking the step once more; the
        first non-improvement undoes the previous shrink and stops.  Returns
        the number of shrinks that were kept.
        """

        cfg = self.config
        n = new_dx.shape[0]
        candidate = self._x[:n]
        last_distance = math.inf
        shrinks = 0
        for _ in range(cfg.backtrack_max_iter):
            np.subtract(initial_x, new_dx, out=candidate)
            distance = dnrm2(self.evaluate_residual(func, candidate, bound_vars))
            if distance < last_distance:
                last_distance = distance
                dscal(cfg.backtrack_factor, new_dx)
                shrinks += 1
            else:
                if shrinks:
                    dscal(1.0 / cfg.backtrack_factor, new_dx)
                    shrinks -= 1
                break
        LOGGER.debug("Backtracking kept %d shrinks (best |g|=%.6e)", shrinks, last_distance)
        return shrinks

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def step(
        self,
        func: FixedPointFunction,
        bound_vars: Sequence[BoundVariable],
        inverse_jacobian: np.ndarray,
        scale: ScaleFactor,
        iteration: int = 0,
    ) -> StepResult:
        """Perform one Broyden iteration and move *bound_vars* accordingly.

        The first call after :meth:`reset` (or construction) starts a new
        search: it clears the work buffers and steps with *inverse_jacobian*
        as given.  Later calls update *inverse_jacobian* in place.
        """

        n = len(bound_vars)
        jinv = self._check_dimension(n, inverse_jacobian)
        cfg = self.config

        x = self._x[:n]
        gx = self._gx[:n]
        last_gx = self._last_gx[:n]
        initial_x = self._initial_x[:n]
        del_x = self._del_x[:n]
        del_g = self._del_g[:n]
        new_dx = self._new_dx[:n]

        if self._first_loop:
            self._clear(n)
            read_scaled_values(bound_vars, x)
            np.copyto(gx, self.evaluate_residual(func, x, bound_vars))
            dcopy(gx, out=last_gx)
            dcopy(x, out=initial_x)
            dgemv(jinv, gx, out=new_dx)
            daxpy(-1.0, new_dx, x, out=x)
            write_scaled_values(bound_vars, x)
            self._first_loop = False
            LOGGER.debug("First step of search: |g|=%.6e |dx|=%.6e", dnrm2(gx), dnrm2(new_dx))
            return StepResult.first()

        read_scaled_values(bound_vars, x)
        daxpy(-1.0, initial_x, x, out=del_x)
        dcopy(x, out=initial_x)

        np.copyto(gx, self.evaluate_residual(func, x, bound_vars))
        self._validate(gx)

        daxpy(-1.0, last_gx, gx, out=del_g)
        dcopy(gx, out=last_gx)
        if dsum(del_g) == 0.0:
            LOGGER.debug("Residual did not change between steps; stopping search")
            return StepResult(StepStatus.STAGNATED, 0.0, False)

        self.update_inverse_jacobian(jinv, del_x, del_g)
        dgemv(jinv, gx, out=new_dx)

        keep_going = self.clip_to_bounds(initial_x, new_dx, bound_vars, scale)
        bounds_exhausted = not keep_going
        if keep_going and cfg.backtracking and iteration > cfg.backtrack_start:
            self.backtrack(func, initial_x, new_dx, bound_vars)

        daxpy(-1.0, new_dx, initial_x, out=x)
        write_scaled_values(bound_vars, x)

        floor = cfg.step_noise_floor
        step_norm = dnrm2(new_dx)
        residual_norm = dnrm2(gx)
        keep_going = keep_going and step_norm > floor and residual_norm > floor

        if keep_going:
            status = StepStatus.CONTINUE
        elif bounds_exhausted:
            status = StepStatus.BOUNDS_EXHAUSTED
        elif residual_norm <= floor:
            status = StepStatus.CONVERGED
        else:
            status = StepStatus.STEP_EXHAUSTED

        LOGGER.debug(
            "Broyden step: |g|=%.6e |dx|=%.6e K=%.3e status=%s",
            residual_norm,
            step_norm,
            scale.value,
            status.value,
        )
        return StepResult(status, residual_norm, keep_going)

    def run_search(
        self,
        func: FixedPointFunction,
        bound_vars: Sequence[BoundVariable],
        jacobian_pool: MatrixPool,
        iteration: int = 0,
    ) -> SearchResult:
        """Search for a fixed point of *func* starting from *bound_vars*.

        The inverse Jacobian for the problem size is taken from
        *jacobian_pool* and reset to the negative identity.  The scale factor
        starts at one and is halved whenever a step reports a larger residual
        than the best one seen so far.  The search ends when a step asks to
        stop, when the scale factor reaches ``config.scale_limit`` or, when
        ``config.max_steps`` is set, after that many steps.
        """

        cfg = self.config
        n = len(bound_vars)
        jinv = self._check_dimension(n, jacobian_pool.get(n))
        mtx_neg_identity(jinv)
        scale = ScaleFactor()
        best = sys.float_info.max
        self.reset()

        residual_history: list[float] = []
        scale_history: list[float] = []
        steps = 0
        status = SearchStatus.FINISHED
        while True:
            result = self.step(func, bound_vars, jinv, scale, iteration)
            steps += 1
            if not result.first_iteration:
                residual_history.append(result.residual_norm)
                if result.residual_norm > best:
                    scale.halve()
                    LOGGER.debug(
                        "Residual regressed (%.6e > %.6e); K halved to %.3e",
                        result.residual_norm,
                        best,
                        scale.value,
                    )
                else:
                    best = result.residual_norm
            scale_history.append(scale.value)

            if not result.keep_going:
                break
            if scale.value <= cfg.scale_limit:
                status = SearchStatus.SCALE_EXHAUSTED
                break
            if cfg.max_steps is not None and steps >= cfg.max_steps:
                status = SearchStatus.MAX_STEPS
                break

        final_norm = result.residual_norm if result.residual_norm is not None else math.inf
        converged = math.isfinite(final_norm) and final_norm <= cfg.convergence_tolerance
        if status is SearchStatus.FINISHED:
            LOGGER.debug(
                "Search finished after %d steps: |g|=%.6e (%s)", steps, final_norm, result.status.value
            )
        else:
            LOGGER.info(
                "Search stopped after %d steps with |g|=%.6e: %s", steps, final_norm, status.value
            )

        return SearchResult(
            residual_norm=final_norm,
            converged=converged,
            steps=steps,
            scale_factor=scale.value,
            best_residual_norm=best if residual_history else math.inf,
            status=status,
            step_status=result.status,
            residual_history=residual_history,
            scale_history=scale_history,
        )


def solve_fixed_point(
    func: FixedPointFunction,
    x0: Sequence[float],
    *,
    lower: Sequence[float] | float = -math.inf,
    upper: Sequence[float] | float = math.inf,
    scale: Sequence[float] | float = 1.0,
    config: SolverConfig | None = None,
    iteration: int = 0,
) -> tuple[np.ndarray, SearchResult]:
    """Convenience wrapper running one search with a fresh solver.

    Returns the physical values of the variables after the search together
    with the :class:`SearchResult`.
    """

    bound_vars = make_bound_variables(x0, lower, upper, scale)
    solver = BroydenSolver(len(bound_vars), config)
    result = solver.run_search(func, bound_vars, MatrixPool(), iteration)
    values = np.array([var.physical_value for var in bound_vars], dtype=float)
    return values, result
