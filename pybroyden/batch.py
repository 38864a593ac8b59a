"""Batch driver solving many linear fixed-point problems stored in :mod:`xarray`."""

from __future__ import annotations

import importlib
import importlib.util
import logging
from typing import Any, Iterable

import numpy as np
import xarray as xr

from fpcommon.bounds import make_bound_variables
from fpcommon.mtx import MatrixPool

from .config import SolverConfig
from .solver import BroydenSolver

LOGGER = logging.getLogger(__name__)

MPI: Any | None
if importlib.util.find_spec("mpi4py") is None:
    MPI = None
else:
    MPI = importlib.import_module("mpi4py.MPI")

__all__ = ["MPI", "get_world_comm", "linear_map", "run_fixed_point_batch"]

_REQUIRED = ("matrix", "offset", "initial")


def get_world_comm():
    """Return :data:`mpi4py.MPI.COMM_WORLD`, or ``None`` without mpi4py."""

    if MPI is None:
        return None
    return MPI.COMM_WORLD


def linear_map(matrix: np.ndarray, offset: np.ndarray):
    """Return ``f(x, out)`` writing ``matrix @ x + offset`` into *out*."""

    matrix = np.asarray(matrix, dtype=float)
    offset = np.asarray(offset, dtype=float)

    def func(x: np.ndarray, out: np.ndarray) -> None:
        np.dot(matrix, x, out=out)
        out += offset

    return func


def _bounds_array(problems: xr.Dataset, name: str, default: float, shape: tuple[int, int]) -> np.ndarray:
    if name not in problems:
        return np.full(shape, default, dtype=float)
    values = problems[name].transpose("problem", "row").values.astype(float)
    return np.where(np.isnan(values), default, values)


def _check_problems(problems: xr.Dataset) -> tuple[int, int]:
    for name in _REQUIRED:
        if name not in problems:
            raise KeyError(f"Problem dataset is missing the {name!r} variable")
    if set(problems["matrix"].dims) != {"problem", "row", "col"}:
        raise ValueError("'matrix' must have dimensions ('problem', 'row', 'col')")
    nproblem = problems.sizes["problem"]
    nrow = problems.sizes["row"]
    if problems.sizes["col"] != nrow:
        raise ValueError("Problem matrices must be square")
    for name in ("offset", "initial", "lower", "upper"):
        if name in problems and set(problems[name].dims) != {"problem", "row"}:
            raise ValueError(f"{name!r} must have dimensions ('problem', 'row')")
    return nproblem, nrow


def run_fixed_point_batch(
    problems: xr.Dataset,
    *,
    config: SolverConfig | None = None,
    iteration: int = 0,
    comm=None,
) -> xr.Dataset:
    """Solve ``x = A x + b`` for every problem in *problems*.

    When an MPI communicator is provided or automatically detected, problems
    are dealt round-robin to the ranks.  Each rank works with its own
    :class:`~pybroyden.solver.BroydenSolver` and the partial results are
    summed with ``Allreduce``.
    """

    nproblem, nrow = _check_problems(problems)

    if comm is None:
        comm = get_world_comm()
    if comm is not None:
        size = comm.Get_size()
        rank = comm.Get_rank()
    else:
        size = 1
        rank = 0

    matrices = problems["matrix"].transpose("problem", "row", "col").values.astype(float)
    offsets = problems["offset"].transpose("problem", "row").values.astype(float)
    initials = problems["initial"].transpose("problem", "row").values.astype(float)
    lowers = _bounds_array(problems, "lower", -np.inf, (nproblem, nrow))
    uppers = _bounds_array(problems, "upper", np.inf, (nproblem, nrow))

    if rank == 0:
        LOGGER.info(
            "Solving %d fixed-point problems of size %d on %d rank(s)", nproblem, nrow, size
        )

    solution_local = np.zeros((nproblem, nrow), dtype=float)
    stats_local = np.zeros((nproblem, 4), dtype=float)

    solver = BroydenSolver(nrow, config)
    pool = MatrixPool()

    assigned: Iterable[int]
    if size > 1:
        assigned = range(rank, nproblem, size)
    else:
        assigned = range(nproblem)

    for index in assigned:
        bound_vars = make_bound_variables(initials[index], lowers[index], uppers[index])
        result = solver.run_search(
            linear_map(matrices[index], offsets[index]), bound_vars, pool, iteration
        )
        solution_local[index, :] = [var.physical_value for var in bound_vars]
        stats_local[index, :] = (
            result.residual_norm,
            float(result.converged),
            float(result.steps),
            result.scale_factor,
        )
        if not result.converged:
            LOGGER.warning(
                "Problem %d did not converge: |g|=%.3e after %d steps (%s)",
                index,
                result.residual_norm,
                result.steps,
                result.status.value,
            )

    if comm is not None and size > 1:
        solution = np.zeros_like(solution_local)
        comm.Allreduce(solution_local, solution, op=MPI.SUM)
        stats = np.zeros_like(stats_local)
        comm.Allreduce(stats_local, stats, op=MPI.SUM)
    else:
        solution = solution_local
        stats = stats_local

    converged = stats[:, 1] > 0.5
    if rank == 0:
        LOGGER.info("Converged %d of %d problems", int(np.count_nonzero(converged)), nproblem)

    coords = {dim: problems.coords[dim] for dim in ("problem", "row") if dim in problems.coords}
    results = xr.Dataset(
        {
            "solution": (("problem", "row"), solution),
            "residual_norm": ("problem", stats[:, 0]),
            "converged": ("problem", converged),
            "steps": ("problem", stats[:, 2].astype(np.int64)),
            "scale_factor": ("problem", stats[:, 3]),
        },
        coords=coords,
    )
    results.attrs["iteration"] = int(iteration)
    return results
