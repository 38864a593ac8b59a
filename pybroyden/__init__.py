"""Bounded Broyden fixed-point solver built on the :mod:`fpcommon` helpers."""

from .batch import run_fixed_point_batch
from .config import SolverConfig, load_config
from .errors import BroydenError, DimensionError, NumericalDivergenceError
from .io import load_problems, save_results
from .solver import (
    BroydenSolver,
    ScaleFactor,
    SearchResult,
    SearchStatus,
    StepResult,
    StepStatus,
    solve_fixed_point,
)

__all__ = [
    "BroydenError",
    "BroydenSolver",
    "DimensionError",
    "NumericalDivergenceError",
    "ScaleFactor",
    "SearchResult",
    "SearchStatus",
    "SolverConfig",
    "StepResult",
    "StepStatus",
    "load_config",
    "load_problems",
    "run_fixed_point_batch",
    "save_results",
    "solve_fixed_point",
]
