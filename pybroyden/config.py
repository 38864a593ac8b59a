"""Solver configuration.

All tuning constants of the Broyden iteration live in :class:`SolverConfig`.
Configurations are immutable; derive variants with :func:`dataclasses.replace`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

__all__ = ["SolverConfig", "config_from_mapping", "load_config"]


@dataclass(frozen=True)
class SolverConfig:
    backtracking: bool = True
    backtrack_start: int = 50
    backtrack_factor: float = 0.9
    backtrack_max_iter: int = 10
    step_noise_floor: float = 3e-16
    scale_limit: float = 1e-12
    check_finite: bool = False
    max_steps: int | None = None
    convergence_tolerance: float = 1e-9

    def __post_init__(self) -> None:
        if self.backtrack_start < 0:
            raise ValueError("backtrack_start must be non-negative")
        if not 0.0 < self.backtrack_factor < 1.0:
            raise ValueError("backtrack_factor must lie strictly between 0 and 1")
        if self.backtrack_max_iter < 1:
            raise ValueError("backtrack_max_iter must be at least 1")
        if self.step_noise_floor <= 0.0:
            raise ValueError("step_noise_floor must be positive")
        if self.scale_limit <= 0.0:
            raise ValueError("scale_limit must be positive")
        if self.max_steps is not None and self.max_steps < 1:
            raise ValueError("max_steps must be at least 1 when given")
        if self.convergence_tolerance < 0.0:
            raise ValueError("convergence_tolerance must be non-negative")


def config_from_mapping(values: Mapping[str, Any]) -> SolverConfig:
    known = {f.name for f in fields(SolverConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise KeyError(f"Unknown solver option(s): {', '.join(unknown)}")
    return SolverConfig(**dict(values))


def load_config(path: str | Path) -> SolverConfig:
    """Read a :class:`SolverConfig` from a JSON object stored at *path*."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file {path!s} not found")
    with path.open("r", encoding="utf-8") as handle:
        values = json.load(handle)
    if not isinstance(values, dict):
        raise ValueError(f"Configuration file {path!s} must hold a JSON object")
    return config_from_mapping(values)
