"""Input/output helpers for batches of fixed-point problems."""

from __future__ import annotations

import logging
from pathlib import Path

import xarray as xr

LOGGER = logging.getLogger(__name__)

__all__ = ["load_problems", "save_results"]


def load_problems(path: str | Path) -> xr.Dataset:
    """Load a problem dataset from the NetCDF file at *path*.

    The file must provide ``matrix(problem, row, col)``, ``offset(problem,
    row)`` and ``initial(problem, row)``; ``lower`` and ``upper`` are optional
    and NaN entries in them mean "unbounded".
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Problem file {path!s} not found")

    LOGGER.info("Loading problems from %s", path)
    with xr.open_dataset(path) as ds:
        for name in ("matrix", "offset", "initial"):
            if name not in ds:
                raise KeyError(f"Variable {name!r} not present in {path!s}")
        problems = ds.load()

    problems.attrs["source_file"] = str(path)
    return problems


def save_results(results: xr.Dataset, output_dir: str | Path, filename: str = "fixed_points.nc") -> Path:
    """Write *results* to ``output_dir/filename`` and return the path."""

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    path = output_dir / filename
    LOGGER.info("Writing %s", path)
    results.to_netcdf(path)
    return path
