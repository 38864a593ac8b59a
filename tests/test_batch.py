from __future__ import annotations

import json

import numpy as np
import pytest
import xarray as xr

from pybroyden.batch import linear_map, run_fixed_point_batch
from pybroyden.io import load_problems, save_results
from pybroyden.run import main


def _problems() -> xr.Dataset:
    matrix = np.array(
        [
            [[0.2, 0.1], [0.0, 0.3]],
            [[0.5, 0.0], [0.0, 0.25]],
            [[0.0, 0.0], [0.0, 0.0]],
        ]
    )
    offset = np.array([[0.1, 0.2], [0.2, 0.3], [2.0, 2.0]])
    lower = np.array([[np.nan, np.nan], [0.0, 0.0], [np.nan, np.nan]])
    upper = np.array([[np.nan, np.nan], [1.0, 1.0], [1.0, 1.0]])
    return xr.Dataset(
        {
            "matrix": (("problem", "row", "col"), matrix),
            "offset": (("problem", "row"), offset),
            "initial": (("problem", "row"), np.zeros((3, 2))),
            "lower": (("problem", "row"), lower),
            "upper": (("problem", "row"), upper),
        },
        coords={"problem": [10, 11, 12]},
    )


def _expected() -> np.ndarray:
    first = np.linalg.solve(np.eye(2) - np.array([[0.2, 0.1], [0.0, 0.3]]), [0.1, 0.2])
    return np.array([first, [0.4, 0.4], [1.0, 1.0]])


def test_linear_map_writes_into_buffer():
    func = linear_map(np.array([[2.0, 0.0], [1.0, 1.0]]), np.array([1.0, -1.0]))
    out = np.zeros(2)
    assert func(np.array([1.0, 2.0]), out) is None
    np.testing.assert_allclose(out, [3.0, 2.0])


def test_batch_solves_every_problem():
    results = run_fixed_point_batch(_problems())

    np.testing.assert_allclose(results["solution"].values, _expected(), atol=1e-8)
    assert results["converged"].values.all()
    assert (results["steps"].values >= 2).all()
    assert (results["scale_factor"].values <= 1.0).all()
    assert list(results["problem"].values) == [10, 11, 12]
    assert results.attrs["iteration"] == 0


def test_batch_validates_inputs():
    problems = _problems()
    with pytest.raises(KeyError):
        run_fixed_point_batch(problems.drop_vars("offset"))

    rectangular = problems.isel(col=slice(0, 1))
    with pytest.raises(ValueError):
        run_fixed_point_batch(rectangular)


def test_batch_round_trip_through_cli(tmp_path):
    pytest.importorskip("netCDF4")

    problem_path = tmp_path / "problems.nc"
    _problems().to_netcdf(problem_path)
    metadata_path = tmp_path / "meta.json"
    metadata_path.write_text(json.dumps({"experiment": "smoke"}))

    exit_code = main(
        [
            "--problems",
            str(problem_path),
            "--output-dir",
            str(tmp_path / "out"),
            "--metadata",
            str(metadata_path),
            "--check-finite",
        ]
    )

    assert exit_code == 0
    with xr.open_dataset(tmp_path / "out" / "fixed_points.nc") as ds:
        solution = ds["solution"].values
        attrs = dict(ds.attrs)
    np.testing.assert_allclose(solution, _expected(), atol=1e-8)
    assert attrs["experiment"] == "smoke"


def test_io_helpers(tmp_path):
    pytest.importorskip("netCDF4")

    with pytest.raises(FileNotFoundError):
        load_problems(tmp_path / "missing.nc")

    incomplete = tmp_path / "incomplete.nc"
    _problems().drop_vars("initial").to_netcdf(incomplete)
    with pytest.raises(KeyError):
        load_problems(incomplete)

    path = save_results(_problems(), tmp_path / "nested", "problems.nc")
    assert path == tmp_path / "nested" / "problems.nc"
    problems = load_problems(path)
    assert problems.attrs["source_file"] == str(path)
    np.testing.assert_allclose(problems["matrix"].values, _problems()["matrix"].values)
