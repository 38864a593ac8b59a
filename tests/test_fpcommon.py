from __future__ import annotations

import math

import numpy as np
import pytest

from fpcommon.blas import daxpy, dcopy, ddot, dger, dgemv, dnrm2, dscal, dsum
from fpcommon.bounds import BoundVariable, make_bound_variables, read_scaled_values, write_scaled_values
from fpcommon.broyden_core import broyden_inverse_update
from fpcommon.mtx import MatrixPool, mtx_l1norm, mtx_neg_identity, mtx_zero


def test_level1_routines():
    x = np.array([3.0, -4.0])
    y = np.array([1.0, 2.0])

    assert ddot(x, y) == pytest.approx(-5.0)
    assert dnrm2(x) == pytest.approx(5.0)
    assert dsum([1.5, -1.5]) == 0.0

    out = np.zeros(2)
    result = daxpy(2.0, x, y, out=out)
    assert result is out
    np.testing.assert_allclose(out, [7.0, -6.0])

    daxpy(-1.0, y, y, out=y)
    np.testing.assert_allclose(y, [0.0, 0.0])

    assert dscal(0.5, x) is x
    np.testing.assert_allclose(x, [1.5, -2.0])

    copy = dcopy(x)
    assert copy is not x
    np.testing.assert_allclose(copy, x)


def test_level1_shape_checks():
    with pytest.raises(ValueError):
        ddot([1.0, 2.0], [1.0])
    with pytest.raises(ValueError):
        daxpy(1.0, [1.0, 2.0], [1.0])
    with pytest.raises(ValueError):
        dcopy([1.0, 2.0], out=np.zeros(3))


def test_dgemv_and_transpose():
    a = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    np.testing.assert_allclose(dgemv(a, [1.0, 1.0]), [3.0, 7.0, 11.0])

    out = np.zeros(2)
    dgemv(a, [1.0, 0.0, 1.0], out=out, trans=True)
    np.testing.assert_allclose(out, [6.0, 8.0])

    with pytest.raises(ValueError):
        dgemv(a, [1.0, 0.0, 1.0])


def test_dger_updates_in_place():
    a = np.eye(2)
    dger(2.0, [1.0, 0.0], [0.0, 1.0], a)
    np.testing.assert_allclose(a, [[1.0, 2.0], [0.0, 1.0]])
    with pytest.raises(ValueError):
        dger(1.0, [1.0], [1.0, 1.0], a)


def test_matrix_helpers():
    a = np.array([[1.0, -2.0], [3.0, 4.0]])
    assert mtx_l1norm(a) == pytest.approx(6.0)

    a[0, 1] = np.nan
    assert math.isnan(mtx_l1norm(a))

    mtx_neg_identity(a)
    np.testing.assert_allclose(a, -np.eye(2))
    mtx_zero(a)
    assert not a.any()

    with pytest.raises(ValueError):
        mtx_neg_identity(np.zeros((2, 3)))


def test_matrix_pool_reuses_storage():
    pool = MatrixPool()
    first = pool.get(3)
    assert first.shape == (3, 3)
    assert pool.get(3) is first
    assert pool.get(2).shape == (2, 2)
    assert list(pool) == [2, 3]
    assert 3 in pool and 4 not in pool
    with pytest.raises(ValueError):
        pool.get(0)


def test_bound_variable_scaling_and_clamping():
    var = BoundVariable(4.0, lower=0.0, upper=10.0, scale=2.0)
    assert var.scaled_value == pytest.approx(2.0)
    assert var.physical_value == pytest.approx(4.0)

    var.scaled_value = 7.0
    assert var.physical_value == pytest.approx(10.0)
    var.set_physical(-3.0)
    assert var.physical_value == pytest.approx(0.0)

    assert var.transform(6.0) == pytest.approx(3.0)
    assert var.transform(50.0) == pytest.approx(5.0)
    assert var.physical_value == pytest.approx(0.0)


def test_bound_variable_predicate_is_inclusive_and_pure():
    var = BoundVariable(0.5, upper=1.0)
    assert not var.is_out_of_bounds(1.0)
    assert var.is_out_of_bounds(1.0 + 1e-12)
    assert not var.is_out_of_bounds(-1e300)
    assert var.scaled_value == 0.5


def test_bound_variable_keeps_infeasible_start():
    var = BoundVariable(5.0, upper=1.0)
    assert var.scaled_value == 5.0


def test_bound_variable_rejects_bad_definitions():
    with pytest.raises(ValueError):
        BoundVariable(0.0, lower=1.0, upper=0.0)
    with pytest.raises(ValueError):
        BoundVariable(0.0, scale=0.0)


def test_bound_variable_helpers():
    variables = make_bound_variables([0.0, 2.0, 4.0], lower=0.0, upper=[1.0, 3.0, 5.0])
    assert [v.upper for v in variables] == [1.0, 3.0, 5.0]
    assert all(v.lower == 0.0 for v in variables)

    buffer = np.zeros(3)
    read_scaled_values(variables, buffer)
    np.testing.assert_allclose(buffer, [0.0, 2.0, 4.0])

    write_scaled_values(variables, [9.0, -1.0, 4.5])
    np.testing.assert_allclose([v.scaled_value for v in variables], [1.0, 0.0, 4.5])

    with pytest.raises(ValueError):
        read_scaled_values(variables, np.zeros(2))


def test_inverse_update_satisfies_secant_condition():
    rng = np.random.default_rng(0)
    jinv = -np.eye(3) + 0.1 * rng.standard_normal((3, 3))
    del_x = rng.standard_normal(3)
    del_g = rng.standard_normal(3)

    broyden_inverse_update(jinv, del_x, del_g, np.zeros(3), np.zeros(3))

    np.testing.assert_allclose(jinv @ del_g, del_x, atol=1e-10)


def test_inverse_update_with_zero_denominator_is_not_finite():
    jinv = -np.eye(2)
    broyden_inverse_update(jinv, np.array([1.0, 0.0]), np.array([0.0, 1.0]), np.zeros(2), np.zeros(2))
    assert not np.isfinite(jinv).all()
