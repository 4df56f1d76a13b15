"""
有效集 QP 求解器测试。

运行: python -m pytest tests/test_active_set.py -v
"""

import numpy as np
import pytest
import scipy.sparse as sp

from bbw import ActiveSetParams, SolverStatus, active_set

NO_KNOWN = np.array([], dtype=int)
NO_VALUES = np.array([])


def _box_problem():
    A = sp.eye(3, format="csr")
    B = -np.array([2.0, -1.0, 0.5])
    return A, B, np.zeros(3), np.ones(3)


def test_box_constraints_clamp_unconstrained_minimiser():
    A, B, lx, ux = _box_problem()
    status, Z = active_set(
        A, B, NO_KNOWN, NO_VALUES, None, None, None, None, lx, ux, ActiveSetParams()
    )
    assert status is SolverStatus.CONVERGED
    np.testing.assert_allclose(Z, [1.0, 0.0, 0.5], atol=1e-12)


def test_known_values_are_exempt_from_bounds():
    A, B, lx, ux = _box_problem()
    status, Z = active_set(
        A, B, np.array([2]), np.array([1.5]), None, None, None, None, lx, ux,
        ActiveSetParams(),
    )
    assert status is SolverStatus.CONVERGED
    np.testing.assert_allclose(Z, [1.0, 0.0, 1.5], atol=1e-12)


def test_inequality_constraint_becomes_active():
    A = sp.eye(2, format="csr")
    B = -np.ones(2)
    Aieq = sp.csr_matrix(np.ones((1, 2)))
    status, Z = active_set(
        A, B, NO_KNOWN, NO_VALUES, None, None, Aieq, np.array([1.0]), None, None,
        ActiveSetParams(),
    )
    assert status is SolverStatus.CONVERGED
    np.testing.assert_allclose(Z, [0.5, 0.5], atol=1e-12)


def test_warm_start_reaches_same_solution():
    A, B, lx, ux = _box_problem()
    status, Z = active_set(
        A, B, NO_KNOWN, NO_VALUES, None, None, None, None, lx, ux,
        ActiveSetParams(), Z=np.array([0.9, 0.1, 0.4]),
    )
    assert status is SolverStatus.CONVERGED
    np.testing.assert_allclose(Z, [1.0, 0.0, 0.5], atol=1e-12)


def test_iteration_budget_exhausted():
    A, B, lx, ux = _box_problem()
    status, Z = active_set(
        A, B, NO_KNOWN, NO_VALUES, None, None, None, None, lx, ux,
        ActiveSetParams(max_iter=1),
    )
    assert status is SolverStatus.MAX_ITER
    assert Z is not None
    assert Z.shape == (3,)


def test_singular_subproblem_reports_error():
    A = sp.csr_matrix(np.array([[1.0, 1.0], [1.0, 1.0]]))
    status, Z = active_set(
        A, np.array([1.0, 0.0]), NO_KNOWN, NO_VALUES, None, None, None, None,
        np.zeros(2), np.ones(2), ActiveSetParams(),
    )
    assert status is SolverStatus.ERROR
    assert Z is None


def test_mismatched_known_values():
    A, B, lx, ux = _box_problem()
    with pytest.raises(ValueError):
        active_set(
            A, B, np.array([0, 1]), np.array([1.0]), None, None, None, None, lx, ux,
            ActiveSetParams(),
        )


@pytest.mark.parametrize("max_iter, expected", [(100, 99), (2, 1), (1, 1), (0, 0), (-5, -5)])
def test_decremented_budget(max_iter, expected):
    params = ActiveSetParams(max_iter=max_iter)
    assert params.decremented().max_iter == expected
    assert params.max_iter == max_iter
