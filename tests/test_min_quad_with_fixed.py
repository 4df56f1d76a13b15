"""
min_quad_with_fixed 测试:固定变量消元与 KKT 系统。

运行: python -m pytest tests/test_min_quad_with_fixed.py -v
"""

import numpy as np
import pytest
import scipy.sparse as sp

from bbw import MinQuadWithFixed, SolverError, min_quad_with_fixed


def _path_laplacian(n):
    """一维半正定 Laplacian (两端 Neumann 边界) 。"""
    main = np.full(n, 2.0)
    main[0] = main[-1] = 1.0
    return sp.diags([-np.ones(n - 1), main, -np.ones(n - 1)], [-1, 0, 1], format="csr")


# =============================================================================
# 仅固定变量
# =============================================================================

@pytest.mark.parametrize("positive_definite", [False, True])
def test_fixed_endpoints_give_linear_interpolation(positive_definite):
    n = 6
    Z = min_quad_with_fixed(
        _path_laplacian(n), None, [0, n - 1], [0.0, 1.0],
        positive_definite=positive_definite,
    )
    np.testing.assert_allclose(Z, np.linspace(0.0, 1.0, n), atol=1e-12)


def test_known_values_are_exact():
    A = _path_laplacian(5)
    Y = np.array([0.3, -1.7])
    Z = min_quad_with_fixed(A, np.ones(5), [1, 3], Y)
    assert Z[1] == Y[0]
    assert Z[3] == Y[1]


def test_multi_column_solve_matches_columnwise():
    n = 7
    A = _path_laplacian(n)
    data = MinQuadWithFixed(A, [0, 3, n - 1], positive_definite=True)
    Y = np.array([[1.0, 0.0], [0.5, 0.5], [0.0, 1.0]])
    Z, lam = data.solve(None, Y)
    assert Z.shape == (n, 2)
    assert lam.shape == (0, 2)
    for col in range(2):
        z, _ = data.solve(None, Y[:, col])
        np.testing.assert_allclose(Z[:, col], z, atol=1e-12)


def test_regularization_shifts_free_block():
    n, lam = 5, 0.5
    A = _path_laplacian(n)
    known, Y = np.array([0, n - 1]), np.array([0.0, 1.0])

    Z = MinQuadWithFixed(A, known, regularization=lam).solve(None, Y)[0]

    # 直接求解 (A_uu + λI) z_u = -A_uk Y
    dense = A.toarray()
    free = np.arange(1, n - 1)
    z_u = np.linalg.solve(
        dense[np.ix_(free, free)] + lam * np.eye(free.size), -dense[np.ix_(free, known)] @ Y
    )
    np.testing.assert_allclose(Z[free], z_u, atol=1e-12)
    np.testing.assert_array_equal(Z[known], Y)
    assert not np.allclose(Z, np.linspace(0.0, 1.0, n))


def test_linear_term_shifts_minimiser():
    # 无固定变量时 min ½ z² + B z 的解为 z = -B
    A = sp.eye(3, format="csr")
    B = np.array([1.0, -2.0, 0.5])
    Z = min_quad_with_fixed(A, B, np.array([], dtype=int), np.array([]))
    np.testing.assert_allclose(Z, -B)


# =============================================================================
# 线性等式约束
# =============================================================================

def test_equality_constraint_kkt():
    n = 5
    A = sp.eye(n, format="csr") * 2.0
    B = -np.arange(n, dtype=float)
    Aeq = sp.csr_matrix(np.ones((1, n)))
    Beq = np.array([1.0])

    data = MinQuadWithFixed(A, [0], Aeq)
    Z, lam = data.solve(B, [0.0], Beq)

    assert Z[0] == 0.0
    assert Z.sum() == pytest.approx(1.0)
    # 自由变量上的驻点条件:A z + B + Aeqᵀ λ = 0
    residual = (A @ Z + B + Aeq.T @ lam)[1:]
    np.testing.assert_allclose(residual, 0.0, atol=1e-10)


def test_everything_fixed_returns_known_values():
    data = MinQuadWithFixed(sp.eye(2, format="csr"), [0, 1])
    assert data.backend == "none"
    Z, _ = data.solve(None, [0.4, 0.6])
    np.testing.assert_array_equal(Z, [0.4, 0.6])


# =============================================================================
# 失败情形
# =============================================================================

def test_singular_system_raises_solver_error():
    A = sp.csr_matrix(np.array([[1.0, 1.0], [1.0, 1.0]]))
    with pytest.raises(SolverError):
        min_quad_with_fixed(A, np.array([1.0, 0.0]), np.array([], dtype=int), np.array([]))


def test_rejects_duplicate_known():
    with pytest.raises(ValueError):
        MinQuadWithFixed(sp.eye(3, format="csr"), [1, 1])
