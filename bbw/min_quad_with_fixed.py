"""
带固定变量与线性等式约束的二次型最小化。

问题
----
    min_z   ½ zᵀ A z + zᵀ B
    s.t.    z[known] = Y
            Aeq z    = Beq

消元原理
--------
将变量分为自由集 u 与已知集 k, 分块后:

    [ A_uu  A_uk ] [ z_u ]
    [ A_ku  A_kk ] [ z_k ]

因 z_k = Y 已知, 对 z_u 求驻点得:
    A_uu z_u = -(A_uk Y + B_u)

若存在等式约束, 则改解 KKT 系统:
    [ A_uu    Aeq_uᵀ ] [ z_u ]   [ -(A_uk Y + B_u) ]
    [ Aeq_u   0      ] [ λ   ] = [ Beq - Aeq_k Y   ]

预计算 (分解) 与求解 (回代) 分离:同一 A / known / Aeq 可对多组 Y、B 重复求解。
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp

from .errors import SolverError
from .factor import CholeskyFactor, LUFactor


class MinQuadWithFixed:
    """
    min_quad_with_fixed 的预计算数据与求解入口。

    Parameters
    ----------
    A : sp.spmatrix, shape (N, N)
        对称二次型矩阵。
    known : array_like of int, shape (K,)
        固定变量索引, 互不重复。
    Aeq : sp.spmatrix, shape (E, N), optional
        线性等式约束矩阵, 行须线性无关。
    positive_definite : bool, optional
        声明 A_uu 对称正定时使用 Cholesky 分解, 否则使用 LU。
        存在 Aeq 时始终使用 LU 分解 KKT 系统。
    regularization : float, optional
        Tikhonov 正则化系数 λ, 分解前以 A_uu + λ·I 代替 A_uu。默认 0。

    Raises
    ------
    ValueError
        若 known 含重复或越界索引。
    SolverError
        若分解失败 (矩阵奇异或非正定) 。
    """

    def __init__(
        self,
        A:                 sp.spmatrix,
        known:             np.ndarray,
        Aeq:               Optional[sp.spmatrix] = None,
        positive_definite: bool                  = False,
        regularization:    float                 = 0.0,
    ) -> None:
        A = sp.csr_matrix(A)
        n = A.shape[0]
        known = np.asarray(known, dtype=np.int64).ravel()

        if known.size and (known.min() < 0 or known.max() >= n):
            raise ValueError(f"已知变量索引超出合法范围 [0, {n - 1}]。")
        if np.unique(known).size != known.size:
            raise ValueError("已知变量索引存在重复。")

        free_mask = np.ones(n, dtype=bool)
        free_mask[known] = False

        self.n:       int        = n
        self.known:   np.ndarray = known
        self.unknown: np.ndarray = np.flatnonzero(free_mask)

        A_uu = A[self.unknown, :][:, self.unknown]
        self._A_uk = A[self.unknown, :][:, known]
        if regularization > 0.0:
            A_uu = A_uu + regularization * sp.eye(A_uu.shape[0], format="csr")

        if Aeq is not None and Aeq.shape[0] > 0:
            Aeq = sp.csr_matrix(Aeq)
            if Aeq.shape[1] != n:
                raise ValueError(f"Aeq 列数须为 {n}, 实际 shape: {Aeq.shape}")
            self._Aeq_u = Aeq[:, self.unknown]
            self._Aeq_k = Aeq[:, known]
            system = sp.bmat([[A_uu, self._Aeq_u.T], [self._Aeq_u, None]], format="csc")
            self._factor = LUFactor()
        else:
            self._Aeq_u = None
            self._Aeq_k = None
            system = A_uu
            self._factor = CholeskyFactor() if positive_definite else LUFactor()

        self.num_equalities: int = 0 if self._Aeq_u is None else self._Aeq_u.shape[0]

        if system.shape[0] == 0:
            self._factor = None
            return
        try:
            self._factor.factorization(system)
        except RuntimeError as exc:
            raise SolverError(f"min_quad_with_fixed 分解失败: {exc}") from exc

    @property
    def backend(self) -> str:
        return "none" if self._factor is None else self._factor.backend

    def solve(
        self,
        B:   Optional[np.ndarray],
        Y:   np.ndarray,
        Beq: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        回代求解。

        Parameters
        ----------
        B : np.ndarray, shape (N,) or (N, C), optional
            线性项, None 视为零。
        Y : np.ndarray, shape (K,) or (K, C)
            固定变量取值; C 列时同时求解 C 个问题。
        Beq : np.ndarray, shape (E,) or (E, C), optional
            等式约束右端项。

        Returns
        -------
        Z : np.ndarray, shape (N,) or (N, C)
            最优解, Z[known] 精确等于 Y。
        lambda_eq : np.ndarray, shape (E,) or (E, C)
            等式约束的 Lagrange 乘子 (符号约定 A z + B + Aeqᵀ λ = 0) 。

        Raises
        ------
        SolverError
            若解含非有限值。
        """
        Y = np.asarray(Y, dtype=np.float64)
        single = Y.ndim == 1
        Y2 = Y[:, None] if single else Y
        cols = Y2.shape[1]

        if B is None:
            B2 = np.zeros((self.n, cols))
        else:
            B2 = np.asarray(B, dtype=np.float64)
            B2 = np.broadcast_to(B2[:, None] if B2.ndim == 1 else B2, (self.n, cols))

        nu = self.unknown.size
        rhs = -(self._A_uk @ Y2 + B2[self.unknown])
        if self.num_equalities:
            if Beq is None:
                Beq2 = np.zeros((self.num_equalities, cols))
            else:
                Beq2 = np.asarray(Beq, dtype=np.float64)
                Beq2 = np.broadcast_to(
                    Beq2[:, None] if Beq2.ndim == 1 else Beq2, (self.num_equalities, cols)
                )
            rhs = np.vstack([rhs, Beq2 - self._Aeq_k @ Y2])

        if self._factor is None:
            sol = np.zeros((0, cols))
        else:
            sol = np.asarray(self._factor.solve(rhs)).reshape(rhs.shape)
        if not np.all(np.isfinite(sol)):
            raise SolverError("min_quad_with_fixed 求解结果含非有限值 (系统可能奇异) 。")

        Z = np.empty((self.n, cols), dtype=np.float64)
        Z[self.unknown] = sol[:nu]
        Z[self.known] = Y2
        lambda_eq = sol[nu:]

        if single:
            return Z[:, 0], lambda_eq[:, 0]
        return Z, lambda_eq


def min_quad_with_fixed(
    A:                 sp.spmatrix,
    B:                 Optional[np.ndarray],
    known:             np.ndarray,
    Y:                 np.ndarray,
    Aeq:               Optional[sp.spmatrix] = None,
    Beq:               Optional[np.ndarray]  = None,
    positive_definite: bool                  = False,
) -> np.ndarray:
    """一次性预计算并求解, 返回 Z。"""
    data = MinQuadWithFixed(A, known, Aeq, positive_definite=positive_definite)
    Z, _ = data.solve(B, Y, Beq)
    return Z
