"""
盒约束 + 线性 (不) 等式约束二次规划的有效集 (active set) 求解器。

问题
----
    min_z   ½ zᵀ A z + zᵀ B
    s.t.    z[known] = Y
            Aeq  z   = Beq
            Aieq z  <= Bieq
            lx <= z <= ux

迭代策略
--------
每轮迭代:
    1. 检测当前解违反的边界 / 不等式, 加入有效集 (视为等式)
    2. 若相邻两轮解的差的平方范数 < solution_diff_threshold, 判定收敛
    3. 以 known ∪ 有效边界为固定变量、Aeq ∪ 有效不等式为等式约束,
       调用 min_quad_with_fixed 求解子问题
    4. 计算有效约束的 Lagrange 乘子, 将乘子 < inactive_threshold 的约束移出有效集

子问题求解失败时返回 ERROR, 此时解不可用。
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp

from .errors import SolverError
from .min_quad_with_fixed import MinQuadWithFixed

logger = logging.getLogger(__name__)


class SolverStatus(enum.Enum):
    CONVERGED = "converged"
    MAX_ITER = "max_iter"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class ActiveSetParams:
    """
    有效集求解器参数。

    Attributes
    ----------
    max_iter : int
        最大迭代次数; <= 0 表示不限。
    inactive_threshold : float
        乘子低于此值的有效约束被移出有效集。
    constraint_threshold : float
        违反边界超过此值才视为违反约束。
    solution_diff_threshold : float
        相邻两轮解差的平方范数低于此值判定收敛。
    Auu_pd : bool
        声明自由子矩阵正定 (可用 Cholesky) 。
    """

    max_iter:                int   = 100
    inactive_threshold:      float = 1e-14
    constraint_threshold:    float = 1e-14
    solution_diff_threshold: float = 1e-14
    Auu_pd:                  bool  = False

    def decremented(self) -> "ActiveSetParams":
        """迭代预算减一 (已消耗于初始求解) , 下限为 1; 不限预算保持不限。"""
        if self.max_iter <= 0:
            return self
        return dataclasses.replace(self, max_iter=max(1, self.max_iter - 1))


def _as_constraint_matrix(M: Optional[sp.spmatrix], n: int) -> sp.csr_matrix:
    if M is None:
        return sp.csr_matrix((0, n))
    M = sp.csr_matrix(M)
    if M.shape[1] != n:
        raise ValueError(f"约束矩阵列数须为 {n}, 实际 shape: {M.shape}")
    return M


def _as_vector(v: Optional[np.ndarray], size: int, fill: float) -> np.ndarray:
    if v is None or np.size(v) == 0:
        return np.full(size, fill, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64).ravel()
    if v.size != size:
        raise ValueError(f"向量长度须为 {size}, 实际: {v.size}")
    return v


def active_set(
    A:      sp.spmatrix,
    B:      Optional[np.ndarray],
    known:  np.ndarray,
    Y:      np.ndarray,
    Aeq:    Optional[sp.spmatrix],
    Beq:    Optional[np.ndarray],
    Aieq:   Optional[sp.spmatrix],
    Bieq:   Optional[np.ndarray],
    lx:     Optional[np.ndarray],
    ux:     Optional[np.ndarray],
    params: ActiveSetParams,
    Z:      Optional[np.ndarray] = None,
) -> Tuple[SolverStatus, Optional[np.ndarray]]:
    """
    有效集法求解带盒约束的二次规划。

    Parameters
    ----------
    A : sp.spmatrix, shape (N, N)
        对称半正定二次型矩阵。
    B : np.ndarray, shape (N,), optional
        线性项, None 视为零。
    known, Y : np.ndarray, shape (K,)
        固定变量索引与取值。
    Aeq, Beq : 等式约束, 可为 None 或 0 行。
    Aieq, Bieq : 不等式约束 Aieq z <= Bieq, 可为 None 或 0 行。
    lx, ux : np.ndarray, shape (N,), optional
        上下界, None 视为 ∓inf。
    params : ActiveSetParams
        迭代参数。
    Z : np.ndarray, shape (N,), optional
        初始猜测 (warm start) ; 缺省或长度不符时从零开始。

    Returns
    -------
    status : SolverStatus
        CONVERGED / MAX_ITER / ERROR。
    Z : np.ndarray, shape (N,) or None
        MAX_ITER 时为当前最好的迭代值; ERROR 时为 None。
    """
    A = sp.csr_matrix(A)
    n = A.shape[0]

    B     = _as_vector(B, n, 0.0)
    lx    = _as_vector(lx, n, -np.inf)
    ux    = _as_vector(ux, n, np.inf)
    known = np.asarray(known, dtype=np.int64).ravel()
    Y     = np.asarray(Y, dtype=np.float64).ravel()
    if Y.size != known.size:
        raise ValueError(f"Y 长度 ({Y.size}) 须与 known 长度 ({known.size}) 一致。")

    Aeq  = _as_constraint_matrix(Aeq, n)
    Aieq = _as_constraint_matrix(Aieq, n)
    Beq  = _as_vector(Beq, Aeq.shape[0], 0.0)
    Bieq = _as_vector(Bieq, Aieq.shape[0], 0.0)
    neq  = Aeq.shape[0]

    if Z is None or np.size(Z) != n:
        Z = np.zeros(n, dtype=np.float64)
    else:
        Z = np.asarray(Z, dtype=np.float64).ravel().copy()
    Z[known] = Y

    known_mask = np.zeros(n, dtype=bool)
    known_mask[known] = True

    as_lx  = np.zeros(n, dtype=bool)
    as_ux  = np.zeros(n, dtype=bool)
    as_ieq = np.zeros(Aieq.shape[0], dtype=bool)
    Z_old  = np.full(n, np.inf)
    thr    = params.constraint_threshold

    iteration = 0
    while True:
        if params.max_iter > 0 and iteration >= params.max_iter:
            return SolverStatus.MAX_ITER, Z

        # ---- 检测违反的约束 --------------------------------------------------
        as_lx |= (Z < lx - thr) & ~known_mask
        as_ux |= (Z > ux + thr) & ~known_mask
        as_ux &= ~as_lx
        if as_ieq.size:
            as_ieq |= (Aieq @ Z) > Bieq + thr

        diff = float(np.sum((Z - Z_old) ** 2))
        if diff < params.solution_diff_threshold:
            return SolverStatus.CONVERGED, Z
        Z_old = Z.copy()

        # ---- 组装子问题:有效边界并入固定变量, 有效不等式并入等式 ------------
        lx_idx  = np.flatnonzero(as_lx)
        ux_idx  = np.flatnonzero(as_ux)
        ieq_idx = np.flatnonzero(as_ieq)

        known_i = np.concatenate([known, lx_idx, ux_idx])
        Y_i     = np.concatenate([Y, lx[lx_idx], ux[ux_idx]])
        Aeq_i   = sp.vstack([Aeq, Aieq[ieq_idx]], format="csr")
        Beq_i   = np.concatenate([Beq, Bieq[ieq_idx]])

        try:
            data = MinQuadWithFixed(
                A, known_i, Aeq_i,
                positive_definite=params.Auu_pd and Aeq_i.shape[0] == 0,
            )
            Z, lambda_eq = data.solve(B, Y_i, Beq_i)
        except SolverError as exc:
            logger.debug("active_set: 第 %d 轮子问题求解失败: %s", iteration, exc)
            return SolverStatus.ERROR, None

        # ---- Lagrange 乘子, 移出不再起作用的约束 ----------------------------
        grad = A @ Z + B
        lambda_lx  = grad[lx_idx]
        lambda_ux  = -grad[ux_idx]
        lambda_ieq = lambda_eq[neq:]

        as_lx[lx_idx[lambda_lx < params.inactive_threshold]] = False
        as_ux[ux_idx[lambda_ux < params.inactive_threshold]] = False
        as_ieq[ieq_idx[lambda_ieq < params.inactive_threshold]] = False

        iteration += 1
