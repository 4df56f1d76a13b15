"""
min_quad_with_fixed 使用的稀疏分解。

LUFactor       — SuperLU, 适用于任意非奇异方阵 (含等式约束的 KKT 系统)
CholeskyFactor — 对称正定的自由子系统; 装有 scikit-sparse 时走 CHOLMOD,
                 否则退化为对称排序的 SuperLU

factorization(A) 分解一次, solve(b) 可对单列或多列右端项反复回代。
分解失败 (奇异 / 非正定) 统一抛出 RuntimeError, 由调用方转换为 SolverError。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

try:
    from sksparse.cholmod import CholmodError, cholesky  # type: ignore
except ImportError:
    cholesky = None


def _as_square_csc(A: sp.spmatrix) -> sp.csc_matrix:
    if A.shape[0] != A.shape[1]:
        raise ValueError(f"矩阵 A 须为方阵, 实际 shape: {A.shape}")
    return sp.csc_matrix(A)


class LUFactor:
    """一般稀疏方阵的 LU 分解 (SuperLU) 。"""

    #: splu 的列排序策略
    permc_spec = "COLAMD"

    def __init__(self) -> None:
        self._factor = None

    @property
    def backend(self) -> str:
        return "superlu"

    def factorization(self, A: sp.spmatrix) -> None:
        self._factor = spla.splu(_as_square_csc(A), permc_spec=self.permc_spec)

    def solve(self, b: np.ndarray) -> np.ndarray:
        """
        Parameters
        ----------
        b : np.ndarray, shape (M,) or (M, K)

        Returns
        -------
        x : np.ndarray, 与 b 同形状
        """
        if self._factor is None:
            raise RuntimeError("请先调用 factorization() 完成矩阵分解, 再调用 solve()。")
        return self._factor.solve(np.asarray(b, dtype=np.float64))


class CholeskyFactor(LUFactor):
    """
    对称正定矩阵的分解:CHOLMOD 优先, 缺失时使用 SuperLU。

    仅在 MinQuadWithFixed 声明 positive_definite 且没有等式约束时使用,
    例如 BBW 初始猜测中对 Q_uu 的一次分解、多列回代。
    """

    # A_uu 对称, 按 Aᵀ + A 的结构做最小度排序
    permc_spec = "MMD_AT_PLUS_A"

    @property
    def backend(self) -> str:
        return "superlu" if cholesky is None else "cholmod"

    def factorization(self, A: sp.spmatrix) -> None:
        if cholesky is None:
            super().factorization(A)
            return
        try:
            self._factor = cholesky(_as_square_csc(A))
        except CholmodError as exc:
            raise RuntimeError(f"CHOLMOD 分解失败: {exc}") from exc

    def solve(self, b: np.ndarray) -> np.ndarray:
        if cholesky is None or self._factor is None:
            return super().solve(b)
        return self._factor.solve_A(np.asarray(b, dtype=np.float64))
