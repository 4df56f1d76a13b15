"""
有界双调和权重 (Bounded Biharmonic Weights) 计算入口。

算法参考
--------
Jacobson, A., Baran, I., Popović, J., & Sorkine, O. (2011).
    Bounded biharmonic weights for real-time deformation.
    ACM Transactions on Graphics (SIGGRAPH), 30(4), 78:1-78:8.

问题
----
对每个 handle i 独立求解:

    min_w   ½ wᵀ Q w
    s.t.    w[b] = bc[:, i]
            0 <= w <= 1

    其中 Q = Lᵀ M⁻¹ L 为双调和算子 (见 operators.py) 。

求解流程
--------
[预计算阶段]
1. 配置检查 (partition_unity、求解器种类)
2. 构建双调和算子 Q (仅一次, 所有 handle 复用)
3. 初始猜测:
   - 后端使用 warm start 且给定 W0 时直接采用 W0
   - 否则对所有 handle 一次性求解仅等式约束问题 (一次分解多次回代) ,
     并将迭代预算减一

[并行阶段]
4. 线程池中每个 handle 一个任务, 各自写入独立的列;
   任一 handle 报告 ERROR 后, 尚未开始的任务直接跳过

[汇总阶段]
5. 存在 ERROR 则整体失败 (W 作废) ; MAX_ITER 仅记录警告
6. 行和检查 (仅提示)
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from .active_set import ActiveSetParams, SolverStatus
from .config import BBWData
from .constraints import HandleConstraints
from .errors import BBWError, SolverError, UnsupportedConfigurationError
from .mesh import MeshData
from .min_quad_with_fixed import MinQuadWithFixed
from .operators import biharmonic_operator
from .qp import QPSolverKind, create_qp_solver
from .validation import check_row_sums

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class HandleResult:
    """单个 handle 的求解结果, 由工作线程返回。"""

    index:   int
    status:  SolverStatus
    x:       Optional[np.ndarray]
    skipped: bool = False


@dataclasses.dataclass
class BBWResult:
    """
    成功计算的权重及诊断信息。

    Attributes
    ----------
    W : np.ndarray, shape (N, M)
        权重矩阵, 第 i 列为 handle i 的权重。
    statuses : List[SolverStatus]
        各 handle 的求解状态 (CONVERGED 或 MAX_ITER) 。
    diagnostics : List[str]
        非致命警告 (未收敛、行和过低) 。
    min_row_sum : float
        min_v |Σ_j W[v, j]|。
    success : bool
        恒为 True; 失败时不会构造 BBWResult。
    """

    W:           np.ndarray
    statuses:    List[SolverStatus]
    diagnostics: List[str]
    min_row_sum: float
    success:     bool = True

    @property
    def converged(self) -> bool:
        return all(s is SolverStatus.CONVERGED for s in self.statuses)


# =============================================================================
# BBW 求解器
# =============================================================================

class BBWSolver:
    """
    有界双调和权重求解器。

    Parameters
    ----------
    data : BBWData
        计算配置, 求解过程中只读。

    Raises
    ------
    UnsupportedConfigurationError
        若 partition_unity 为 True, 或 qp_solver 无法识别。
    """

    def __init__(self, data: BBWData) -> None:
        if data.partition_unity:
            raise UnsupportedConfigurationError(
                "partition_unity 尚未实现, 请关闭该选项。"
            )
        self.data      = data
        self.qp_solver = create_qp_solver(data.qp_solver)
        self.verbose   = data.verbose

    # =========================================================================
    # 步骤 1:双调和算子
    # =========================================================================

    def build_operator(self, mesh: MeshData) -> sp.csc_matrix:
        """构建 Q = Lᵀ M⁻¹ L; 网格退化时抛出 DegenerateMeshError。"""
        if self.verbose:
            logger.info("[BBW] 构建双调和算子 (%s) ...", mesh)
        return biharmonic_operator(mesh)

    # =========================================================================
    # 步骤 2:初始猜测
    # =========================================================================

    def initial_guess(
        self,
        Q:           sp.spmatrix,
        constraints: HandleConstraints,
    ) -> Tuple[Optional[np.ndarray], bool]:
        """
        计算所有 handle 的初始猜测。

        Returns
        -------
        W_init : np.ndarray, shape (N, M) or None
            后端不使用 warm start 时为 None。
        warm_started : bool
            是否执行了仅等式约束的初始求解 (决定迭代预算是否递减) 。
        """
        if not self.qp_solver.uses_warm_start:
            return None, False

        n = Q.shape[0]
        m = constraints.num_handles
        if self.data.W0 is not None:
            W0 = np.array(self.data.W0, dtype=np.float64)
            if W0.shape != (n, m):
                raise ValueError(f"W0 应为 shape ({n}, {m}), 实际 shape: {W0.shape}")
            W0[constraints.b] = constraints.bc
            return W0, False

        if self.verbose:
            logger.info("[BBW] 计算 %d 个 handle 的初始权重...", m)
        mqwf = MinQuadWithFixed(Q, constraints.b, None, positive_definite=True)
        W_init, _ = mqwf.solve(None, constraints.bc)
        return W_init, True

    # =========================================================================
    # 步骤 3:单个 handle 求解 (工作线程)
    # =========================================================================

    def solve_handle(
        self,
        i:           int,
        Q:           sp.spmatrix,
        constraints: HandleConstraints,
        params:      object,
        W_init:      Optional[np.ndarray],
        failed:      threading.Event,
    ) -> HandleResult:
        """
        求解 handle i 的 QP。只读取共享数据, 结果通过返回值交回。

        failed 已被置位时直接跳过 (不会取消已在运行的任务) 。
        """
        if failed.is_set():
            return HandleResult(i, SolverStatus.ERROR, None, skipped=True)

        m = constraints.num_handles
        if self.verbose:
            logger.info("[BBW] 计算 handle %d / %d 的权重...", i + 1, m)

        n  = Q.shape[0]
        c  = np.zeros(n)
        lx = np.zeros(n)
        ux = np.ones(n)
        warm_start = None if W_init is None else W_init[:, i].copy()

        status, x = self.qp_solver.solve(
            Q, c, constraints.b, constraints.bc[:, i], lx, ux, params, warm_start
        )
        if status is SolverStatus.ERROR or x is None:
            logger.error("[BBW] %s: handle %d 求解失败。", self.qp_solver.name, i)
            failed.set()
            return HandleResult(i, SolverStatus.ERROR, None)
        return HandleResult(i, status, np.asarray(x, dtype=np.float64))

    def dispatch(
        self,
        Q:           sp.spmatrix,
        constraints: HandleConstraints,
        params:      object,
        W_init:      Optional[np.ndarray],
    ) -> List[HandleResult]:
        """在线程池中并行求解所有 handle, 结果按 handle 顺序返回。"""
        failed = threading.Event()
        m = constraints.num_handles
        with ThreadPoolExecutor(max_workers=self.data.num_workers) as executor:
            futures = [
                executor.submit(self.solve_handle, i, Q, constraints, params, W_init, failed)
                for i in range(m)
            ]
            return [future.result() for future in futures]

    # =========================================================================
    # 主入口
    # =========================================================================

    def execute(self, mesh: MeshData, constraints: HandleConstraints) -> BBWResult:
        """
        计算网格上的有界双调和权重。

        Parameters
        ----------
        mesh : MeshData
            三角网格或四面体网格。
        constraints : HandleConstraints
            受约束顶点与目标权重。

        Returns
        -------
        result : BBWResult

        Raises
        ------
        ValueError
            若约束索引越界或 W0 形状不符。
        DegenerateMeshError
            若网格含退化单元 (在任何求解之前) 。
        SolverError
            若任一 handle 求解失败; 此时不返回任何部分结果。
        """
        n = mesh.num_vertices
        m = constraints.num_handles
        constraints.validate(n)

        if self.verbose:
            logger.info(
                "[BBW] 网格:%d 顶点, %d 单元, %d 处约束, %d 个 handle",
                n, mesh.num_elements, constraints.num_constrained, m,
            )
            logger.info("[BBW] 配置:\n%s", self.data.describe())

        Q = self.build_operator(mesh)
        W_init, warm_started = self.initial_guess(Q, constraints)
        params = self.qp_solver.params_for(self.data, warm_started)

        results = self.dispatch(Q, constraints, params, W_init)

        failures = [r.index for r in results if r.status is SolverStatus.ERROR and not r.skipped]
        if failures:
            raise SolverError(
                f"{self.qp_solver.name}: {len(failures)} 个 handle 求解失败 "
                f"(handle {failures}) , 结果作废。"
            )

        diagnostics: List[str] = []
        for r in results:
            if r.status is SolverStatus.MAX_ITER:
                msg = f"handle {r.index}: active set 达到最大迭代次数仍未收敛。"
                logger.warning("[BBW] %s", msg)
                diagnostics.append(msg)

        W = np.column_stack([r.x for r in results])

        min_row_sum, warning = check_row_sums(W, self.data.row_sum_threshold)
        if warning is not None:
            logger.warning("[BBW] %s", warning)
            diagnostics.append(warning)

        if self.verbose:
            logger.info("[BBW] 求解完成。")

        return BBWResult(
            W=W,
            statuses=[r.status for r in results],
            diagnostics=diagnostics,
            min_row_sum=min_row_sum,
        )


# =============================================================================
# 便利函数
# =============================================================================

def create_solver(
    qp_solver:   QPSolverKind = QPSolverKind.ACTIVE_SET,
    max_iter:    int          = 100,
    num_workers: Optional[int] = None,
    verbose:     bool         = False,
) -> BBWSolver:
    """
    快速创建 BBWSolver 实例。

    Examples
    --------
    >>> mesh = MeshData(V, T)
    >>> constraints = HandleConstraints.point_handles([0, 41])
    >>> result = create_solver(max_iter=50).execute(mesh, constraints)
    >>> result.W.shape   # (N, 2)
    """
    data = BBWData(
        qp_solver=qp_solver,
        active_set_params=ActiveSetParams(max_iter=max_iter),
        num_workers=num_workers,
        verbose=verbose,
    )
    return BBWSolver(data)


def bbw(
    V:    np.ndarray,
    Ele:  np.ndarray,
    b:    np.ndarray,
    bc:   np.ndarray,
    data: Optional[BBWData] = None,
) -> BBWResult:
    """
    计算有界双调和权重, 致命错误以异常形式抛出。

    Parameters
    ----------
    V : np.ndarray, shape (N, 3), or MeshData
        顶点坐标; 直接传入 MeshData 时忽略 Ele。
    Ele : np.ndarray, shape (E, 3) or (E, 4)
        三角形或四面体单元。
    b : np.ndarray, shape (K,)
        受约束顶点索引。
    bc : np.ndarray, shape (K, M)
        目标权重, 行与 b 对齐。
    data : BBWData, optional
        配置, 缺省时使用默认值。
    """
    solver = BBWSolver(data if data is not None else BBWData())
    mesh = V if isinstance(V, MeshData) else MeshData(V, Ele)
    return solver.execute(mesh, HandleConstraints(b, bc))


def solve_weights(
    V:      np.ndarray,
    Ele:    np.ndarray,
    b:      np.ndarray,
    bc:     np.ndarray,
    config: Optional[BBWData] = None,
) -> Tuple[bool, Optional[np.ndarray]]:
    """
    计算有界双调和权重, 返回 (success, W)。

    网格退化、任一 handle 求解失败、partition_unity 或未知求解器时
    返回 (False, None)。输入形状错误仍抛出 ValueError。
    """
    try:
        result = bbw(V, Ele, b, bc, config)
    except BBWError as exc:
        logger.error("[BBW] 计算失败: %s", exc)
        return False, None
    return True, result.W
