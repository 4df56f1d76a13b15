"""
BBW 计算参数。

BBWData 是显式传入计算入口的配置值, 计算过程中不被修改;
调度器仅从中派生局部副本 (如递减后的迭代预算) 。
"""

from __future__ import annotations

import dataclasses
from typing import Optional, Union

import numpy as np

from .active_set import ActiveSetParams
from .qp import CvxpyParams, QPSolver, QPSolverKind


@dataclasses.dataclass
class BBWData:
    """
    BBW 计算配置。

    Attributes
    ----------
    partition_unity : bool
        强制每个顶点的权重和为 1。尚未实现, 置 True 时计算直接失败。
    qp_solver : QPSolverKind, str or QPSolver
        QP 后端; 可直接传入自定义 QPSolver 实例。
    active_set_params : ActiveSetParams
        仅 ACTIVE_SET 后端使用。
    cvxpy_params : CvxpyParams
        仅 CVXPY 后端使用。
    W0 : np.ndarray, shape (N, M), optional
        初始猜测。给定时替代仅等式约束的初始求解。
    num_workers : int, optional
        并行求解各 handle 的线程数; None 交由线程池自行决定。
    verbose : bool
        是否输出进度日志。
    row_sum_threshold : float
        行和检查阈值, 最小行和低于此值时给出警告。
    """

    partition_unity:   bool                                   = False
    qp_solver:         Union[QPSolverKind, str, QPSolver]     = QPSolverKind.ACTIVE_SET
    active_set_params: ActiveSetParams                        = dataclasses.field(default_factory=ActiveSetParams)
    cvxpy_params:      CvxpyParams                            = dataclasses.field(default_factory=CvxpyParams)
    W0:                Optional[np.ndarray]                   = None
    num_workers:       Optional[int]                          = None
    verbose:           bool                                   = False
    row_sum_threshold: float                                  = 0.1

    def effective_active_set_params(self) -> ActiveSetParams:
        """初始求解已消耗一次迭代后的有效集参数副本 (见 ActiveSetParams.decremented) 。"""
        return self.active_set_params.decremented()

    def describe(self) -> str:
        """返回配置的多行可读摘要。"""
        if isinstance(self.qp_solver, QPSolver):
            solver_name = f"{type(self.qp_solver).__name__} ({self.qp_solver.name})"
        elif isinstance(self.qp_solver, QPSolverKind):
            solver_name = self.qp_solver.value
        else:
            solver_name = str(self.qp_solver)

        w0 = "None" if self.W0 is None else f"array{np.shape(self.W0)}"
        lines = [
            f"partition_unity: {self.partition_unity}",
            f"W0: {w0}",
            f"qp_solver: {solver_name}",
            f"active_set_params: {self.active_set_params}",
            f"cvxpy_params: {self.cvxpy_params}",
            f"num_workers: {self.num_workers}",
        ]
        return "\n".join(lines)
