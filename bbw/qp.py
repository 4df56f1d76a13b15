"""
可替换的约束二次规划 (QP) 求解后端。

每个后端针对单个 handle 求解:

    min_x   ½ xᵀQx + xᵀc
    s.t.    x[b] = bc_i
            lx <= x <= ux

统一接口
--------
    solver.solve(Q, linear_term, equality_rows, equality_values,
                 lower_bounds, upper_bounds, params, warm_start) -> (status, x)

已有后端:
    ActiveSetQP — 内置有效集法 (见 active_set.py) , 使用 warm start,
                  迭代耗尽时返回 MAX_ITER (软失败)
    CvxpyQP     — 外部求解器 (cvxpy) , 等式约束改写为收紧的上下界,
                  仅有成功 / 失败两种结果

新后端通过继承 QPSolver 并登记到 _SOLVERS 添加。
"""

from __future__ import annotations

import abc
import dataclasses
import enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import cvxpy as cp
import numpy as np
import scipy.sparse as sp

from .active_set import ActiveSetParams, SolverStatus, active_set
from .errors import UnsupportedConfigurationError


class QPSolverKind(enum.Enum):
    ACTIVE_SET = "active_set"
    CVXPY = "cvxpy"


@dataclasses.dataclass(frozen=True)
class CvxpyParams:
    """
    外部 QP 后端参数, 原样传给 cvxpy.Problem.solve。

    Attributes
    ----------
    solver : str or None
        cvxpy 求解器名称, 默认 "CLARABEL"; None 交由 cvxpy 自动选择。
    verbose : bool
        是否打印求解器日志。
    solver_options : Mapping[str, Any]
        额外的求解器关键字参数。
    """

    solver:         Optional[str]      = "CLARABEL"
    verbose:        bool               = False
    solver_options: Mapping[str, Any]  = dataclasses.field(default_factory=dict)


class QPSolver(abc.ABC):
    """QP 后端抽象基类。"""

    #: 后端名称, 用于日志。
    name: str = "qp"

    #: 是否利用调度器提供的初始猜测 (需要先做一次仅等式约束的求解) 。
    uses_warm_start: bool = False

    @abc.abstractmethod
    def solve(
        self,
        Q:               sp.spmatrix,
        linear_term:     np.ndarray,
        equality_rows:   np.ndarray,
        equality_values: np.ndarray,
        lower_bounds:    np.ndarray,
        upper_bounds:    np.ndarray,
        params:          Any,
        warm_start:      Optional[np.ndarray],
    ) -> Tuple[SolverStatus, Optional[np.ndarray]]:
        """
        求解单个 handle 的 QP。

        Returns
        -------
        status : SolverStatus
        x : np.ndarray, shape (N,) or None
            ERROR 时不可信 (可能为 None) 。
        """

    def params_for(self, data: Any, warm_started: bool) -> Any:
        """
        从 BBWData 中取出本后端使用的参数。

        warm_started 为 True 表示调度器已做过一次初始求解。
        """
        return None


class ActiveSetQP(QPSolver):
    """内置有效集法后端。"""

    name = "active_set"
    uses_warm_start = True

    def solve(
        self,
        Q:               sp.spmatrix,
        linear_term:     np.ndarray,
        equality_rows:   np.ndarray,
        equality_values: np.ndarray,
        lower_bounds:    np.ndarray,
        upper_bounds:    np.ndarray,
        params:          Optional[ActiveSetParams],
        warm_start:      Optional[np.ndarray],
    ) -> Tuple[SolverStatus, Optional[np.ndarray]]:
        return active_set(
            Q, linear_term, equality_rows, equality_values,
            None, None, None, None,
            lower_bounds, upper_bounds,
            params if params is not None else ActiveSetParams(),
            warm_start,
        )

    def params_for(self, data: Any, warm_started: bool) -> ActiveSetParams:
        return data.effective_active_set_params() if warm_started else data.active_set_params


class CvxpyQP(QPSolver):
    """
    cvxpy 外部求解后端。

    等式约束 x[b] = bc 先被改写为 lx[b] = ux[b] = bc, 再作为纯盒约束 QP 求解。
    上下界相等的变量以等式形式交给求解器, 其余变量为普通盒约束。
    """

    name = "cvxpy"
    uses_warm_start = False

    def solve(
        self,
        Q:               sp.spmatrix,
        linear_term:     np.ndarray,
        equality_rows:   np.ndarray,
        equality_values: np.ndarray,
        lower_bounds:    np.ndarray,
        upper_bounds:    np.ndarray,
        params:          Optional[CvxpyParams],
        warm_start:      Optional[np.ndarray],
    ) -> Tuple[SolverStatus, Optional[np.ndarray]]:
        params = params if params is not None else CvxpyParams()

        lx = np.array(lower_bounds, dtype=np.float64)
        ux = np.array(upper_bounds, dtype=np.float64)
        lx[equality_rows] = equality_values
        ux[equality_rows] = equality_values

        ok, x = self._bound_constrained_qp(Q, linear_term, lx, ux, params)
        return (SolverStatus.CONVERGED, x) if ok else (SolverStatus.ERROR, None)

    @staticmethod
    def _bound_constrained_qp(
        Q:      sp.spmatrix,
        c:      np.ndarray,
        lx:     np.ndarray,
        ux:     np.ndarray,
        params: CvxpyParams,
    ) -> Tuple[bool, Optional[np.ndarray]]:
        n = Q.shape[0]
        pinned = np.flatnonzero(lx == ux)
        boxed  = np.flatnonzero(lx != ux)

        x = cp.Variable(n)
        objective = 0.5 * cp.quad_form(x, cp.psd_wrap(sp.csc_matrix(Q)))
        if c is not None and np.any(c):
            objective = objective + x @ np.asarray(c, dtype=np.float64)

        constraints = []
        if pinned.size:
            constraints.append(x[pinned] == lx[pinned])
        if boxed.size:
            finite_lo = boxed[np.isfinite(lx[boxed])]
            finite_hi = boxed[np.isfinite(ux[boxed])]
            if finite_lo.size:
                constraints.append(x[finite_lo] >= lx[finite_lo])
            if finite_hi.size:
                constraints.append(x[finite_hi] <= ux[finite_hi])

        problem = cp.Problem(cp.Minimize(objective), constraints)
        try:
            problem.solve(
                solver=params.solver, verbose=params.verbose, **dict(params.solver_options)
            )
        except cp.SolverError:
            return False, None

        if problem.status not in (cp.OPTIMAL, cp.OPTIMAL_INACCURATE) or x.value is None:
            return False, None

        # 内点法结果在边界附近有 ~1e-9 量级的越界, 投影回盒内
        sol = np.clip(np.asarray(x.value, dtype=np.float64).ravel(), lx, ux)
        return True, sol

    def params_for(self, data: Any, warm_started: bool) -> CvxpyParams:
        return data.cvxpy_params


_SOLVERS: Dict[QPSolverKind, type] = {
    QPSolverKind.ACTIVE_SET: ActiveSetQP,
    QPSolverKind.CVXPY:      CvxpyQP,
}


def create_qp_solver(kind: Union[QPSolverKind, str, QPSolver]) -> QPSolver:
    """
    由求解器种类创建后端实例; 传入 QPSolver 实例时原样返回。

    Raises
    ------
    UnsupportedConfigurationError
        若 kind 无法识别。
    """
    if isinstance(kind, QPSolver):
        return kind
    try:
        kind = QPSolverKind(kind)
    except ValueError as exc:
        raise UnsupportedConfigurationError(f"未知的 QP 求解器: {kind!r}") from exc
    return _SOLVERS[kind]()
