"""
有界双调和权重 (BBW) — 网格蒙皮权重计算。

纯算法层, 仅依赖 numpy / scipy / cvxpy, 与任何 DCC 工具解耦。

    >>> from bbw import solve_weights
    >>> ok, W = solve_weights(V, T, b, bc)
"""

from .active_set import ActiveSetParams, SolverStatus, active_set
from .config import BBWData
from .constraints import HandleConstraints
from .errors import (
    BBWError,
    DegenerateMeshError,
    SolverError,
    UnsupportedConfigurationError,
)
from .mesh import MeshData
from .min_quad_with_fixed import MinQuadWithFixed, min_quad_with_fixed
from .operators import (
    MassMatrixType,
    biharmonic_operator,
    cotmatrix,
    invert_diag,
    massmatrix,
)
from .qp import ActiveSetQP, CvxpyParams, CvxpyQP, QPSolver, QPSolverKind, create_qp_solver
from .validation import check_row_sums
from .weights import BBWResult, BBWSolver, bbw, create_solver, solve_weights

__version__ = "0.1.0"
