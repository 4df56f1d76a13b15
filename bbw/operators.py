"""
由网格几何构建双调和能量算子。

算子定义
--------
    Q = Lᵀ · M⁻¹ · L

    其中:
        L   — 余切 Laplacian ((N, N), 对称, 行和为零, 负半定)
        M   — 集中 (对角) 质量矩阵:三角网格用混合 Voronoi 面积,
              四面体网格用重心体积
        Q   — 双调和算子 ((N, N), 对称正半定)

Q 在一次 BBW 计算中只构建一次, 被所有 handle 的 QP 复用。
"""

from __future__ import annotations

import enum
from typing import Tuple

import numpy as np
import scipy.sparse as sp

from .errors import DegenerateMeshError
from .mesh import MeshData

# 单元测度相对阈值:|T| <= DEGENERATE_RTOL * h^d 视为退化, h 为包围盒对角线
DEGENERATE_RTOL = 1e-14


class MassMatrixType(enum.Enum):
    DEFAULT = "default"
    BARYCENTRIC = "barycentric"
    VORONOI = "voronoi"


# =============================================================================
# 退化检查
# =============================================================================

def check_nondegenerate(mesh: MeshData) -> np.ndarray:
    """
    检查所有单元的测度均非零, 返回单元测度数组。

    零面积三角形 / 零体积四面体会使余切权重无定义 (除以零) ,
    必须在任何求解之前拒绝。

    Raises
    ------
    DegenerateMeshError
        若存在退化单元。
    """
    measures = mesh.element_measures()
    h = mesh.bounding_box_diagonal()
    d = mesh.simplex_size - 1
    tol = DEGENERATE_RTOL * max(h, np.finfo(np.float64).tiny) ** d

    bad = np.flatnonzero(~(measures > tol))
    if bad.size:
        raise DegenerateMeshError(
            f"网格含 {bad.size} 个退化单元 (测度 <= {tol:.3e}) , "
            f"首个退化单元索引: {int(bad[0])}"
        )
    return measures


# =============================================================================
# 余切 Laplacian
# =============================================================================

def _cotmatrix_triangles(mesh: MeshData) -> sp.csr_matrix:
    """
    三角网格余切 Laplacian。

    对三角形 (i, j, k), 以顶点 i 为角顶点, 其对边为 (j, k):
        w_{jk} += cot(α_i) / 2

    L[j, k] = w_jk, L[j, j] = -Σ_k w_jk。不截断钝角产生的负权重,
    以保持算子与连续双调和能量一致。
    """
    n  = mesh.num_vertices
    vp = mesh.vertices
    F  = mesh.elements

    rows, cols, vals = [], [], []
    for local_vtx in range(3):
        vi = F[:, local_vtx]
        vj = F[:, (local_vtx + 1) % 3]
        vk = F[:, (local_vtx + 2) % 3]

        e_ij = vp[vj] - vp[vi]
        e_ik = vp[vk] - vp[vi]

        cos_a = np.einsum("ij,ij->i", e_ij, e_ik)
        sin_a = np.linalg.norm(np.cross(e_ij, e_ik), axis=1)
        w = 0.5 * cos_a / sin_a

        rows += [vj, vk, vj, vk]
        cols += [vk, vj, vj, vk]
        vals += [w, w, -w, -w]

    L = sp.coo_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(n, n),
    )
    return L.tocsr()


def _cotmatrix_tets(mesh: MeshData, measures: np.ndarray) -> sp.csr_matrix:
    """
    四面体网格余切 Laplacian。

    每个单元的线性有限元刚度矩阵:
        K_T = |T| · D G⁻¹ Dᵀ,   G = EᵀE,   D = [-1ᵀ; I]

    其非对角元等于 -l_kl·cot(θ_kl)/6 (θ_kl 为对边 kl 处的二面角) ,
    即四面体的余切权重。L = -Σ_T K_T。
    """
    n = mesh.num_vertices
    E = mesh.element_edges()                          # (T, 3, 3)
    gram = np.einsum("eia,eib->eab", E, E)
    gram_inv = np.linalg.inv(gram)

    D = np.vstack([-np.ones((1, 3)), np.eye(3)])      # (4, 3)
    K = np.einsum("ia,eab,jb->eij", D, gram_inv, D) * measures[:, None, None]

    T = mesh.elements
    rows = np.broadcast_to(T[:, :, None], K.shape).ravel()
    cols = np.broadcast_to(T[:, None, :], K.shape).ravel()
    L = sp.coo_matrix((-K.ravel(), (rows, cols)), shape=(n, n))
    return L.tocsr()


def cotmatrix(mesh: MeshData) -> sp.csr_matrix:
    """
    构建网格余切 Laplacian 矩阵 L。

    Parameters
    ----------
    mesh : MeshData
        三角网格或四面体网格。

    Returns
    -------
    L : sp.csr_matrix, shape (N, N)
        对称、行和为零的余切 Laplacian (非对角元为余切权重) 。

    Raises
    ------
    DegenerateMeshError
        若存在零面积 / 零体积单元。
    """
    measures = check_nondegenerate(mesh)
    if mesh.is_volumetric:
        return _cotmatrix_tets(mesh, measures)
    return _cotmatrix_triangles(mesh)


# =============================================================================
# 质量矩阵
# =============================================================================

def _voronoi_areas(mesh: MeshData, areas: np.ndarray) -> np.ndarray:
    """
    混合 Voronoi 面积 (Meyer et al. 2003) , 返回 shape (F, 3) 的角点面积。

    非钝角三角形:角点 i 分得 (|e_ij|² cot γ_k + |e_ik|² cot γ_j) / 8;
    钝角三角形:钝角顶点分得 |T|/2, 其余两顶点各 |T|/4。
    """
    vp = mesh.vertices
    F  = mesh.elements

    cots = np.empty(F.shape, dtype=np.float64)
    sq_len = np.empty(F.shape, dtype=np.float64)   # sq_len[:, c] 为角点 c 对边长度平方
    for c in range(3):
        a = vp[F[:, c]]
        b = vp[F[:, (c + 1) % 3]]
        d = vp[F[:, (c + 2) % 3]]
        cots[:, c] = (np.einsum("ij,ij->i", b - a, d - a)
                      / np.linalg.norm(np.cross(b - a, d - a), axis=1))
        sq_len[:, c] = np.einsum("ij,ij->i", d - b, d - b)

    quads = np.empty(F.shape, dtype=np.float64)
    for c in range(3):
        j, k = (c + 1) % 3, (c + 2) % 3
        quads[:, c] = (sq_len[:, k] * cots[:, k] + sq_len[:, j] * cots[:, j]) / 8.0

    obtuse = cots < 0.0
    any_obtuse = obtuse.any(axis=1)
    quads[any_obtuse] = 0.25 * areas[any_obtuse, None]
    quads[obtuse] = 0.5 * np.broadcast_to(areas[:, None], F.shape)[obtuse]
    return quads


def massmatrix(
    mesh: MeshData,
    kind: MassMatrixType = MassMatrixType.DEFAULT,
) -> sp.csr_matrix:
    """
    构建集中 (对角) 质量矩阵 M。

    Parameters
    ----------
    mesh : MeshData
        三角网格或四面体网格。
    kind : MassMatrixType, optional
        DEFAULT 时按单元列数选择:四面体 → BARYCENTRIC, 三角形 → VORONOI。

    Returns
    -------
    M : sp.csr_matrix, shape (N, N)
        对角质量矩阵, 对角元为各顶点分得的面积 / 体积。

    Raises
    ------
    ValueError
        若对四面体网格请求 VORONOI 质量矩阵。
    DegenerateMeshError
        若存在退化单元。
    """
    if kind is MassMatrixType.DEFAULT:
        kind = MassMatrixType.BARYCENTRIC if mesh.is_volumetric else MassMatrixType.VORONOI
    if kind is MassMatrixType.VORONOI and mesh.is_volumetric:
        raise ValueError("VORONOI 质量矩阵仅支持三角网格。")

    measures = check_nondegenerate(mesh)
    if kind is MassMatrixType.BARYCENTRIC:
        per_corner = np.repeat(
            measures[:, None] / mesh.simplex_size, mesh.simplex_size, axis=1
        )
    else:
        per_corner = _voronoi_areas(mesh, measures)

    diag = np.bincount(
        mesh.elements.ravel(), weights=per_corner.ravel(), minlength=mesh.num_vertices
    )
    return sp.diags(diag, format="csr")


def invert_diag(M: sp.spmatrix) -> sp.csr_matrix:
    """
    对角矩阵求逆 (仅取对角元) 。

    Raises
    ------
    DegenerateMeshError
        若任一对角元为零或非有限值 (孤立顶点或退化单元) 。
    """
    d = np.asarray(M.diagonal(), dtype=np.float64)
    bad = np.flatnonzero((d == 0.0) | ~np.isfinite(d))
    if bad.size:
        raise DegenerateMeshError(
            f"质量矩阵有 {bad.size} 个不可逆对角元, 首个顶点索引: {int(bad[0])}"
        )
    return sp.diags(1.0 / d, format="csr")


# =============================================================================
# 双调和算子
# =============================================================================

def biharmonic_operator(
    mesh: MeshData,
    mass_type: MassMatrixType = MassMatrixType.DEFAULT,
) -> sp.csc_matrix:
    """
    构建双调和能量算子 Q = Lᵀ M⁻¹ L。

    Parameters
    ----------
    mesh : MeshData
        输入网格。
    mass_type : MassMatrixType, optional
        质量矩阵离散方式, 默认按单元列数自动选择。

    Returns
    -------
    Q : sp.csc_matrix, shape (N, N)
        对称正半定稀疏矩阵。

    Raises
    ------
    DegenerateMeshError
        若存在退化单元, 或质量矩阵不可逆。
    """
    L, Mi = laplacian_and_inverse_mass(mesh, mass_type)
    Q = (L.T @ Mi @ L).tocsc()
    # 消去浮点误差造成的非对称
    return ((Q + Q.T) * 0.5).tocsc()


def laplacian_and_inverse_mass(
    mesh: MeshData,
    mass_type: MassMatrixType = MassMatrixType.DEFAULT,
) -> Tuple[sp.csr_matrix, sp.csr_matrix]:
    """返回 (L, M⁻¹), 供需要分别访问两者的调用方使用。"""
    L  = cotmatrix(mesh)
    M  = massmatrix(mesh, mass_type)
    Mi = invert_diag(M)
    return L, Mi
