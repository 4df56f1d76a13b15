"""
与 DCC 工具解耦的单纯形网格数据结构。

支持两种单元:
    三角形 (elements 每行 3 个索引)   — 曲面网格
    四面体 (elements 每行 4 个索引)   — 体网格

单元列数决定后续质量矩阵的离散方式 (见 operators.massmatrix) 。
"""

from __future__ import annotations

import numpy as np


class MeshData:
    """
    与 DCC 工具无关的单纯形网格数据结构。

    本类仅存储算法所需的顶点坐标与单元索引。
    应用层负责将外部网格数据转换为本类实例。

    Attributes
    ----------
    vertices : np.ndarray, shape (N, 3), dtype float64
        顶点坐标数组, N 为顶点数。二维输入会在 z 方向补零。
    elements : np.ndarray, shape (E, 3) or (E, 4), dtype int64
        单元索引数组, 三角形或四面体。
    """

    def __init__(self, vertices: np.ndarray, elements: np.ndarray) -> None:
        """
        Parameters
        ----------
        vertices : array_like, shape (N, 2) or (N, 3)
            顶点坐标, 将被转换为 float64 存储。
        elements : array_like, shape (E, 3) or (E, 4)
            单元顶点索引, 将被转换为 int64 存储。

        Raises
        ------
        ValueError
            若 vertices / elements 形状不合法, 或单元索引超出 [0, N-1]。
        """
        vertices = np.asarray(vertices, dtype=np.float64)
        elements = np.asarray(elements, dtype=np.int64)

        if vertices.ndim != 2 or vertices.shape[1] not in (2, 3):
            raise ValueError(
                f"vertices 应为 shape (N, 2) 或 (N, 3), 实际 shape: {vertices.shape}"
            )
        if vertices.shape[1] == 2:
            vertices = np.hstack([vertices, np.zeros((vertices.shape[0], 1))])

        if elements.ndim != 2 or elements.shape[1] not in (3, 4):
            raise ValueError(
                f"elements 应为 shape (E, 3) 或 (E, 4), 实际 shape: {elements.shape}"
            )
        if elements.shape[0] == 0:
            raise ValueError("elements 为空, 网格中没有任何单元。")

        n = vertices.shape[0]
        if elements.min() < 0 or elements.max() >= n:
            raise ValueError(
                f"单元索引超出合法范围 [0, {n - 1}]: "
                f"min={elements.min()}, max={elements.max()}"
            )

        self.vertices: np.ndarray = vertices
        self.elements: np.ndarray = elements

    @property
    def num_vertices(self) -> int:
        """顶点总数 N。"""
        return self.vertices.shape[0]

    @property
    def num_elements(self) -> int:
        """单元总数 E。"""
        return self.elements.shape[0]

    @property
    def simplex_size(self) -> int:
        """每个单元的顶点数:3 (三角形) 或 4 (四面体) 。"""
        return self.elements.shape[1]

    @property
    def is_volumetric(self) -> bool:
        return self.simplex_size == 4

    def element_edges(self) -> np.ndarray:
        """
        每个单元以第 0 个顶点为原点的边向量。

        Returns
        -------
        edges : np.ndarray, shape (E, 3, d)
            d = simplex_size - 1, edges[e, :, a] = x_{a+1} - x_0。
        """
        x = self.vertices[self.elements]            # (E, d+1, 3)
        return np.transpose(x[:, 1:, :] - x[:, :1, :], (0, 2, 1))

    def element_measures(self) -> np.ndarray:
        """
        单元测度:三角形面积或四面体体积 (无符号) 。

        由 Gram 行列式计算, 对嵌入三维空间的三角形同样适用:
            |T| = sqrt(det(EᵀE)) / d!

        Returns
        -------
        measures : np.ndarray, shape (E,)
        """
        E = self.element_edges()
        gram = np.einsum("eia,eib->eab", E, E)
        det = np.clip(np.linalg.det(gram), 0.0, None)
        d = self.simplex_size - 1
        return np.sqrt(det) / (2.0 if d == 2 else 6.0)

    def bounding_box_diagonal(self) -> float:
        """包围盒对角线长度, 用作退化判定的长度尺度。"""
        return float(np.linalg.norm(self.vertices.max(axis=0) - self.vertices.min(axis=0)))

    def __repr__(self) -> str:
        kind = "tets" if self.is_volumetric else "triangles"
        return f"MeshData(vertices={self.num_vertices}, {kind}={self.num_elements})"
