"""
Handle 约束模型:受约束顶点索引 b 与每个 handle 的目标权重 bc。

    b  : (k,)   互不相同的顶点索引
    bc : (k, m) 第 i 列为 handle i 在各受约束顶点上的目标值, 行与 b 逐一对齐
"""

from __future__ import annotations

from typing import Dict, Mapping, Sequence

import numpy as np


class HandleConstraints:
    """
    受约束顶点及其目标权重。

    Attributes
    ----------
    b : np.ndarray, shape (k,), dtype int64
        受约束顶点索引, 保持输入顺序。
    bc : np.ndarray, shape (k, m), dtype float64
        目标权重矩阵。
    """

    def __init__(self, b: Sequence[int], bc: np.ndarray) -> None:
        b  = np.asarray(b, dtype=np.int64).ravel()
        bc = np.asarray(bc, dtype=np.float64)
        if bc.ndim == 1:
            bc = bc[:, None]

        if bc.ndim != 2 or bc.shape[0] != b.shape[0]:
            raise ValueError(
                f"bc 行数须与 b 长度一致: len(b)={b.shape[0]}, bc.shape={bc.shape}"
            )
        if bc.shape[1] == 0:
            raise ValueError("bc 至少需要一列 (一个 handle) 。")
        if np.unique(b).size != b.size:
            raise ValueError("b 中存在重复的顶点索引。")
        if not np.all(np.isfinite(bc)):
            raise ValueError("bc 含非有限值。")

        self.b:  np.ndarray = b
        self.bc: np.ndarray = bc

    # -------------------------------------------------------------------------
    # 构造辅助
    # -------------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, constraints: Mapping[int, Sequence[float]]) -> "HandleConstraints":
        """
        由约束字典 {顶点索引: 各 handle 目标值} 构造, 行顺序按索引升序。

        例如 {0: [1.0, 0.0], 9: [0.0, 1.0]}。
        """
        keys = sorted(int(k) for k in constraints)
        bc = np.array([np.ravel(constraints[k]) for k in keys], dtype=np.float64)
        return cls(keys, bc)

    @classmethod
    def point_handles(cls, indices: Sequence[int]) -> "HandleConstraints":
        """每个 handle 为单个顶点:bc 为单位矩阵。"""
        indices = np.asarray(indices, dtype=np.int64).ravel()
        return cls(indices, np.eye(indices.size))

    @classmethod
    def group_handles(cls, groups: Sequence[Sequence[int]]) -> "HandleConstraints":
        """
        每个 handle 为一组顶点:组 i 内顶点对 handle i 取 1, 对其余 handle 取 0。
        """
        b:    list = []
        rows: list = []
        m = len(groups)
        for i, group in enumerate(groups):
            for v in group:
                b.append(int(v))
                row = np.zeros(m)
                row[i] = 1.0
                rows.append(row)
        return cls(b, np.array(rows).reshape(len(b), m))

    # -------------------------------------------------------------------------

    @property
    def num_constrained(self) -> int:
        """受约束顶点数 k。"""
        return self.b.shape[0]

    @property
    def num_handles(self) -> int:
        """handle 数 m。"""
        return self.bc.shape[1]

    def validate(self, num_vertices: int) -> None:
        """
        检查索引落在 [0, num_vertices) 内。

        Raises
        ------
        ValueError
            若存在越界索引, 或所有顶点均被约束。
        """
        if self.b.size and (self.b.min() < 0 or self.b.max() >= num_vertices):
            raise ValueError(
                f"约束顶点索引超出合法范围 [0, {num_vertices - 1}]: "
                f"min={self.b.min()}, max={self.b.max()}"
            )
        if self.num_constrained >= num_vertices:
            raise ValueError("所有顶点均被约束, 没有可求解的自由顶点。")

    def as_dict(self) -> Dict[int, np.ndarray]:
        return {int(v): self.bc[r].copy() for r, v in enumerate(self.b)}

    def __repr__(self) -> str:
        return (
            f"HandleConstraints(constrained={self.num_constrained}, "
            f"handles={self.num_handles})"
        )
