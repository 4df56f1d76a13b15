"""权重矩阵的事后检查。"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

LOW_ROW_SUM_MESSAGE = (
    "最小行和过低 ({min_row_sum:.3g} < {threshold:.3g}) , "
    "建议增加 active set 迭代次数或启用 partition of unity。"
)


def check_row_sums(
    W: np.ndarray,
    threshold: float = 0.1,
) -> Tuple[float, Optional[str]]:
    """
    计算每个顶点的权重和的绝对值, 检查其最小值。

    仅作提示, 不影响计算成功与否。

    Parameters
    ----------
    W : np.ndarray, shape (N, M)
        权重矩阵。
    threshold : float, optional
        最小行和阈值, 默认 0.1。

    Returns
    -------
    min_row_sum : float
        min_v |Σ_j W[v, j]|。
    warning : str or None
        最小行和低于阈值时的警告文本, 否则为 None。
    """
    W = np.asarray(W, dtype=np.float64)
    if W.size == 0:
        return float("nan"), None

    min_row_sum = float(np.abs(W.sum(axis=1)).min())
    if min_row_sum < threshold:
        return min_row_sum, LOW_ROW_SUM_MESSAGE.format(
            min_row_sum=min_row_sum, threshold=threshold
        )
    return min_row_sum, None
