"""
BBW 计算管线的异常类型。

所有致命错误均派生自 BBWError, 便于上层统一捕获; 同时继承对应的内建异常,
使只关心 ValueError / RuntimeError 的调用方无需感知本模块。
"""

from __future__ import annotations


class BBWError(Exception):
    """BBW 管线中所有致命错误的基类。"""


class DegenerateMeshError(BBWError, ValueError):
    """
    网格退化:存在零面积 / 零体积单元, 或质量矩阵对角元不可逆。

    在任何 QP 求解之前抛出。
    """


class SolverError(BBWError, RuntimeError):
    """QP 子问题求解失败 (矩阵奇异、数值溢出或外部求解器报告失败) 。"""


class UnsupportedConfigurationError(BBWError, NotImplementedError):
    """配置项请求了未实现的功能 (如 partition_unity) 或未知的求解器。"""
