"""
共享网格夹具。

    make_grid(nx, ny) — 单位正方形, 每个格子以中心点剖分为 4 个三角形;
                        关于 x、y 方向反射对称
    make_bar(length)  — 1 x 1 x length 的单位立方体长条, 每个立方体剖分为
                        6 个四面体 (Kuhn 剖分, 协调)
"""

import itertools

import numpy as np
import pytest


def _grid(nx, ny):
    corners = np.array(
        [[i / nx, j / ny] for j in range(ny + 1) for i in range(nx + 1)]
    )
    centres = np.array(
        [[(i + 0.5) / nx, (j + 0.5) / ny] for j in range(ny) for i in range(nx)]
    )
    V = np.vstack([corners, centres])

    def corner(i, j):
        return j * (nx + 1) + i

    def centre(i, j):
        return (nx + 1) * (ny + 1) + j * nx + i

    F = []
    for j in range(ny):
        for i in range(nx):
            c00, c10 = corner(i, j), corner(i + 1, j)
            c01, c11 = corner(i, j + 1), corner(i + 1, j + 1)
            m = centre(i, j)
            F += [[c00, c10, m], [c10, c11, m], [c11, c01, m], [c01, c00, m]]

    # x -> 1 - x 反射下的顶点索引置换
    mirror_x = np.empty(len(V), dtype=int)
    for j in range(ny + 1):
        for i in range(nx + 1):
            mirror_x[corner(i, j)] = corner(nx - i, j)
    for j in range(ny):
        for i in range(nx):
            mirror_x[centre(i, j)] = centre(nx - 1 - i, j)

    return V, np.array(F), corner, mirror_x


def _bar(length):
    def vid(ix, iy, iz):
        return ix * 4 + iy * 2 + iz

    V = np.array(
        [[ix, iy, iz] for ix in range(length + 1) for iy in (0, 1) for iz in (0, 1)],
        dtype=float,
    )
    T = []
    for ix in range(length):
        for perm in itertools.permutations(range(3)):
            p = [0, 0, 0]
            tet = [vid(ix, 0, 0)]
            for axis in perm:
                p[axis] += 1
                tet.append(vid(ix + p[0], p[1], p[2]))
            T.append(tet)
    return V, np.array(T)


@pytest.fixture
def make_grid():
    return _grid


@pytest.fixture
def make_bar():
    return _bar


@pytest.fixture
def right_triangle():
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    F = np.array([[0, 1, 2]])
    return V, F


@pytest.fixture
def regular_tet():
    V = np.array([[1.0, 1.0, 1.0], [1.0, -1.0, -1.0], [-1.0, 1.0, -1.0], [-1.0, -1.0, 1.0]])
    T = np.array([[0, 1, 2, 3]])
    return V, T
