"""
HandleConstraints 测试。

运行: python -m pytest tests/test_constraints.py -v
"""

import numpy as np
import pytest

from bbw import HandleConstraints


def test_one_dimensional_bc_becomes_single_handle():
    c = HandleConstraints([3, 5], [1.0, 0.0])
    assert c.bc.shape == (2, 1)
    assert c.num_handles == 1
    assert c.num_constrained == 2


def test_rejects_row_count_mismatch():
    with pytest.raises(ValueError, match="行数"):
        HandleConstraints([0, 1, 2], np.eye(2))


def test_rejects_duplicate_indices():
    with pytest.raises(ValueError, match="重复"):
        HandleConstraints([0, 4, 0], np.eye(3))


def test_rejects_non_finite_targets():
    with pytest.raises(ValueError):
        HandleConstraints([0, 1], [[1.0, np.nan], [0.0, 1.0]])


def test_rejects_zero_handles():
    with pytest.raises(ValueError):
        HandleConstraints([0, 1], np.zeros((2, 0)))


def test_from_mapping_sorts_rows_by_vertex():
    c = HandleConstraints.from_mapping({9: [0.0, 1.0], 2: [1.0, 0.0]})
    np.testing.assert_array_equal(c.b, [2, 9])
    np.testing.assert_array_equal(c.bc, [[1.0, 0.0], [0.0, 1.0]])


def test_point_handles():
    c = HandleConstraints.point_handles([7, 1, 4])
    np.testing.assert_array_equal(c.b, [7, 1, 4])
    np.testing.assert_array_equal(c.bc, np.eye(3))


def test_group_handles():
    c = HandleConstraints.group_handles([[0, 1], [5], [2, 3]])
    np.testing.assert_array_equal(c.b, [0, 1, 5, 2, 3])
    np.testing.assert_array_equal(c.bc.argmax(axis=1), [0, 0, 1, 2, 2])
    np.testing.assert_array_equal(c.bc.sum(axis=1), 1.0)


def test_validate():
    c = HandleConstraints.point_handles([0, 3])
    c.validate(4)
    with pytest.raises(ValueError, match="超出"):
        c.validate(3)
    with pytest.raises(ValueError, match="所有顶点"):
        HandleConstraints.point_handles([0, 1]).validate(2)


def test_as_dict_round_trip():
    mapping = {1: [0.25, 0.75], 6: [1.0, 0.0]}
    c = HandleConstraints.from_mapping(mapping)
    d = c.as_dict()
    assert sorted(d) == [1, 6]
    np.testing.assert_array_equal(d[1], [0.25, 0.75])
    assert "handles=2" in repr(c)
