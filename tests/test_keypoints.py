import numpy as np
import pytest

from sfm_match.corr.keypoints import ExactCoordinateIndex, KeypointTable, ToleranceCoordinateIndex


def test_ids_follow_first_occurrence():
    table = KeypointTable()
    assert table.lookup_or_insert((5.0, 5.0)) == (0, True)
    assert table.lookup_or_insert((1.0, 2.0)) == (1, True)
    assert table.lookup_or_insert((5.0, 5.0)) == (0, False)
    assert table.lookup_or_insert((3.0, 4.0)) == (2, True)
    assert len(table) == 3
    np.testing.assert_array_equal(
        table.coordinates(), np.array([[5, 5], [1, 2], [3, 4]], dtype=np.float32)
    )


def test_exact_equality_does_not_merge_nearby_values():
    table = KeypointTable(ExactCoordinateIndex())
    u = np.float32(100.5)
    next_u = np.nextafter(u, np.float32(200))
    assert table.lookup_or_insert((u, 7.0)) == (0, True)
    assert table.lookup_or_insert((next_u, 7.0)) == (1, True)


def test_exact_equality_compares_float32_values():
    table = KeypointTable()
    table.lookup_or_insert((0.1, 0.2))
    # Same value once rounded to float32.
    assert table.lookup_or_insert((np.float32(0.1), np.float32(0.2))) == (0, False)


def test_tolerance_index_merges_close_points():
    table = KeypointTable(ToleranceCoordinateIndex(0.5))
    assert table.lookup_or_insert((10.0, 10.0)) == (0, True)
    assert table.lookup_or_insert((10.3, 9.8)) == (0, False)
    assert table.lookup_or_insert((11.0, 10.0)) == (1, True)
    # Stored coordinate stays the first one seen.
    np.testing.assert_array_equal(table.coordinates()[0], [10.0, 10.0])


def test_tolerance_index_crosses_cell_boundaries():
    table = KeypointTable(ToleranceCoordinateIndex(1.0))
    table.lookup_or_insert((0.99, 0.99))
    assert table.lookup_or_insert((1.01, 1.01)) == (0, False)


def test_tolerance_index_prefers_earliest_keypoint():
    table = KeypointTable(ToleranceCoordinateIndex(1.0))
    table.lookup_or_insert((0.0, 0.0))
    table.lookup_or_insert((1.5, 0.0))
    assert table.lookup_or_insert((0.8, 0.0)) == (0, False)


def test_tolerance_must_be_positive():
    with pytest.raises(ValueError):
        ToleranceCoordinateIndex(0.0)


def test_frozen_table_rejects_new_keypoints():
    table = KeypointTable()
    table.lookup_or_insert((1.0, 1.0))
    table.freeze()
    assert table.lookup_or_insert((1.0, 1.0)) == (0, False)
    with pytest.raises(RuntimeError):
        table.lookup_or_insert((2.0, 2.0))


def test_empty_table_coordinates():
    assert KeypointTable().coordinates().shape == (0, 2)
