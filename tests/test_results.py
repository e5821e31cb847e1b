import math

import numpy as np
import pytest

from kdtreex.exceptions import QueryError
from kdtreex.queries.results import (
    ApproximateKNNResultSet,
    KNNResultSet,
    RadiusKNNResultSet,
    RadiusResultSet,
)


def test_knn_worst_dist_is_infinite_until_full():
    results = KNNResultSet(2)
    assert math.isinf(results.worst_dist())
    results.add_point(3.0, 0)
    assert math.isinf(results.worst_dist())
    results.add_point(1.0, 1)
    assert results.full()
    assert results.worst_dist() == 3.0


def test_knn_evicts_worst_with_index_tie_break():
    results = KNNResultSet(2)
    results.add_point(1.0, 5)
    results.add_point(1.0, 3)

    assert not results.add_point(1.0, 7)
    assert results.add_point(1.0, 4)
    assert results.finalize().as_pairs() == [(3, 1.0), (4, 1.0)]

    assert results.add_point(0.5, 9)
    assert results.finalize().indices.tolist() == [9, 3]


def test_knn_add_candidates_counts_accepted():
    results = KNNResultSet(3)
    accepted = results.add_candidates(np.array([4.0, 1.0, 3.0, 2.0, 9.0]), np.arange(5))

    assert accepted == 4
    assert results.finalize().indices.tolist() == [1, 3, 2]


def test_knn_rejects_non_positive_k():
    with pytest.raises(QueryError):
        KNNResultSet(0)


def test_radius_includes_boundary_and_keeps_discovery_order():
    results = RadiusResultSet(1.0)
    results.add_candidates(np.array([1.0, 0.5, 1.5, 0.0]), np.array([10, 11, 12, 13]))
    results.add_point(1.0, 2)

    assert len(results) == 4
    assert results.finalize(sorted=False).indices.tolist() == [10, 11, 13, 2]
    assert results.finalize().indices.tolist() == [13, 11, 2, 10]


def test_radius_rejects_negative_radius():
    with pytest.raises(QueryError):
        RadiusResultSet(-0.5)
    with pytest.raises(QueryError):
        RadiusResultSet(float("nan"))


def test_approximate_knn_carries_eps():
    results = ApproximateKNNResultSet(3, eps=0.25)
    assert results.eps == 0.25
    assert KNNResultSet(3).eps == 0.0
    with pytest.raises(QueryError):
        ApproximateKNNResultSet(3, eps=-1.0)


def test_radius_knn_caps_both_ways():
    results = RadiusKNNResultSet(2, 2.0)
    assert results.worst_dist() == 2.0
    assert not results.add_point(2.5, 0)
    results.add_point(1.5, 1)
    results.add_point(0.5, 2)
    assert results.worst_dist() == 1.5
    results.add_point(0.7, 3)

    assert results.finalize().indices.tolist() == [2, 3]


def test_empty_result_finalizes_to_empty_arrays():
    result = KNNResultSet(4).finalize()

    assert len(result) == 0
    assert result.indices.dtype == np.int64
    assert result.distances.dtype == np.float64
