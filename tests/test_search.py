import numpy as np
import pytest

from kdtreex import (
    ApproximateKNNResultSet,
    ArrayDataSource,
    IndexParameters,
    KNNResultSet,
    QueryError,
    SearchParameters,
    StaticIndex,
)
from kdtreex import config as kx_config
from tests.utils.datasets import (
    angle_points,
    brute_force_knn,
    brute_force_radius,
    gaussian_dataset,
    gaussian_points,
    unit_quaternions,
)

SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [5.0, 5.0]])


@pytest.fixture(autouse=True)
def _reset_runtime(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("KDTREEX_ENABLE_NUMBA", raising=False)
    kx_config.reset_runtime_context()
    yield
    kx_config.reset_runtime_context()


def _metric_dataset(metric: str, seed: int):
    rng = np.random.default_rng(seed)
    if metric == "so3":
        return unit_quaternions(rng, 400), unit_quaternions(rng, 20)
    if metric == "so2":
        return angle_points(rng, 400, 2), angle_points(rng, 20, 2)
    return gaussian_dataset(rng, tree_points=400, queries=20, dimension=3)


@pytest.mark.parametrize("leaf_max_size", [1, 10])
def test_knn_prefers_lower_index_on_ties(leaf_max_size: int):
    index = StaticIndex.build(ArrayDataSource(SQUARE), IndexParameters(leaf_max_size=leaf_max_size))

    result = index.knn_search([0.0, 0.0], 2)

    assert result.as_pairs() == [(0, 0.0), (1, 1.0)]


@pytest.mark.parametrize("leaf_max_size", [1, 10])
def test_radius_search_uses_metric_units(leaf_max_size: int):
    index = StaticIndex.build(ArrayDataSource(SQUARE), IndexParameters(leaf_max_size=leaf_max_size))

    result = index.radius_search([0.0, 0.0], 1.5**2, SearchParameters(sorted=False))

    assert set(result.indices.tolist()) == {0, 1, 2}
    sorted_result = index.radius_search([0.0, 0.0], 2.25)
    assert sorted_result.indices.tolist() == [0, 1, 2]
    assert sorted_result.distances.tolist() == [0.0, 1.0, 1.0]


@pytest.mark.parametrize("metric", ["l1", "l2", "l2_simple", "so2", "so3"])
@pytest.mark.parametrize("leaf_max_size", [1, 4, 10])
def test_knn_matches_bruteforce(metric: str, leaf_max_size: int):
    points, queries = _metric_dataset(metric, seed=leaf_max_size)
    index = StaticIndex.build(
        ArrayDataSource(points), IndexParameters(leaf_max_size=leaf_max_size, metric=metric)
    )

    for query in queries:
        for k in (1, 5, 17):
            result = index.knn_search(query, k)
            expected_idx, expected_dist = brute_force_knn(points, query, k, metric=metric)
            assert np.array_equal(result.indices, expected_idx)
            assert np.allclose(result.distances, expected_dist)


@pytest.mark.parametrize("metric", ["l1", "l2", "so2"])
def test_radius_matches_bruteforce(metric: str):
    points, queries = _metric_dataset(metric, seed=7)
    index = StaticIndex.build(ArrayDataSource(points), IndexParameters(leaf_max_size=5, metric=metric))

    for query in queries:
        expected_idx, expected_dist = brute_force_radius(points, query, 0.6, metric=metric)
        result = index.radius_search(query, 0.6)
        assert np.array_equal(result.indices, expected_idx)
        assert np.allclose(result.distances, expected_dist)


def test_knn_with_k_above_size_returns_every_point():
    points = gaussian_points(np.random.default_rng(8), 30, 2)
    index = StaticIndex.build(ArrayDataSource(points), IndexParameters(leaf_max_size=4))

    result = index.knn_search([0.1, -0.2], 100)

    assert len(result) == 30
    assert sorted(result.indices.tolist()) == list(range(30))
    assert np.all(np.diff(result.distances) >= 0.0)


def test_rknn_limits_by_radius():
    index = StaticIndex.build(ArrayDataSource(SQUARE))

    assert index.rknn_search([0.0, 0.0], 3, 1.0).indices.tolist() == [0, 1, 2]
    assert index.rknn_search([0.0, 0.0], 2, 1.0).indices.tolist() == [0, 1]
    assert index.rknn_search([0.0, 0.0], 3, 0.5).indices.tolist() == [0]


def test_zero_eps_approximate_search_is_exact():
    points, queries = gaussian_dataset(np.random.default_rng(9), tree_points=500, queries=10, dimension=3)
    index = StaticIndex.build(ArrayDataSource(points))

    for query in queries:
        exact = index.knn_search(query, 8)
        approx = ApproximateKNNResultSet(8, eps=0.0)
        index.query(query, approx)
        result = approx.finalize()
        assert np.array_equal(result.indices, exact.indices)
        assert np.array_equal(result.distances, exact.distances)


def test_approximate_search_stays_within_eps_bound():
    points, queries = gaussian_dataset(np.random.default_rng(10), tree_points=800, queries=15, dimension=4)
    index = StaticIndex.build(ArrayDataSource(points), IndexParameters(leaf_max_size=4))
    eps = 0.5

    for query in queries:
        exact = index.knn_search(query, 6)
        approx = index.knn_search(query, 6, SearchParameters(eps=eps))
        assert len(approx) == 6
        assert len(set(approx.indices.tolist())) == 6
        assert approx.distances[-1] <= (1.0 + eps) * exact.distances[-1] + 1e-12


def test_checks_caps_leaf_visits():
    points = gaussian_points(np.random.default_rng(12), 1000, 2)
    index = StaticIndex.build(ArrayDataSource(points), IndexParameters(leaf_max_size=10))
    results = KNNResultSet(50)

    stats = index.query(points[0], results, SearchParameters(checks=1))

    assert stats.leaves_visited == 1
    assert stats.truncated
    assert 0 < len(results) <= 10
    unbounded = index.query(points[0], KNNResultSet(50))
    assert not unbounded.truncated
    assert unbounded.leaves_visited > 1


def test_degenerate_datasets():
    single = StaticIndex.build(ArrayDataSource([[2.0, 3.0]]))
    assert single.knn_search([2.0, 3.0], 1).as_pairs() == [(0, 0.0)]
    assert single.knn_search([-7.0, 1.0], 3).indices.tolist() == [0]

    coincident = StaticIndex.build(ArrayDataSource(np.full((20, 2), 4.0)), IndexParameters(leaf_max_size=3))
    result = coincident.knn_search([4.0, 4.0], 20)
    assert result.indices.tolist() == list(range(20))
    assert np.all(result.distances == 0.0)
    assert coincident.knn_search([0.0, 0.0], 5).indices.tolist() == [0, 1, 2, 3, 4]


def test_query_on_dataset_point_ranks_it_first():
    points = gaussian_points(np.random.default_rng(13), 200, 3)
    index = StaticIndex.build(ArrayDataSource(points))

    for idx in (0, 57, 199):
        result = index.knn_search(points[idx], 3)
        assert result.indices[0] == idx
        assert result.distances[0] == 0.0


def test_query_accepts_row_vector():
    index = StaticIndex.build(ArrayDataSource(SQUARE))

    assert index.knn_search(np.array([[0.0, 0.0]]), 1).indices.tolist() == [0]


def test_invalid_queries_raise_query_error():
    index = StaticIndex.build(ArrayDataSource(SQUARE))

    with pytest.raises(QueryError):
        index.knn_search([0.0, 0.0], 0)
    with pytest.raises(QueryError):
        index.knn_search([0.0, 0.0, 0.0], 1)
    with pytest.raises(QueryError):
        index.knn_search([np.nan, 0.0], 1)
    with pytest.raises(QueryError):
        index.radius_search([0.0, 0.0], -1.0)
    with pytest.raises(QueryError):
        SearchParameters(eps=-0.1)
    with pytest.raises(QueryError):
        SearchParameters(checks=0)


def test_unsorted_results_hold_the_same_neighbours():
    points, queries = gaussian_dataset(np.random.default_rng(14), tree_points=300, queries=5, dimension=2)
    index = StaticIndex.build(ArrayDataSource(points))

    for query in queries:
        ordered = index.knn_search(query, 9)
        unordered = index.knn_search(query, 9, SearchParameters(sorted=False))
        assert set(unordered.indices.tolist()) == set(ordered.indices.tolist())


def test_numba_kernels_give_identical_results(monkeypatch: pytest.MonkeyPatch):
    points, queries = gaussian_dataset(np.random.default_rng(15), tree_points=300, queries=5, dimension=3)
    index = StaticIndex.build(ArrayDataSource(points))
    baseline = [index.knn_search(query, 5) for query in queries]

    monkeypatch.setenv("KDTREEX_ENABLE_NUMBA", "1")
    kx_config.reset_runtime_context()
    assert kx_config.runtime_config().enable_numba

    for query, expected in zip(queries, baseline):
        result = index.knn_search(query, 5)
        assert np.array_equal(result.indices, expected.indices)
        assert np.allclose(result.distances, expected.distances)
