import io
import struct

import numpy as np
import pytest

from kdtreex import (
    ArrayDataSource,
    ConstructionError,
    IndexParameters,
    SerializationError,
    StaticIndex,
)
from kdtreex import config as kx_config
from tests.utils.datasets import gaussian_dataset, gaussian_points

_HEADER_BYTES = 26


@pytest.fixture(autouse=True)
def _reset_runtime():
    kx_config.reset_runtime_context()
    yield
    kx_config.reset_runtime_context()


def _index(points: np.ndarray, **params) -> StaticIndex:
    return StaticIndex.build(ArrayDataSource(points), IndexParameters(**params))


def test_build_reports_structure():
    points = gaussian_points(np.random.default_rng(0), 120, 3)
    index = _index(points, leaf_max_size=8)

    assert index.num_points == 120
    assert index.dimension == 3
    assert index.metric.name == "l2"
    assert index.num_nodes >= 2 * (120 // 8) - 1
    assert index.depth() > 1
    assert index.used_memory() > 0
    assert "StaticIndex(points=120" in repr(index)


def test_build_rejects_empty_source():
    with pytest.raises(ConstructionError):
        StaticIndex.build(ArrayDataSource(np.empty((0, 2))), dimension=2)


def test_save_load_reproduces_queries():
    points, queries = gaussian_dataset(np.random.default_rng(1), tree_points=400, queries=25, dimension=3)
    index = _index(points, leaf_max_size=6)
    source = ArrayDataSource(points)

    restored = StaticIndex.from_bytes(index.to_bytes(), source)

    assert restored.num_nodes == index.num_nodes
    assert restored.bounding_box == index.bounding_box
    assert np.array_equal(restored.tree.indices, index.tree.indices)
    for query in queries:
        for original, loaded in (
            (index.knn_search(query, 7), restored.knn_search(query, 7)),
            (index.radius_search(query, 0.8), restored.radius_search(query, 0.8)),
        ):
            assert np.array_equal(original.indices, loaded.indices)
            assert np.array_equal(original.distances, loaded.distances)


def test_save_load_through_file(tmp_path):
    points = gaussian_points(np.random.default_rng(2), 64, 2)
    index = _index(points, leaf_max_size=3)
    path = tmp_path / "index.kdtx"

    with path.open("wb") as fh:
        written = index.save(fh)
    assert written == path.stat().st_size

    with path.open("rb") as fh:
        restored = StaticIndex.load(fh, ArrayDataSource(points), IndexParameters(leaf_max_size=50))

    assert restored.params.leaf_max_size == 3
    assert restored.tree.leaves() == index.tree.leaves()


def test_load_rejects_point_count_mismatch():
    points = gaussian_points(np.random.default_rng(3), 50, 2)
    data = _index(points).to_bytes()

    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(data, ArrayDataSource(points[:49]))
    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(data, ArrayDataSource(np.vstack([points, points[:1]])))


def test_load_rejects_dimension_mismatch():
    points = gaussian_points(np.random.default_rng(4), 50, 2)
    data = _index(points).to_bytes()

    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(data, ArrayDataSource(np.zeros((50, 3))))


@pytest.mark.parametrize("cut", [0, 10, _HEADER_BYTES + 5, -1, -9])
def test_load_rejects_truncated_stream(cut: int):
    points = gaussian_points(np.random.default_rng(5), 40, 2)
    data = _index(points, leaf_max_size=4).to_bytes()

    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(data[:cut], ArrayDataSource(points))


def test_load_rejects_bad_magic_and_version():
    points = gaussian_points(np.random.default_rng(6), 20, 2)
    data = _index(points).to_bytes()

    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(b"NOPE" + data[4:], ArrayDataSource(points))
    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(data[:4] + struct.pack("<H", 99) + data[6:], ArrayDataSource(points))


def test_load_rejects_corrupt_nodes_and_permutation():
    points = gaussian_points(np.random.default_rng(7), 30, 2)
    data = bytearray(_index(points, leaf_max_size=4).to_bytes())
    perm_offset = _HEADER_BYTES + 16 * 2
    tag_offset = perm_offset + 8 * 30
    source = ArrayDataSource(points)

    bad_tag = bytearray(data)
    bad_tag[tag_offset] = 7
    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(bytes(bad_tag), source)

    bad_perm = bytearray(data)
    bad_perm[perm_offset : perm_offset + 8] = struct.pack("<q", 1000)
    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(bytes(bad_perm), source)

    repeated = bytearray(data)
    repeated[perm_offset + 8 : perm_offset + 16] = repeated[perm_offset : perm_offset + 8]
    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(bytes(repeated), source)

    bad_split = bytearray(data)
    assert bad_split[tag_offset] == 1
    bad_split[tag_offset + 1 : tag_offset + 5] = struct.pack("<I", 9)
    with pytest.raises(SerializationError):
        StaticIndex.from_bytes(bytes(bad_split), source)


def test_header_layout():
    points = gaussian_points(np.random.default_rng(8), 12, 3)
    data = _index(points, leaf_max_size=5).to_bytes()

    magic, version, dimension, count, leaf = struct.unpack("<4sHIQQ", data[:_HEADER_BYTES])

    assert (magic, version, dimension, count, leaf) == (b"KDTX", 1, 3, 12, 5)
    stream = io.BytesIO(data)
    StaticIndex.load(stream, ArrayDataSource(points))
    assert stream.tell() == len(data)


def test_load_takes_metric_from_parameters():
    points = gaussian_points(np.random.default_rng(9), 60, 2)
    index = _index(points, leaf_max_size=4, metric="l1")
    source = ArrayDataSource(points)

    restored = StaticIndex.from_bytes(index.to_bytes(), source, IndexParameters(metric="l1"))
    defaulted = StaticIndex.from_bytes(index.to_bytes(), source)

    assert restored.metric.name == "l1"
    assert defaulted.metric.name == "l2"
    query = points[7]
    assert np.array_equal(restored.knn_search(query, 9).indices, index.knn_search(query, 9).indices)
    assert np.array_equal(
        defaulted.knn_search(query, 9).indices,
        StaticIndex.build(source).knn_search(query, 9).indices,
    )
