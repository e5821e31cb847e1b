"""Little-endian binary images of built trees and dynamic index headers.

A tree image is a fixed header, the root bounding box, the permutation array
and a preorder node stream (``uint8`` tag then the node payload). Decoding is
iterative and validates every field before a node is installed, so a corrupt
or truncated stream raises :class:`SerializationError` rather than producing
a tree that misbehaves at query time.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, replace
from typing import BinaryIO, List

import numpy as np

from kdtreex.core.arena import NO_CHILD, PooledAllocator
from kdtreex.core.bounds import BoundingBox
from kdtreex.core.datasource import DataSource
from kdtreex.core.metrics import get_metric
from kdtreex.core.tree import KDTreeCore
from kdtreex.exceptions import ConstructionError, SerializationError
from kdtreex.params import IndexParameters

TREE_MAGIC = b"KDTX"
DYNAMIC_MAGIC = b"KDTD"
FORMAT_VERSION = 1

LEAF_TAG = 0
INTERNAL_TAG = 1

_TREE_HEADER = struct.Struct("<4sHIQQ")
_DYNAMIC_HEADER = struct.Struct("<4sHIQQQI")
_TAG = struct.Struct("<B")
_LEAF = struct.Struct("<QQ")
_INTERNAL = struct.Struct("<Id")
_OCCUPIED = struct.Struct("<B")
_COUNT = struct.Struct("<Q")


@dataclass(frozen=True)
class TreeHeader:
    dimension: int
    count: int
    leaf_max_size: int


@dataclass(frozen=True)
class DynamicHeader:
    dimension: int
    counter: int
    source_count: int
    leaf_max_size: int
    levels: int


def read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if data is None or len(data) != size:
        raise SerializationError(
            f"Truncated index image while reading {what}: "
            f"expected {size} bytes, got {0 if data is None else len(data)}."
        )
    return data


def _check_magic(magic: bytes, version: int, expected: bytes) -> None:
    if magic != expected:
        raise SerializationError(f"Bad magic {magic!r}; expected {expected!r}.")
    if version != FORMAT_VERSION:
        raise SerializationError(
            f"Unsupported format version {version}; expected {FORMAT_VERSION}."
        )


def write_tree(stream: BinaryIO, tree: KDTreeCore) -> int:
    """Write ``tree`` to ``stream`` and return the number of bytes written."""

    written = stream.write(
        _TREE_HEADER.pack(
            TREE_MAGIC,
            FORMAT_VERSION,
            tree.dimension,
            tree.num_points,
            tree.leaf_max_size,
        )
    )
    box = tree.bounding_box
    written += stream.write(np.ascontiguousarray(box.lows, dtype="<f8").tobytes())
    written += stream.write(np.ascontiguousarray(box.highs, dtype="<f8").tobytes())
    written += stream.write(np.ascontiguousarray(tree.indices, dtype="<i8").tobytes())

    nodes = tree.nodes
    stack = [tree.root]
    while stack:
        node = stack.pop()
        if nodes.left[node] == NO_CHILD:
            written += stream.write(_TAG.pack(LEAF_TAG))
            written += stream.write(_LEAF.pack(nodes.first[node], nodes.last[node]))
            continue
        written += stream.write(_TAG.pack(INTERNAL_TAG))
        written += stream.write(
            _INTERNAL.pack(nodes.split_dim[node], nodes.split_value[node])
        )
        stack.append(nodes.right[node])
        stack.append(nodes.left[node])
    return written


def read_tree_header(stream: BinaryIO) -> TreeHeader:
    magic, version, dimension, count, leaf_max_size = _TREE_HEADER.unpack(
        read_exact(stream, _TREE_HEADER.size, "tree header")
    )
    _check_magic(magic, version, TREE_MAGIC)
    if dimension < 1:
        raise SerializationError(f"Stored dimensionality must be >= 1, got {dimension}.")
    if count < 1:
        raise SerializationError("Stored tree holds no points.")
    if leaf_max_size < 1:
        raise SerializationError(f"Stored leaf_max_size must be >= 1, got {leaf_max_size}.")
    return TreeHeader(dimension=dimension, count=count, leaf_max_size=leaf_max_size)


def read_tree(
    stream: BinaryIO,
    data_source: DataSource,
    params: IndexParameters,
    *,
    expected_count: int | None = None,
) -> KDTreeCore:
    """Decode a tree image bound to ``data_source``.

    ``expected_count`` is checked against the stored point count; the stored
    permutation must reference distinct points the data source actually
    holds. The metric is not part of the image: it comes from
    ``params.metric``, which must match the metric the tree was built with.
    """

    header = read_tree_header(stream)
    if expected_count is not None and header.count != expected_count:
        raise SerializationError(
            f"Stored index covers {header.count} points but {expected_count} were expected."
        )
    source_dimension = getattr(data_source, "dimension", None)
    if source_dimension is not None and int(source_dimension) != header.dimension:
        raise SerializationError(
            f"Stored dimensionality {header.dimension} does not match the data source "
            f"({source_dimension})."
        )
    params = replace(params, leaf_max_size=header.leaf_max_size)
    metric = get_metric(params.metric)
    try:
        metric.validate_dimension(header.dimension)
    except ConstructionError as exc:
        raise SerializationError(str(exc)) from exc

    dim = header.dimension
    lows = np.frombuffer(read_exact(stream, 8 * dim, "bounding box"), dtype="<f8")
    highs = np.frombuffer(read_exact(stream, 8 * dim, "bounding box"), dtype="<f8")
    if np.any(lows > highs):
        raise SerializationError("Stored bounding box has low > high.")
    perm = np.frombuffer(
        read_exact(stream, 8 * header.count, "permutation"), dtype="<i8"
    ).astype(np.int64)
    source_count = int(data_source.point_count())
    if perm.min() < 0 or perm.max() >= source_count:
        raise SerializationError(
            f"Stored permutation references points outside [0, {source_count})."
        )
    if np.unique(perm).shape[0] != perm.shape[0]:
        raise SerializationError("Stored permutation repeats a point index.")

    arena = PooledAllocator(params.chunk_nodes, max_nodes=params.max_nodes)
    # Internal nodes waiting for children: [node, split_dim, split_value, left].
    pending: List[list] = []
    cursor = 0
    root = NO_CHILD
    while root == NO_CHILD or pending:
        (tag,) = _TAG.unpack(read_exact(stream, _TAG.size, "node tag"))
        node = arena.allocate()
        if pending:
            parent = pending[-1]
            if parent[3] == NO_CHILD:
                parent[3] = node
            else:
                pending.pop()
                arena.set_internal(parent[0], parent[1], parent[2], parent[3], node)
        else:
            root = node

        if tag == LEAF_TAG:
            first, last = _LEAF.unpack(read_exact(stream, _LEAF.size, "leaf node"))
            if first != cursor or last <= first or last > header.count:
                raise SerializationError(
                    f"Malformed leaf range [{first}, {last}) at position {cursor}."
                )
            arena.set_leaf(node, first, last)
            cursor = last
        elif tag == INTERNAL_TAG:
            split_dim, split_value = _INTERNAL.unpack(
                read_exact(stream, _INTERNAL.size, "internal node")
            )
            if split_dim >= dim:
                raise SerializationError(
                    f"Split dimension {split_dim} out of range for dimensionality {dim}."
                )
            pending.append([node, split_dim, split_value, NO_CHILD])
        else:
            raise SerializationError(f"Unknown node tag {tag}.")
    if cursor != header.count:
        raise SerializationError(
            f"Leaves cover {cursor} of {header.count} stored points."
        )

    return KDTreeCore(
        data_source=data_source,
        dimension=dim,
        metric=metric,
        leaf_max_size=header.leaf_max_size,
        indices=perm,
        bounding_box=BoundingBox(lows=lows.copy(), highs=highs.copy()),
        arena=arena,
        root=root,
    )


def write_dynamic_header(stream: BinaryIO, header: DynamicHeader) -> int:
    return stream.write(
        _DYNAMIC_HEADER.pack(
            DYNAMIC_MAGIC,
            FORMAT_VERSION,
            header.dimension,
            header.counter,
            header.source_count,
            header.leaf_max_size,
            header.levels,
        )
    )


def read_dynamic_header(stream: BinaryIO) -> DynamicHeader:
    magic, version, dimension, counter, source_count, leaf_max_size, levels = (
        _DYNAMIC_HEADER.unpack(read_exact(stream, _DYNAMIC_HEADER.size, "dynamic header"))
    )
    _check_magic(magic, version, DYNAMIC_MAGIC)
    if dimension < 1 or leaf_max_size < 1:
        raise SerializationError("Stored dynamic index header is malformed.")
    if levels > 64:
        raise SerializationError(f"Implausible level count {levels}.")
    return DynamicHeader(
        dimension=dimension,
        counter=counter,
        source_count=source_count,
        leaf_max_size=leaf_max_size,
        levels=levels,
    )


def write_level(stream: BinaryIO, live_count: int | None) -> int:
    """Write a level slot; ``None`` marks an unoccupied level."""

    if live_count is None:
        return stream.write(_OCCUPIED.pack(0))
    return stream.write(_OCCUPIED.pack(1)) + stream.write(_COUNT.pack(live_count))


def read_level(stream: BinaryIO) -> int | None:
    (occupied,) = _OCCUPIED.unpack(read_exact(stream, _OCCUPIED.size, "level flag"))
    if occupied == 0:
        return None
    if occupied != 1:
        raise SerializationError(f"Bad level flag {occupied}.")
    (live,) = _COUNT.unpack(read_exact(stream, _COUNT.size, "level size"))
    return live


__all__ = [
    "DYNAMIC_MAGIC",
    "DynamicHeader",
    "FORMAT_VERSION",
    "TREE_MAGIC",
    "TreeHeader",
    "read_dynamic_header",
    "read_exact",
    "read_level",
    "read_tree",
    "read_tree_header",
    "write_dynamic_header",
    "write_level",
    "write_tree",
]
