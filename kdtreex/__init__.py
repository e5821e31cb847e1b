"""kdtreex: KD-tree nearest-neighbour index over external point storage.

Quick Start
-----------
>>> import numpy as np
>>> from kdtreex import ArrayDataSource, StaticIndex
>>>
>>> points = np.random.randn(10000, 3)
>>> index = StaticIndex.build(ArrayDataSource(points))
>>> result = index.knn_search(points[0], k=10)
>>> result.indices, result.distances  # squared L2 by default

Incremental maintenance
-----------------------
>>> from kdtreex import DynamicIndex
>>>
>>> source = ArrayDataSource(points[:5000])
>>> dynamic = DynamicIndex.build(source)
>>> added = source.append(points[5000:])
>>> dynamic.add_points(added.start, added.stop)
>>> dynamic.remove_point(42)

Classes
-------
StaticIndex : One immutable tree with save/load.
DynamicIndex : Binary-counter family of trees supporting insertion and removal.
SearchParameters : Per-query eps, sorting and leaf-visit budget.
IndexParameters : Leaf size, metric and arena settings used at build time.
"""

from importlib.metadata import version as _pkg_version

try:
    __version__ = _pkg_version("kdtreex")
except Exception:  # pragma: no cover - best effort during local development
    __version__ = "0.1.0"

from .api import DynamicIndex, StaticIndex
from .core import (
    ArrayDataSource,
    BoundingBox,
    DataSource,
    KDTreeCore,
    Metric,
    PooledAllocator,
    available_metrics,
    get_metric,
    register_metric,
)
from .exceptions import (
    AllocationError,
    ConstructionError,
    KDTreexError,
    QueryError,
    SerializationError,
)
from .params import IndexParameters, SearchParameters
from .queries import (
    ApproximateKNNResultSet,
    KNNResultSet,
    RadiusKNNResultSet,
    RadiusResultSet,
    SearchResult,
    SearchStats,
)

__all__ = [
    "__version__",
    "StaticIndex",
    "DynamicIndex",
    "SearchParameters",
    "IndexParameters",
    "ArrayDataSource",
    "DataSource",
    "BoundingBox",
    "KDTreeCore",
    "PooledAllocator",
    "Metric",
    "available_metrics",
    "get_metric",
    "register_metric",
    "KNNResultSet",
    "RadiusResultSet",
    "ApproximateKNNResultSet",
    "RadiusKNNResultSet",
    "SearchResult",
    "SearchStats",
    "KDTreexError",
    "ConstructionError",
    "QueryError",
    "SerializationError",
    "AllocationError",
]
