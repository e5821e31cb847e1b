"""Core data structures and persistence primitives for the KD-tree."""

from .arena import NO_CHILD, NodeTable, PooledAllocator
from .bounds import BoundingBox
from .datasource import ArrayDataSource, DataSource, gather_points
from .metrics import (
    L1Metric,
    L2Metric,
    L2SimpleMetric,
    Metric,
    MetricRegistry,
    SO2Metric,
    SO3Metric,
    available_metrics,
    get_metric,
    register_metric,
)
from .persistence import read_tree, write_tree
from .tree import KDTreeCore

__all__ = [
    "NO_CHILD",
    "NodeTable",
    "PooledAllocator",
    "BoundingBox",
    "ArrayDataSource",
    "DataSource",
    "gather_points",
    "KDTreeCore",
    "read_tree",
    "write_tree",
    "Metric",
    "MetricRegistry",
    "L1Metric",
    "L2Metric",
    "L2SimpleMetric",
    "SO2Metric",
    "SO3Metric",
    "available_metrics",
    "get_metric",
    "register_metric",
]
