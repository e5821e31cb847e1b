#!/usr/bin/env python
"""Quick-start guide for kdtreex library usage.

Run with: python -m kdtreex

This module intentionally avoids importing kdtreex internals to provide
a fast, clean startup for displaying help text.
"""

from __future__ import annotations

QUICKSTART = """\
================================================================================
                                 KDTREEX
        KD-tree nearest-neighbour index over externally owned points
================================================================================

INSTALLATION
------------
    pip install kdtreex

BASIC USAGE (squared-L2 k-NN)
-----------------------------
    import numpy as np
    from kdtreex import ArrayDataSource, StaticIndex

    points = np.random.randn(10000, 3)
    index = StaticIndex.build(ArrayDataSource(points))

    result = index.knn_search(points[0], k=10)
    result.indices        # ascending distance, ties by ascending index
    result.distances      # squared Euclidean distances

    # Radius thresholds use the metric's units (squared for l2)
    close = index.radius_search(points[0], 0.25)

APPROXIMATE SEARCH
------------------
    from kdtreex import SearchParameters

    params = SearchParameters(eps=0.5, checks=64)
    result = index.knn_search(points[0], k=10, params=params)

METRICS
-------
    from kdtreex import IndexParameters

    IndexParameters(metric="l1")         # sum of absolute differences
    IndexParameters(metric="l2_simple")  # squared L2, per-column evaluation
    IndexParameters(metric="so2")        # angles in radians
    IndexParameters(metric="so3")        # unit quaternions (w, x, y, z)

DYNAMIC INDEX
-------------
    from kdtreex import DynamicIndex

    source = ArrayDataSource(points[:5000])
    dynamic = DynamicIndex.build(source)
    added = source.append(points[5000:])
    dynamic.add_points(added.start, added.stop)
    dynamic.remove_point(42)
    dynamic.sub_trees()   # (level, capacity, live points)

PERSISTENCE
-----------
    with open("index.kdtx", "wb") as fh:
        index.save(fh)
    with open("index.kdtx", "rb") as fh:
        index = StaticIndex.load(fh, ArrayDataSource(points))

RUNTIME CONFIGURATION
---------------------
    KDTREEX_LOG_LEVEL=DEBUG           # per-query op= records
    KDTREEX_ENABLE_NUMBA=1            # compiled l1/l2 leaf kernels
    KDTREEX_ENABLE_DIAGNOSTICS=0      # skip psutil CPU/RSS sampling
    KDTREEX_LEAF_MAX_SIZE=16
    KDTREEX_ARENA_MAX_NODES=100000

BENCHMARKING CLI
----------------
    python -m cli.bench query --dimension 3 --tree-points 8192 --k 10
    python -m cli.bench dynamic --tree-points 8192 --batch-size 512

================================================================================
"""


def main() -> None:
    """Print quick-start guide."""
    print(QUICKSTART)


if __name__ == "__main__":
    main()
