from __future__ import annotations

import numba as nb
import numpy as np


@nb.njit(cache=True)
def l1_rows(query: np.ndarray, block: np.ndarray) -> np.ndarray:
    rows = block.shape[0]
    dims = block.shape[1]
    out = np.empty(rows, dtype=np.float64)
    for i in range(rows):
        acc = 0.0
        for j in range(dims):
            acc += abs(block[i, j] - query[j])
        out[i] = acc
    return out


@nb.njit(cache=True)
def l2_rows(query: np.ndarray, block: np.ndarray) -> np.ndarray:
    rows = block.shape[0]
    dims = block.shape[1]
    out = np.empty(rows, dtype=np.float64)
    for i in range(rows):
        acc = 0.0
        for j in range(dims):
            diff = block[i, j] - query[j]
            acc += diff * diff
        out[i] = acc
    return out


__all__ = ["l1_rows", "l2_rows"]
