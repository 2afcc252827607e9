"""Per-row and global average scores over a `SparseMatrix`."""

from __future__ import annotations

import numpy as np

from ..store.sparse import SparseMatrix


def row_averages(matrix: SparseMatrix) -> dict[int, float]:
    """Mean value of each row present in `matrix`.

    Rows are defined by their entries, so every key has at least one
    observation and no division by zero is possible.
    """
    if len(matrix) == 0:
        return {}

    # Entries are sorted by row: `starts` are the first index of each row.
    row_ids, starts, counts = np.unique(matrix.rows, return_index=True, return_counts=True)
    sums = np.add.reduceat(matrix.values.astype(np.float64), starts)
    means = sums / counts
    return {int(r): float(m) for r, m in zip(row_ids.tolist(), means.tolist())}


def global_average(matrix: SparseMatrix) -> float:
    """Mean of every value in `matrix`."""
    if len(matrix) == 0:
        raise ValueError("global average is undefined for an empty matrix")
    return float(np.mean(matrix.values, dtype=np.float64))
