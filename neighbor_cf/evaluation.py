"""Hold-out splitting and RMSE scoring."""

from __future__ import annotations

import logging

import numpy as np
from sklearn.metrics import mean_squared_error

from .store.sparse import SparseMatrix


logger = logging.getLogger(__name__)


class ShapeMismatchError(ValueError):
    """Predicted and ground-truth matrices do not cover the same (row, col) sequence."""


def rmse(predicted: SparseMatrix, truth: SparseMatrix) -> float:
    """Root-mean-square error between two matrices over identical (row, col) sequences."""
    if len(predicted) != len(truth):
        raise ShapeMismatchError(f"RMSE size mismatch: predicted={len(predicted)} truth={len(truth)}")
    if len(truth) == 0:
        raise ValueError("RMSE is undefined for empty matrices")

    mismatch = (predicted.rows != truth.rows) | (predicted.cols != truth.cols)
    if mismatch.any():
        i = int(np.flatnonzero(mismatch)[0])
        raise ShapeMismatchError(
            f"RMSE row/col mismatch at position {i}: "
            f"predicted=({int(predicted.rows[i])}, {int(predicted.cols[i])}) "
            f"truth=({int(truth.rows[i])}, {int(truth.cols[i])})"
        )

    mse = mean_squared_error(truth.values.astype(np.float64), predicted.values.astype(np.float64))
    return float(np.sqrt(mse))


def make_train_test(
    matrix: SparseMatrix,
    *,
    test_count: int = 3,
    seed: int = 42,
) -> tuple[SparseMatrix, SparseMatrix]:
    """Hold out `test_count` entries of every row that has more than that.

    A single random offset is drawn from `seed`; in each row the held-out
    entries are the `test_count` consecutive positions starting at
    `offset % len(row)`, wrapping around the end of the row. Rows with
    `test_count` entries or fewer stay entirely in train.
    """
    if int(test_count) < 0:
        raise ValueError("test_count must be >= 0")

    rng = np.random.default_rng(int(seed))
    offset = int(rng.integers(0, np.iinfo(np.int32).max))

    n = len(matrix)
    is_test = np.zeros(n, dtype=bool)
    if n and int(test_count) > 0:
        _, starts, counts = np.unique(matrix.rows, return_index=True, return_counts=True)
        position = np.arange(n) - np.repeat(starts, counts)
        row_len = np.repeat(counts, counts)
        base = offset % row_len
        is_test = (row_len > int(test_count)) & (((position - base) % row_len) < int(test_count))

    train = SparseMatrix.from_arrays(matrix.rows[~is_test], matrix.cols[~is_test], matrix.values[~is_test])
    test = SparseMatrix.from_arrays(matrix.rows[is_test], matrix.cols[is_test], matrix.values[is_test])
    logger.info(
        "Split: train=%d test=%d (test_count=%d per row, seed=%d)",
        len(train),
        len(test),
        int(test_count),
        int(seed),
    )
    return train, test
