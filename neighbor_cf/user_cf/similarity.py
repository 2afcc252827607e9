"""User-user Pearson similarity with bounded top-k neighbor retention."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np
import scipy.sparse as sp
from tqdm import tqdm

from ..store.sparse import SparseMatrix
from ..utils import EPSILON
from .topk import TopK


logger = logging.getLogger(__name__)


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


_EMPTY_NEIGHBORS = (_readonly(np.empty(0, dtype=np.int64)), _readonly(np.empty(0, dtype=np.float64)))


@dataclass(frozen=True)
class Neighbor:
    row: int
    score: float


@dataclass(frozen=True)
class SimilarityTable:
    """Row id -> up to k neighbors, highest similarity first."""

    k: int
    neighbors: Mapping[int, tuple[Neighbor, ...]] = field(default_factory=dict)
    _arrays: dict[int, tuple[np.ndarray, np.ndarray]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        arrays = {}
        for row, neighbors in self.neighbors.items():
            ids = _readonly(np.fromiter((nb.row for nb in neighbors), dtype=np.int64, count=len(neighbors)))
            scores = _readonly(np.fromiter((nb.score for nb in neighbors), dtype=np.float64, count=len(neighbors)))
            arrays[int(row)] = (ids, scores)
        object.__setattr__(self, "_arrays", arrays)

    def get(self, row: int) -> tuple[Neighbor, ...]:
        """Neighbors of `row` (empty when the row was never seen)."""
        return self.neighbors.get(int(row), ())

    def arrays(self, row: int) -> tuple[np.ndarray, np.ndarray]:
        """Neighbor ids and scores of `row` as parallel arrays, in `get` order."""
        return self._arrays.get(int(row), _EMPTY_NEIGHBORS)

    def __contains__(self, row: object) -> bool:
        return row in self.neighbors

    def __len__(self) -> int:
        return len(self.neighbors)


def pearson(matrix: SparseMatrix, x: int, y: int, averages: Mapping[int, float]) -> float:
    """Pearson correlation between rows `x` and `y` of `matrix`.

    Both rows are walked in column order like a sorted-merge join. Columns only
    one row has still add to that row's squared-deviation term, so the
    denominator covers each row's full deviation from its own mean. Returns 0.0
    when the denominator is below machine epsilon.
    """
    row_x = matrix.get_row(x)
    row_y = matrix.get_row(y)
    cols_x, vals_x = row_x.cols.tolist(), row_x.values.tolist()
    cols_y, vals_y = row_y.cols.tolist(), row_y.values.tolist()
    avg_x = averages[x]
    avg_y = averages[y]

    i = j = 0
    numerator = 0.0
    den_x = 0.0
    den_y = 0.0
    while i < len(cols_x) and j < len(cols_y):
        if cols_x[i] < cols_y[j]:
            den_x += (vals_x[i] - avg_x) ** 2
            i += 1
        elif cols_x[i] > cols_y[j]:
            den_y += (vals_y[j] - avg_y) ** 2
            j += 1
        else:
            dx = vals_x[i] - avg_x
            dy = vals_y[j] - avg_y
            numerator += dx * dy
            den_x += dx * dx
            den_y += dy * dy
            i += 1
            j += 1

    for v in vals_x[i:]:
        den_x += (v - avg_x) ** 2
    for v in vals_y[j:]:
        den_y += (v - avg_y) ** 2

    denominator = math.sqrt(den_x * den_y)
    if abs(denominator) < EPSILON:
        return 0.0
    return numerator / denominator


def _centered_matrix(
    matrix: SparseMatrix,
    row_ids: np.ndarray,
    averages: Mapping[int, float],
) -> tuple[sp.csr_matrix, np.ndarray]:
    """Mean-centered CSR matrix (one row per id in `row_ids`) and per-row sum of squares."""
    positions = np.searchsorted(row_ids, matrix.rows)
    _, col_idx = np.unique(matrix.cols, return_inverse=True)
    means = np.array([averages[int(r)] for r in row_ids.tolist()], dtype=np.float64)

    deviations = matrix.values.astype(np.float64) - means[positions]
    sum_sq = np.bincount(positions, weights=deviations * deviations, minlength=len(row_ids))

    n_cols = int(col_idx.max()) + 1 if len(col_idx) else 0
    centered = sp.csr_matrix((deviations, (positions, col_idx)), shape=(len(row_ids), n_cols))
    return centered, sum_sq


def build_similarity_table(
    matrix: SparseMatrix,
    averages: Mapping[int, float],
    k: int,
    *,
    block_size: int = 256,
    progress: bool = True,
) -> SimilarityTable:
    """Compute each row's k most Pearson-similar other rows.

    Every unordered pair of rows is scored once and the score is offered to
    both rows' heaps. Scores for a block of rows against all later rows come
    from one sparse product of the mean-centered matrix, which yields the same
    numerator and denominator terms as `pearson`.
    """
    if int(k) <= 0:
        raise ValueError("k must be > 0")
    if int(block_size) <= 0:
        raise ValueError("block_size must be > 0")

    row_ids = np.asarray(matrix.row_indexes(), dtype=np.int64)
    n = len(row_ids)
    heaps = [TopK(int(k)) for _ in range(n)]
    total_pairs = n * (n - 1) // 2
    logger.info("Similarity: rows=%d pairs=%d k=%d block_size=%d", n, total_pairs, int(k), int(block_size))

    if n >= 2:
        centered, sum_sq = _centered_matrix(matrix, row_ids, averages)
        centered_t = centered.T.tocsc()

        with tqdm(total=total_pairs, desc="Similarity", unit="pair", disable=not progress) as bar:
            for start in range(0, n, int(block_size)):
                stop = min(start + int(block_size), n)
                # scores[a, b] is the pair (start + a, start + b); only b > a is used.
                numerator = (centered[start:stop] @ centered_t[:, start:]).toarray()
                denominator = np.sqrt(np.outer(sum_sq[start:stop], sum_sq[start:]))
                with np.errstate(divide="ignore", invalid="ignore"):
                    scores = np.where(np.abs(denominator) < EPSILON, 0.0, numerator / denominator)

                # Every heap sees candidates in ascending row id, whatever the
                # block size, so ties at the heap boundary keep the same rows.
                # Row q first receives the block rows p < q ...
                for q in range(start + 1, n):
                    upto = min(q, stop) - start
                    heaps[q].offer(row_ids[start : start + upto], scores[:upto, q - start])

                # ... and a block row p then receives every later row.
                for local in range(stop - start):
                    p = start + local
                    heaps[p].offer(row_ids[p + 1 :], scores[local, local + 1 :])

                bar.update(sum(n - 1 - p for p in range(start, stop)))

    neighbors = {
        int(row_ids[p]): tuple(Neighbor(row=int(r), score=float(s)) for r, s in heaps[p].items())
        for p in range(n)
    }
    return SimilarityTable(k=int(k), neighbors=neighbors)
