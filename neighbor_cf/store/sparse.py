"""Sparse (row, col, value) store with binary-search row and point lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, NamedTuple

import numpy as np
import pandas as pd


class Entry(NamedTuple):
    """A single (row, col, value) observation."""

    row: int
    col: int
    value: float | int


@dataclass(frozen=True)
class SparseRow:
    """Read-only view over one row of a `SparseMatrix` (columns ascending)."""

    row: int
    cols: np.ndarray
    values: np.ndarray

    def __len__(self) -> int:
        return int(len(self.cols))

    def __iter__(self) -> Iterator[Entry]:
        for col, value in zip(self.cols.tolist(), self.values.tolist()):
            yield Entry(self.row, int(col), value)


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


class SparseMatrix:
    """Sorted, read-only collection of entries ordered by (row, col).

    Built once from an unordered iterable of `(row, col, value)` triples.
    Entries live in three parallel numpy arrays sorted by (row, col), so a row
    is a contiguous slice located with `np.searchsorted` and a point lookup is a
    second binary search inside that slice.

    Duplicate (row, col) pairs are rejected with `ValueError`.
    """

    def __init__(self, entries: Iterable[tuple[int, int, float]] = (), *, dtype: str = "float64") -> None:
        triples = list(entries)
        n = len(triples)
        rows = np.fromiter((int(t[0]) for t in triples), dtype=np.int64, count=n)
        cols = np.fromiter((int(t[1]) for t in triples), dtype=np.int64, count=n)
        values = np.fromiter((t[2] for t in triples), dtype=dtype, count=n)
        self._set_arrays(rows, cols, values)

    @classmethod
    def from_arrays(cls, rows: np.ndarray, cols: np.ndarray, values: np.ndarray) -> "SparseMatrix":
        """Build from parallel arrays (copied; input order does not matter)."""
        obj = cls.__new__(cls)
        obj._set_arrays(
            np.array(rows, dtype=np.int64, copy=True),
            np.array(cols, dtype=np.int64, copy=True),
            np.array(values, copy=True),
        )
        return obj

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        *,
        row: str = "row",
        col: str = "col",
        value: str = "value",
    ) -> "SparseMatrix":
        """Build from a DataFrame with row/col/value columns."""
        missing = [c for c in (row, col, value) if c not in df.columns]
        if missing:
            raise ValueError(f"frame missing required columns: {missing}")
        return cls.from_arrays(df[row].to_numpy(), df[col].to_numpy(), df[value].to_numpy())

    def _set_arrays(self, rows: np.ndarray, cols: np.ndarray, values: np.ndarray) -> None:
        if not (rows.shape == cols.shape == values.shape) or rows.ndim != 1:
            raise ValueError(f"rows/cols/values shape mismatch: {rows.shape} {cols.shape} {values.shape}")
        if len(rows) and (int(rows.min()) < 0 or int(cols.min()) < 0):
            raise ValueError("row and column ids must be non-negative")

        # lexsort sorts by the last key first: (row, col) order.
        order = np.lexsort((cols, rows))
        rows, cols, values = rows[order], cols[order], values[order]

        if len(rows) > 1:
            dup = (rows[1:] == rows[:-1]) & (cols[1:] == cols[:-1])
            if dup.any():
                i = int(np.flatnonzero(dup)[0])
                raise ValueError(
                    f"duplicate entry for (row={int(rows[i])}, col={int(cols[i])}); "
                    f"{int(dup.sum())} duplicate pair(s) in input"
                )

        self._rows = _readonly(rows)
        self._cols = _readonly(cols)
        self._values = _readonly(values)
        self._row_ids = tuple(int(r) for r in np.unique(rows).tolist())

    # ----- array access -----

    @property
    def rows(self) -> np.ndarray:
        return self._rows

    @property
    def cols(self) -> np.ndarray:
        return self._cols

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def dtype(self) -> np.dtype:
        return self._values.dtype

    def __len__(self) -> int:
        return int(len(self._rows))

    def __repr__(self) -> str:
        return f"SparseMatrix(entries={len(self)}, rows={len(self._row_ids)}, dtype={self.dtype})"

    # ----- lookups -----

    def row_bounds(self, row: int) -> tuple[int, int]:
        """Return the half-open [start, stop) slice holding `row`'s entries."""
        start = int(np.searchsorted(self._rows, row, side="left"))
        stop = int(np.searchsorted(self._rows, row, side="right"))
        return start, stop

    def get(self, row: int, col: int) -> float | int | None:
        """Return the value at (row, col), or None when no entry exists."""
        start, stop = self.row_bounds(row)
        if start == stop:
            return None
        j = start + int(np.searchsorted(self._cols[start:stop], col, side="left"))
        if j < stop and int(self._cols[j]) == int(col):
            return self._values[j].item()
        return None

    def get_row(self, row: int) -> SparseRow:
        """Return the entries of `row` (empty view when the row is absent)."""
        start, stop = self.row_bounds(row)
        return SparseRow(row=int(row), cols=self._cols[start:stop], values=self._values[start:stop])

    def has_row(self, row: int) -> bool:
        start, stop = self.row_bounds(row)
        return stop > start

    def get_all(self) -> list[Entry]:
        """Return every entry in (row, col) order."""
        return [
            Entry(int(r), int(c), v)
            for r, c, v in zip(self._rows.tolist(), self._cols.tolist(), self._values.tolist())
        ]

    def row_indexes(self) -> tuple[int, ...]:
        """Distinct row ids, ascending."""
        return self._row_ids

    # ----- derived matrices -----

    def transpose(self) -> "SparseMatrix":
        """New matrix with row and column swapped (independent copy)."""
        return SparseMatrix.from_arrays(self._cols, self._rows, self._values)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"row": self._rows.copy(), "col": self._cols.copy(), "value": self._values.copy()})
