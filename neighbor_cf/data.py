"""Readers and writers for the block-structured rating and attribute text files.

Rating / result layout: blocks of a header line `<row_id>|<count>` followed by
`<count>` lines `<col_id> <value>` (test files omit the value).

Attribute layout: one line per item, `<item_id>|<attr1>|<attr2>`, where either
attribute may be the literal `None`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import numpy as np
import pandas as pd

from .store.sparse import SparseMatrix


logger = logging.getLogger(__name__)

NO_ATTRIBUTE = "None"


class RatingFormatError(ValueError):
    """A rating or attribute file does not follow the expected layout."""


def _require_file(path: Path) -> Path:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Cannot open file {path}")
    return path


def _parse_int(token: str, path: Path, line_no: int, what: str) -> int:
    try:
        value = int(token)
    except ValueError as exc:
        raise RatingFormatError(f"{path}:{line_no}: invalid {what} {token!r}") from exc
    if value < 0:
        raise RatingFormatError(f"{path}:{line_no}: {what} must be non-negative, got {value}")
    return value


def iter_rating_blocks(path: Path, *, has_score: bool) -> Iterator[tuple[int, list[tuple[int, float]]]]:
    """Yield `(row_id, [(col_id, value), ...])` per block, in file order."""
    path = _require_file(path)
    with path.open("r", encoding="utf-8") as f:
        lines = ((i, line.strip()) for i, line in enumerate(f, start=1))
        lines = ((i, line) for i, line in lines if line)

        for line_no, header in lines:
            if "|" not in header:
                raise RatingFormatError(f"{path}:{line_no}: expected '<row_id>|<count>' header, got {header!r}")
            row_tok, count_tok = header.split("|", 1)
            row_id = _parse_int(row_tok.strip(), path, line_no, "row id")
            count = _parse_int(count_tok.strip(), path, line_no, "entry count")

            entries: list[tuple[int, float]] = []
            for _ in range(count):
                nxt = next(lines, None)
                if nxt is None:
                    raise RatingFormatError(f"{path}: block for row {row_id} ended after {len(entries)} of {count} entries")
                entry_no, entry = nxt
                parts = entry.split()
                col_id = _parse_int(parts[0], path, entry_no, "column id")
                if has_score:
                    if len(parts) < 2:
                        raise RatingFormatError(f"{path}:{entry_no}: missing score for column {col_id}")
                    try:
                        value = float(parts[1])
                    except ValueError as exc:
                        raise RatingFormatError(f"{path}:{entry_no}: invalid score {parts[1]!r}") from exc
                else:
                    value = 0.0
                entries.append((col_id, value))
            yield row_id, entries


def _blocks_to_frame(path: Path, *, has_score: bool) -> pd.DataFrame:
    records = [
        (row_id, col_id, value)
        for row_id, entries in iter_rating_blocks(path, has_score=has_score)
        for col_id, value in entries
    ]
    df = pd.DataFrame.from_records(records, columns=["row", "col", "value"])
    return df.astype({"row": "int64", "col": "int64", "value": "float64"})


def validate_ratings(df: pd.DataFrame, *, source: str) -> None:
    """Validate a (row, col, value) frame read from `source`."""
    missing = [c for c in ("row", "col", "value") if c not in df.columns]
    if missing:
        raise ValueError(f"{source} missing columns: {missing}")

    dup = df.duplicated(subset=["row", "col"])
    if dup.any():
        first = df.loc[dup].iloc[0]
        raise ValueError(
            f"{source} contains {int(dup.sum())} duplicate (row, col) pairs, "
            f"first at ({int(first['row'])}, {int(first['col'])})"
        )

    if df["value"].isna().any():
        raise ValueError(f"{source} contains non-numeric scores")


def read_dataset(path: Path, *, has_score: bool) -> SparseMatrix:
    path = Path(path)
    df = _blocks_to_frame(path, has_score=has_score)
    validate_ratings(df, source=str(path))
    matrix = SparseMatrix.from_frame(df)
    logger.info("Read %s: rows=%d entries=%d", path, len(matrix.row_indexes()), len(matrix))
    return matrix


def read_train_dataset(path: Path) -> SparseMatrix:
    """Read a rating file with scores."""
    return read_dataset(path, has_score=True)


def read_test_dataset(path: Path) -> SparseMatrix:
    """Read a rating file without scores (values are 0)."""
    return read_dataset(path, has_score=False)


def read_item_attributes(path: Path) -> SparseMatrix:
    """Read the item-attribute file into an item -> attribute presence matrix (value 1)."""
    path = _require_file(path)
    records: list[tuple[int, int, int]] = []
    with path.open("r", encoding="utf-8") as f:
        for line_no, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line:
                continue
            parts = line.split("|")
            if len(parts) != 3:
                raise RatingFormatError(f"Item attribute file format error at {path}:{line_no}: {line!r}")

            item_id = _parse_int(parts[0].strip(), path, line_no, "item id")
            for token in parts[1:]:
                token = token.strip()
                if token == NO_ATTRIBUTE:
                    continue
                records.append((item_id, _parse_int(token, path, line_no, "attribute id"), 1))

    df = pd.DataFrame.from_records(records, columns=["row", "col", "value"])
    df = df.astype({"row": "int64", "col": "int64", "value": "int64"})
    # An item listing the same attribute twice carries it once.
    df = df.drop_duplicates(subset=["row", "col"])
    matrix = SparseMatrix.from_frame(df)
    logger.info("Read %s: items=%d attribute_entries=%d", path, len(matrix.row_indexes()), len(matrix))
    return matrix


def _format_value(value: float) -> str:
    # Shortest text that reads back to the same float; whole numbers drop the ".0".
    return np.format_float_positional(float(value), trim="-")


def _format_block(matrix: SparseMatrix, row_id: int) -> list[str]:
    row = matrix.get_row(row_id)
    lines = [f"{row_id}|{len(row)}"]
    lines.extend(f"{col} {_format_value(value)}" for col, value in zip(row.cols.tolist(), row.values.tolist()))
    return lines


def write_dataset(path: Path, matrix: SparseMatrix) -> Path:
    """Write `matrix` in ascending (row, col) order."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for row_id in matrix.row_indexes():
            f.write("\n".join(_format_block(matrix, row_id)) + "\n")
    logger.info("Wrote %s: rows=%d entries=%d", path, len(matrix.row_indexes()), len(matrix))
    return path


def write_dataset_in_order(reference: Path, path: Path, matrix: SparseMatrix) -> Path:
    """Write `matrix` with rows in the order they appear in the `reference` rating file.

    Reference rows missing from `matrix` are written with a zero count; rows of
    `matrix` that the reference never mentions are appended in ascending order.
    """
    order = list(dict.fromkeys(row_id for row_id, _ in iter_rating_blocks(reference, has_score=False)))
    seen = set(order)
    extra = [r for r in matrix.row_indexes() if r not in seen]
    if extra:
        logger.warning("%d rows not present in reference %s; appending them", len(extra), reference)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for row_id in [*order, *extra]:
            f.write("\n".join(_format_block(matrix, row_id)) + "\n")
    logger.info("Wrote %s in reference order of %s: rows=%d entries=%d", path, reference, len(order) + len(extra), len(matrix))
    return path
