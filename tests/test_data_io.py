from __future__ import annotations

from pathlib import Path

import pytest

from neighbor_cf.data import (
    RatingFormatError,
    read_item_attributes,
    read_test_dataset,
    read_train_dataset,
    write_dataset,
    write_dataset_in_order,
)
from neighbor_cf.store.sparse import SparseMatrix


TRAIN_TEXT = "1|2\n10 80\n11 35.5\n\n2|1\n10 0\n"


def _write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


def _headers(path: Path) -> list[str]:
    return [line for line in path.read_text().splitlines() if "|" in line]


def test_read_train_dataset(tmp_path: Path) -> None:
    m = read_train_dataset(_write(tmp_path / "train.txt", TRAIN_TEXT))

    assert len(m) == 3
    assert m.row_indexes() == (1, 2)
    assert m.get(1, 11) == 35.5
    assert m.get(2, 10) == 0.0


def test_read_test_dataset_defaults_scores(tmp_path: Path) -> None:
    m = read_test_dataset(_write(tmp_path / "test.txt", "5|2\n3\n1\n"))

    assert [(e.row, e.col, e.value) for e in m.get_all()] == [(5, 1, 0.0), (5, 3, 0.0)]


def test_missing_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="missing.txt"):
        read_train_dataset(tmp_path / "missing.txt")


def test_truncated_block_is_a_format_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "train.txt", "1|3\n10 80\n11 35\n")
    with pytest.raises(RatingFormatError, match="ended after 2 of 3"):
        read_train_dataset(path)


def test_header_without_separator_is_a_format_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "train.txt", "1 2\n10 80\n")
    with pytest.raises(RatingFormatError, match=":1:"):
        read_train_dataset(path)


def test_missing_score_is_a_format_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "train.txt", "1|1\n10\n")
    with pytest.raises(RatingFormatError, match="missing score"):
        read_train_dataset(path)


def test_duplicate_ratings_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "train.txt", "1|2\n10 80\n10 70\n")
    with pytest.raises(ValueError, match="duplicate"):
        read_train_dataset(path)


def test_read_item_attributes(tmp_path: Path) -> None:
    path = _write(tmp_path / "attrs.txt", "100|10|20\n101|10|None\n102|None|None\n")
    m = read_item_attributes(path)

    assert len(m) == 3
    assert m.get(100, 20) == 1
    assert m.get(101, 10) == 1
    assert len(m.get_row(102)) == 0
    assert m.transpose().get_row(10).cols.tolist() == [100, 101]


def test_attribute_line_missing_separator(tmp_path: Path) -> None:
    path = _write(tmp_path / "attrs.txt", "100|10|20\n101|10\n")
    with pytest.raises(RatingFormatError, match="attrs.txt:2"):
        read_item_attributes(path)


def test_write_then_read_round_trip(tmp_path: Path) -> None:
    m = SparseMatrix([(2, 4, 12.25), (1, 9, 80.0), (1, 3, 0.5)])
    out = write_dataset(tmp_path / "out" / "result.txt", m)

    assert _headers(out) == ["1|2", "2|1"]
    assert read_train_dataset(out).get_all() == m.get_all()


def test_write_in_reference_order(tmp_path: Path) -> None:
    reference = _write(tmp_path / "test.txt", "3|1\n7\n1|1\n5\n2|1\n6\n")
    predictions = SparseMatrix([(1, 5, 10.0), (2, 6, 20.0), (3, 7, 30.0)])

    out = write_dataset_in_order(reference, tmp_path / "result.txt", predictions)

    assert _headers(out) == ["3|1", "1|1", "2|1"]
    assert read_train_dataset(out).get_all() == predictions.get_all()


def test_write_in_reference_order_handles_missing_and_extra_rows(tmp_path: Path) -> None:
    reference = _write(tmp_path / "test.txt", "4|1\n7\n1|1\n5\n")
    predictions = SparseMatrix([(1, 5, 10.0), (2, 6, 20.0)])

    out = write_dataset_in_order(reference, tmp_path / "result.txt", predictions)

    assert _headers(out) == ["4|0", "1|1", "2|1"]


def test_written_scores_keep_full_precision(tmp_path: Path) -> None:
    m = SparseMatrix([(1, 3, 100.0 / 3.0), (1, 4, 73.123456789012), (1, 5, 80.0)])
    out = write_dataset(tmp_path / "result.txt", m)

    assert out.read_text().splitlines()[-1] == "5 80"
    assert read_train_dataset(out).get_all() == m.get_all()
