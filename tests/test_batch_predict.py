from __future__ import annotations

import json
from pathlib import Path

import pytest

from neighbor_cf.data import read_train_dataset
from neighbor_cf.pipelines.batch_predict import (
    config_from_mapping,
    load_config,
    main,
)


def _write_train(path: Path) -> None:
    blocks = []
    for user in range(6):
        items = [(item, 10.0 * ((user + item) % 9) + 5.0) for item in range(8) if (user + item) % 5 != 0]
        blocks.append(f"{user}|{len(items)}")
        blocks.extend(f"{item} {score:g}" for item, score in items)
    path.write_text("\n".join(blocks) + "\n")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    _write_train(tmp_path / "train.txt")
    (tmp_path / "test.txt").write_text("4|2\n0\n9\n1|1\n5\n")
    (tmp_path / "itemAttribute.txt").write_text(
        "\n".join(f"{item}|{item % 3}|{'None' if item % 2 else 7}" for item in range(10)) + "\n"
    )
    (tmp_path / "config.yaml").write_text(
        "dataset:\n"
        "  data_dir: .\n"
        "model:\n"
        "  k: 3\n"
        "  block_size: 2\n"
        "output:\n"
        "  output_dir: out\n"
    )
    return tmp_path


def test_config_defaults_and_relative_paths(workspace: Path) -> None:
    cfg = config_from_mapping(load_config(workspace / "config.yaml"), workspace)

    assert cfg.train_path == (workspace / "train.txt").resolve()
    assert cfg.output_path == (workspace / "out" / "result.txt").resolve()
    assert cfg.k == 3
    assert cfg.holdout_per_user == 3
    assert cfg.predictor.use_attributes is True
    assert cfg.predictor.upper == 100.0


def test_config_rejects_inverted_score_range(workspace: Path) -> None:
    with pytest.raises(ValueError, match="min_score"):
        config_from_mapping({"model": {"min_score": 10, "max_score": 5}}, workspace)


def test_evaluate_mode_reports_rmse(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["--config", str(workspace / "config.yaml"), "--mode", "evaluate", "--no-progress"])

    assert code == 0
    assert "RMSE = " in capsys.readouterr().out

    manifest = json.loads((workspace / "out" / "result_manifest.json").read_text())
    assert manifest["mode"] == "evaluate"
    assert manifest["rmse"] >= 0.0
    # Every user has more than three ratings, so three are held out per user.
    assert manifest["counts"]["predictions"] == 6 * 3
    assert len(read_train_dataset(workspace / "out" / "result.txt")) == 6 * 3


def test_predict_mode_in_test_order(workspace: Path) -> None:
    out = workspace / "predictions.txt"
    code = main(
        [
            "--config", str(workspace / "config.yaml"),
            "--mode", "predict",
            "--output", str(out),
            "--in-order",
            "--no-progress",
        ]
    )

    assert code == 0
    headers = [line for line in out.read_text().splitlines() if "|" in line]
    assert headers == ["4|2", "1|1"]

    result = read_train_dataset(out)
    assert {(e.row, e.col) for e in result.get_all()} == {(4, 0), (4, 9), (1, 5)}
    assert all(0.0 <= e.value <= 100.0 for e in result.get_all())


def test_predict_mode_without_attributes(workspace: Path) -> None:
    (workspace / "itemAttribute.txt").unlink()
    code = main(
        [
            "--config", str(workspace / "config.yaml"),
            "--mode", "predict",
            "--no-attributes",
            "--no-progress",
        ]
    )
    assert code == 0


def test_missing_train_file_exits_with_error(workspace: Path) -> None:
    code = main(
        [
            "--config", str(workspace / "config.yaml"),
            "--train", str(workspace / "nope.txt"),
            "--no-progress",
        ]
    )
    assert code == 1


def test_malformed_attribute_file_exits_with_error(workspace: Path) -> None:
    (workspace / "itemAttribute.txt").write_text("0|1|2\n1|2\n")
    code = main(["--config", str(workspace / "config.yaml"), "--no-progress"])
    assert code == 1


def test_missing_config_exits_with_error(tmp_path: Path) -> None:
    assert main(["--config", str(tmp_path / "config.yaml"), "--no-progress"]) == 1
