from __future__ import annotations

import argparse
import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import yaml

from ..data import (
    read_item_attributes,
    read_test_dataset,
    read_train_dataset,
    write_dataset,
    write_dataset_in_order,
)
from ..evaluation import make_train_test, rmse
from ..paths import ProjectPaths, get_repo_root
from ..store.sparse import SparseMatrix
from ..user_cf.predictor import Predictor, PredictorConfig, build_snapshot
from ..utils import setup_logging


logger = logging.getLogger(__name__)

Mode = Literal["evaluate", "predict"]


@dataclass(frozen=True)
class BatchConfig:
    train_path: Path
    test_path: Path
    attribute_path: Path
    output_path: Path
    k: int = 5000
    block_size: int = 256
    holdout_per_user: int = 3
    seed: int = 42
    in_test_order: bool = False
    predictor: PredictorConfig = field(default_factory=PredictorConfig)


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    value = cfg.get(name, {})
    return value if isinstance(value, dict) else {}


def load_config(config_path: Path) -> dict[str, Any]:
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    cfg = yaml.safe_load(config_path.read_text())
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Expected config YAML to be a mapping, got: {type(cfg)}")
    return cfg


def config_from_mapping(cfg: dict[str, Any], repo_root: Path) -> BatchConfig:
    """Build a `BatchConfig` from the parsed YAML; relative paths resolve against `repo_root`."""
    dataset = _section(cfg, "dataset")
    model = _section(cfg, "model")
    evaluation = _section(cfg, "evaluation")
    output = _section(cfg, "output")

    paths = ProjectPaths.from_repo_root(
        repo_root,
        data_dir=str(dataset.get("data_dir", "data")),
        output_dir=str(output.get("output_dir", "output")),
    )
    predictor = PredictorConfig(
        use_attributes=bool(model.get("use_attributes", True)),
        weight_by_group=bool(model.get("weight_by_group", True)),
        min_neighbors=int(model.get("min_neighbors", 2)),
        lower=float(model.get("min_score", 0.0)),
        upper=float(model.get("max_score", 100.0)),
    )
    if predictor.lower > predictor.upper:
        raise ValueError(f"model.min_score ({predictor.lower}) exceeds model.max_score ({predictor.upper})")

    return BatchConfig(
        train_path=paths.data_file(str(dataset.get("train_file", "train.txt"))),
        test_path=paths.data_file(str(dataset.get("test_file", "test.txt"))),
        attribute_path=paths.data_file(str(dataset.get("attribute_file", "itemAttribute.txt"))),
        output_path=paths.output_file(str(output.get("result_file", "result.txt"))),
        k=int(model.get("k", 5000)),
        block_size=int(model.get("block_size", 256)),
        holdout_per_user=int(evaluation.get("holdout_per_user", 3)),
        seed=int(evaluation.get("seed", 42)),
        in_test_order=bool(output.get("in_test_order", False)),
        predictor=predictor,
    )


def _load_attributes(cfg: BatchConfig) -> SparseMatrix:
    if not cfg.predictor.use_attributes:
        logger.info("Attribute fallback disabled; skipping %s", cfg.attribute_path)
        return SparseMatrix(dtype="int64")
    return read_item_attributes(cfg.attribute_path)


def run_batch(cfg: BatchConfig, *, mode: Mode, progress: bool = True) -> dict[str, Any]:
    """Run one evaluate- or predict-mode pass and write results plus a JSON manifest."""
    if mode not in ("evaluate", "predict"):
        raise ValueError(f"Unsupported mode: {mode!r}")

    logger.info("Loading ratings from %s", cfg.train_path)
    ratings = read_train_dataset(cfg.train_path)
    item_attrs = _load_attributes(cfg)

    inputs = [cfg.train_path]
    if cfg.predictor.use_attributes:
        inputs.append(cfg.attribute_path)

    if mode == "evaluate":
        train, targets = make_train_test(ratings, test_count=cfg.holdout_per_user, seed=cfg.seed)
    else:
        train = ratings
        logger.info("Loading prediction targets from %s", cfg.test_path)
        targets = read_test_dataset(cfg.test_path)
        inputs.append(cfg.test_path)

    snapshot = build_snapshot(train, item_attrs, k=cfg.k, block_size=cfg.block_size, progress=progress)
    predictor = Predictor(snapshot, cfg.predictor)
    result = predictor.predict_matrix(targets, progress=progress)

    score: float | None = None
    if mode == "evaluate":
        score = rmse(result, targets)
        logger.info("RMSE = %.6f over %d held-out ratings", score, len(targets))

    if mode == "predict" and cfg.in_test_order:
        write_dataset_in_order(cfg.test_path, cfg.output_path, result)
    else:
        write_dataset(cfg.output_path, result)

    now_utc = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    config_snapshot = asdict(cfg)
    config_snapshot = json.loads(json.dumps(config_snapshot, default=str))

    manifest = {
        "built_at_utc": now_utc,
        "mode": mode,
        "config": config_snapshot,
        "inputs_sha256": {str(p): _sha256_file(p) for p in inputs},
        "counts": {
            "train_ratings": len(train),
            "users": len(snapshot.user_avgs),
            "items": len(snapshot.item_avgs),
            "predictions": len(result),
        },
        "rmse": score,
        "outputs": {"result": str(cfg.output_path)},
    }
    manifest_path = cfg.output_path.with_name(cfg.output_path.stem + "_manifest.json")
    manifest_path.write_text(json.dumps(manifest, indent=2, sort_keys=True) + "\n")
    manifest["outputs"]["manifest"] = str(manifest_path)

    logger.info("Batch %s complete: predictions=%d output=%s", mode, len(result), cfg.output_path)
    return manifest


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Predict missing ratings with neighbor CF and attribute fallback.")
    p.add_argument("--mode", choices=["evaluate", "predict"], default="evaluate",
                   help="evaluate: hold out ratings per user and report RMSE; predict: score the test file.")
    p.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to config YAML.")
    p.add_argument("--train", type=Path, default=None, help="Override train rating file")
    p.add_argument("--test", type=Path, default=None, help="Override test rating file (predict mode)")
    p.add_argument("--attributes", type=Path, default=None, help="Override item attribute file")
    p.add_argument("--output", type=Path, default=None, help="Override result file")
    p.add_argument("--k", type=int, default=None, help="Override neighbor count")
    p.add_argument("--no-attributes", action="store_true", help="Disable the item-attribute fallback")
    p.add_argument("--no-attribute-weight", action="store_true",
                   help="Weight every attribute sibling 1.0 instead of 1/group size")
    p.add_argument("--in-order", action="store_true", help="Write results in the row order of the test file")
    p.add_argument("--no-progress", action="store_true", help="Hide progress bars")
    p.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return p


def _apply_overrides(cfg: BatchConfig, args: argparse.Namespace) -> BatchConfig:
    changes: dict[str, Any] = {}
    for arg_name, field_name in (
        ("train", "train_path"),
        ("test", "test_path"),
        ("attributes", "attribute_path"),
        ("output", "output_path"),
    ):
        value = getattr(args, arg_name)
        if value is not None:
            changes[field_name] = Path(value).resolve()
    if args.k is not None:
        changes["k"] = int(args.k)
    if args.in_order:
        changes["in_test_order"] = True

    predictor = cfg.predictor
    if args.no_attributes:
        predictor = replace(predictor, use_attributes=False)
    if args.no_attribute_weight:
        predictor = replace(predictor, weight_by_group=False)
    changes["predictor"] = predictor
    return replace(cfg, **changes)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config_path = Path(args.config)
        if config_path.is_absolute():
            repo_root = config_path.parent
        else:
            repo_root = get_repo_root()
            config_path = (repo_root / config_path).resolve()

        cfg = _apply_overrides(config_from_mapping(load_config(config_path), repo_root), args)
        manifest = run_batch(cfg, mode=args.mode, progress=(not bool(args.no_progress)))
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1

    if manifest["rmse"] is not None:
        print(f"RMSE = {manifest['rmse']:.6f}")
    return 0


def cli() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    cli()
