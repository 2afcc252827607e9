"""Bias-corrected neighbor predictor with an item-attribute fallback."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Literal, Mapping

import numpy as np
from tqdm import tqdm

from ..store.sparse import SparseMatrix
from ..utils import EPSILON
from .similarity import SimilarityTable, build_similarity_table
from .stats import global_average, row_averages


logger = logging.getLogger(__name__)

Source = Literal["neighbors", "attributes", "baseline"]


@dataclass(frozen=True)
class PredictorConfig:
    use_attributes: bool = True
    weight_by_group: bool = True
    min_neighbors: int = 2
    lower: float = 0.0
    upper: float = 100.0


@dataclass(frozen=True)
class ModelSnapshot:
    """Everything the predictor reads, built once per run and never mutated."""

    ratings: SparseMatrix
    item_ratings: SparseMatrix
    global_avg: float
    user_avgs: Mapping[int, float]
    item_avgs: Mapping[int, float]
    similarity: SimilarityTable
    item_attrs: SparseMatrix
    attr_items: SparseMatrix


@dataclass(frozen=True)
class Prediction:
    score: float
    source: Source


def build_snapshot(
    ratings: SparseMatrix,
    item_attrs: SparseMatrix,
    *,
    k: int,
    block_size: int = 256,
    progress: bool = True,
) -> ModelSnapshot:
    """Derive averages, the attribute index and the neighbor table from training data."""
    g = global_average(ratings)
    user_avgs = row_averages(ratings)
    item_ratings = ratings.transpose()
    item_avgs = row_averages(item_ratings)
    logger.info(
        "Snapshot: ratings=%d users=%d items=%d global_avg=%.4f",
        len(ratings),
        len(user_avgs),
        len(item_avgs),
        g,
    )

    attr_items = item_attrs.transpose()
    logger.info(
        "Snapshot: attributed_items=%d attributes=%d",
        len(item_attrs.row_indexes()),
        len(attr_items.row_indexes()),
    )

    similarity = build_similarity_table(ratings, user_avgs, int(k), block_size=block_size, progress=progress)
    return ModelSnapshot(
        ratings=ratings,
        item_ratings=item_ratings,
        global_avg=g,
        user_avgs=user_avgs,
        item_avgs=item_avgs,
        similarity=similarity,
        item_attrs=item_attrs,
        attr_items=attr_items,
    )


class Predictor:
    """Predict a user's score for an item.

    Tiers, strongest first:
    - neighbors: baseline plus the similarity-weighted residuals of the user's
      top-k neighbors who rated the item (needs `min_neighbors` of them).
    - attributes: weighted mean over items sharing an attribute with the item.
      Each sibling uses the user's own rating, else the neighbor tier for that
      sibling. The neighbor tier never reaches back here, so the fallback is
      at most one level deep.
    - baseline: global mean plus user and item biases.
    """

    def __init__(self, snapshot: ModelSnapshot, config: PredictorConfig | None = None) -> None:
        self.snapshot = snapshot
        self.config = config or PredictorConfig()

        # Sorted user ids with their biases, for array lookups in the neighbor tier.
        user_ids = np.array(sorted(snapshot.user_avgs), dtype=np.int64)
        self._user_ids = user_ids
        self._user_biases = np.array(
            [snapshot.user_avgs[u] - snapshot.global_avg for u in user_ids.tolist()], dtype=np.float64
        )

    def _clamp(self, score: float) -> float:
        return float(min(max(score, self.config.lower), self.config.upper))

    def _user_bias(self, user: int) -> float:
        avg = self.snapshot.user_avgs.get(int(user))
        return 0.0 if avg is None else avg - self.snapshot.global_avg

    def _item_bias(self, item: int) -> float:
        avg = self.snapshot.item_avgs.get(int(item))
        return 0.0 if avg is None else avg - self.snapshot.global_avg

    def baseline(self, user: int, item: int) -> float:
        """Unclamped bias-only estimate."""
        return self.snapshot.global_avg + self._user_bias(user) + self._item_bias(item)

    def _user_bias_array(self, users: np.ndarray) -> np.ndarray:
        if not len(self._user_ids):
            return np.zeros(len(users), dtype=np.float64)
        pos = np.minimum(np.searchsorted(self._user_ids, users), len(self._user_ids) - 1)
        return np.where(self._user_ids[pos] == users, self._user_biases[pos], 0.0)

    def neighbor_estimate(self, user: int, item: int) -> float | None:
        """Neighbor tier only; None when support is insufficient.

        The user's neighbor ids are matched against the item's raters (sorted
        by user id) with one `searchsorted`, so the cost is O(k log raters).
        """
        snap = self.snapshot
        ids, scores = snap.similarity.arrays(user)
        raters = snap.item_ratings.get_row(item)
        if not len(ids) or not len(raters):
            return None

        pos = np.minimum(np.searchsorted(raters.cols, ids), len(raters) - 1)
        hit = raters.cols[pos] == ids
        count = int(np.count_nonzero(hit))
        if count < int(self.config.min_neighbors):
            return None

        weights = scores[hit]
        neighbor_base = snap.global_avg + self._user_bias_array(ids[hit]) + self._item_bias(item)
        residuals = raters.values[pos[hit]].astype(np.float64) - neighbor_base
        numerator = float(np.dot(weights, residuals))
        denominator = float(np.abs(weights).sum())
        if denominator < EPSILON:
            return None
        return self._clamp(self.baseline(user, item) + numerator / denominator)

    def sibling_groups(self, item: int) -> list[np.ndarray]:
        """For each attribute of `item`, the other items carrying it."""
        snap = self.snapshot
        groups: list[np.ndarray] = []
        for attr in snap.item_attrs.get_row(item).cols.tolist():
            members = snap.attr_items.get_row(attr).cols
            siblings = members[members != int(item)]
            if len(siblings):
                groups.append(siblings)
        return groups

    def attribute_estimate(self, user: int, item: int) -> float | None:
        """Attribute tier; None when no sibling item yields a value."""
        own = self.snapshot.ratings.get_row(user)
        estimates: dict[int, float | None] = {}

        numerator = 0.0
        denominator = 0.0
        for siblings in self.sibling_groups(item):
            weight = 1.0 / len(siblings) if self.config.weight_by_group else 1.0

            if len(own):
                pos = np.minimum(np.searchsorted(own.cols, siblings), len(own) - 1)
                rated = own.cols[pos] == siblings
            else:
                pos = np.zeros(len(siblings), dtype=np.int64)
                rated = np.zeros(len(siblings), dtype=bool)
            values = own.values[pos[rated]].astype(np.float64)
            numerator += weight * float(values.sum())
            denominator += weight * len(values)

            for sibling in siblings[~rated].tolist():
                # A sibling shared by several attributes is estimated once.
                if sibling not in estimates:
                    estimates[sibling] = self.neighbor_estimate(user, sibling)
                value = estimates[sibling]
                if value is None:
                    continue
                numerator += weight * value
                denominator += weight

        if denominator <= EPSILON:
            return None
        return numerator / denominator

    def predict_with_source(self, user: int, item: int) -> Prediction:
        score = self.neighbor_estimate(user, item)
        if score is not None:
            return Prediction(score=score, source="neighbors")

        if self.config.use_attributes:
            score = self.attribute_estimate(user, item)
            if score is not None:
                return Prediction(score=self._clamp(score), source="attributes")

        return Prediction(score=self._clamp(self.baseline(user, item)), source="baseline")

    def predict(self, user: int, item: int) -> float:
        return self.predict_with_source(user, item).score

    def predict_matrix(self, targets: SparseMatrix, *, progress: bool = True) -> SparseMatrix:
        """Predict every (row, col) of `targets`; its values are ignored."""
        rows = targets.rows
        cols = targets.cols
        scores = np.empty(len(targets), dtype=np.float64)
        sources: Counter[str] = Counter()

        pairs = zip(rows.tolist(), cols.tolist())
        for i, (user, item) in enumerate(tqdm(pairs, total=len(targets), desc="Predict", disable=not progress)):
            pred = self.predict_with_source(user, item)
            scores[i] = pred.score
            sources[pred.source] += 1

        logger.info(
            "Predicted %d pairs: neighbors=%d attributes=%d baseline=%d",
            len(targets),
            sources["neighbors"],
            sources["attributes"],
            sources["baseline"],
        )
        return SparseMatrix.from_arrays(rows, cols, scores)
