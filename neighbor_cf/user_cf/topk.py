"""Bounded top-k selection (min-heap of the k best scores seen so far)."""

from __future__ import annotations

import heapq
from typing import Sequence

import numpy as np


class TopK:
    """Keep the k highest-scoring `(id, score)` pairs.

    The heap root is the weakest retained score. A new candidate is accepted
    while fewer than k pairs are held; after that it must be strictly greater
    than the root, which it then replaces. Each accepted update is O(log k).
    """

    __slots__ = ("k", "_heap")

    def __init__(self, k: int) -> None:
        if int(k) <= 0:
            raise ValueError("k must be > 0")
        self.k = int(k)
        self._heap: list[tuple[float, int]] = []

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def min_score(self) -> float | None:
        return self._heap[0][0] if self._heap else None

    def push(self, item_id: int, score: float) -> bool:
        """Offer one candidate; return True when it was retained."""
        entry = (float(score), int(item_id))
        if len(self._heap) < self.k:
            heapq.heappush(self._heap, entry)
            return True
        if self._heap[0][0] < entry[0]:
            heapq.heapreplace(self._heap, entry)
            return True
        return False

    def offer(self, ids: Sequence[int] | np.ndarray, scores: Sequence[float] | np.ndarray) -> int:
        """Offer a batch of candidates in order; return how many were retained.

        Equivalent to calling `push` for each pair in turn. Candidates that
        cannot survive (not above the current root, or outside the batch's own
        top k) are dropped with numpy before touching the heap.
        """
        ids_arr = np.asarray(ids)
        scores_arr = np.asarray(scores, dtype=np.float64)
        if ids_arr.shape != scores_arr.shape:
            raise ValueError(f"ids/scores length mismatch: {ids_arr.shape} vs {scores_arr.shape}")

        if len(self._heap) >= self.k:
            keep = scores_arr > self._heap[0][0]
            ids_arr, scores_arr = ids_arr[keep], scores_arr[keep]

        if len(scores_arr) > self.k:
            # Stable sort: among equal scores the earliest candidate wins, as with push().
            top = np.sort(np.argsort(-scores_arr, kind="stable")[: self.k])
            ids_arr, scores_arr = ids_arr[top], scores_arr[top]

        accepted = 0
        for item_id, score in zip(ids_arr.tolist(), scores_arr.tolist()):
            accepted += int(self.push(item_id, score))
        return accepted

    def items(self) -> list[tuple[int, float]]:
        """Retained pairs, highest score first (ties by ascending id)."""
        ordered = sorted(self._heap, key=lambda e: (-e[0], e[1]))
        return [(item_id, score) for score, item_id in ordered]
