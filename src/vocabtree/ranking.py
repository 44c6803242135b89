"""Ranked search results.

Results are ordered by descending score; equal scores are ordered by
ascending image id so that rankings are deterministic.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Iterable, Iterator

import numpy as np


@dataclass(frozen=True)
class MatchResults:
    """Ranked (image id, score) pairs produced by one search.

    Attributes:
        image_ids: Matching image ids, shape (K,) int64
        scores: Similarity scores, shape (K,) float64, non-increasing
    """

    image_ids: np.ndarray
    scores: np.ndarray

    def __post_init__(self) -> None:
        image_ids = np.asarray(self.image_ids, dtype=np.int64)
        scores = np.asarray(self.scores, dtype=np.float64)
        if image_ids.shape != scores.shape:
            raise ValueError(
                f"image_ids and scores must have the same shape, got {image_ids.shape} and {scores.shape}"
            )
        object.__setattr__(self, "image_ids", image_ids)
        object.__setattr__(self, "scores", scores)

    @classmethod
    def empty(cls) -> MatchResults:
        return cls(np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64))

    def __len__(self) -> int:
        return len(self.image_ids)

    def __iter__(self) -> Iterator[tuple[int, float]]:
        return zip(self.image_ids.tolist(), self.scores.tolist())

    def __getitem__(self, index: int) -> tuple[int, float]:
        return int(self.image_ids[index]), float(self.scores[index])

    def top(self, k: int) -> MatchResults:
        """First ``k`` results."""
        return MatchResults(self.image_ids[:k], self.scores[:k])

    def as_dict(self) -> dict[int, float]:
        return dict(self)


def rank(scores: dict[int, float], result_count: int) -> MatchResults:
    """Select the ``result_count`` best scores.

    Args:
        scores: Score per image id
        result_count: Maximum number of results (K)

    Returns:
        MatchResults sorted by descending score, ties by ascending id
    """
    if not scores or result_count <= 0:
        return MatchResults.empty()
    best = heapq.nsmallest(result_count, ((-score, image_id) for image_id, score in scores.items()))
    return MatchResults(
        image_ids=[image_id for _, image_id in best],
        scores=[-negated for negated, _ in best],
    )


def rank_arrays(image_ids: np.ndarray, scores: np.ndarray, result_count: int) -> MatchResults:
    """Like :func:`rank`, for parallel id and score arrays."""
    if len(image_ids) == 0 or result_count <= 0:
        return MatchResults.empty()
    best = heapq.nsmallest(result_count, zip((-scores).tolist(), image_ids.tolist()))
    return MatchResults(
        image_ids=[image_id for _, image_id in best],
        scores=[-negated for negated, _ in best],
    )


def merge_results(results: Iterable[MatchResults], result_count: int) -> MatchResults:
    """Combine several rankings, keeping each image's best score.

    Used to fuse the results of several queries of the same scene.
    """
    merged: dict[int, float] = {}
    for result in results:
        for image_id, score in result:
            if image_id not in merged or score > merged[image_id]:
                merged[image_id] = score
    return rank(merged, result_count)
