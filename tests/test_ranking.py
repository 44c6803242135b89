"""Tests for result ranking and merging."""

import numpy as np
import pytest

from vocabtree import MatchResults, merge_results, rank
from vocabtree.ranking import rank_arrays


class TestRank:
    """Test suite for rank() and rank_arrays()."""

    def test_descending_scores(self):
        """Test that results are ordered by descending score."""
        results = rank({4: 0.1, 7: 0.9, 2: 0.5}, 10)

        assert list(results) == [(7, 0.9), (2, 0.5), (4, 0.1)]

    def test_ties_by_ascending_id(self):
        """Test that equal scores are ordered by ascending image id."""
        results = rank({9: 0.5, 3: 0.5, 5: 0.7, 1: 0.5}, 10)

        assert results.image_ids.tolist() == [5, 1, 3, 9]

    def test_result_count_truncates(self):
        """Test that only the top K results are kept."""
        scores = {i: float(i % 7) for i in range(50)}

        results = rank(scores, 3)

        assert len(results) == 3
        assert results.scores.tolist() == [6.0, 6.0, 6.0]
        assert results.image_ids.tolist() == [6, 13, 20]

    def test_negative_scores(self):
        """Test ranking of negated distances."""
        results = rank({0: -2.0, 1: -0.5, 2: -1.0}, 2)

        assert results.image_ids.tolist() == [1, 2]

    def test_empty(self):
        """Test that no scores give empty results."""
        assert len(rank({}, 5)) == 0

    def test_arrays_match_dict(self):
        """Test that array ranking agrees with dict ranking."""
        rng = np.random.default_rng(3)
        ids = rng.permutation(100)
        scores = np.round(rng.random(100), 1)

        by_arrays = rank_arrays(ids, scores, 20)
        by_dict = rank(dict(zip(ids.tolist(), scores.tolist())), 20)

        assert list(by_arrays) == list(by_dict)


class TestMatchResults:
    """Test suite for MatchResults."""

    def test_iteration_and_indexing(self):
        """Test iterating and indexing result pairs."""
        results = MatchResults(np.array([3, 1]), np.array([0.9, 0.2]))

        assert list(results) == [(3, 0.9), (1, 0.2)]
        assert results[1] == (1, 0.2)
        assert results.as_dict() == {3: 0.9, 1: 0.2}

    def test_top(self):
        """Test truncating results."""
        results = MatchResults(np.array([3, 1, 2]), np.array([0.9, 0.2, 0.1]))

        assert results.top(2).image_ids.tolist() == [3, 1]

    def test_empty(self):
        """Test the empty result set."""
        results = MatchResults.empty()

        assert len(results) == 0
        assert list(results) == []

    def test_mismatched_lengths(self):
        """Test that ids and scores must align."""
        with pytest.raises(ValueError):
            MatchResults(np.array([1, 2]), np.array([0.5]))


class TestMergeResults:
    """Test suite for merge_results()."""

    def test_keeps_best_score_per_image(self):
        """Test that merging keeps each image's maximum score."""
        first = MatchResults(np.array([1, 2]), np.array([0.9, 0.4]))
        second = MatchResults(np.array([2, 3]), np.array([0.8, 0.1]))

        merged = merge_results([first, second], 10)

        assert list(merged) == [(1, 0.9), (2, 0.8), (3, 0.1)]

    def test_result_count(self):
        """Test that merged results are truncated."""
        first = MatchResults(np.array([1, 2]), np.array([0.9, 0.4]))
        second = MatchResults(np.array([3]), np.array([0.5]))

        assert merge_results([first, second], 2).image_ids.tolist() == [1, 3]
