"""Tests for flat k-means clustering."""

import warnings

import numpy as np
import pytest

from vocabtree import (
    ConvergenceWarning,
    InsufficientSamplesError,
    InvalidParamsError,
    KMeansParams,
    SeedingMethod,
)
from vocabtree.vocabulary import assign, kmeans

from conftest import BLOB_CENTERS


def _sorted_rows(array: np.ndarray) -> np.ndarray:
    return array[np.lexsort(array.T[::-1])]


class TestKMeans:
    """Test suite for kmeans()."""

    def test_recovers_separated_blobs(self, blob_samples: np.ndarray):
        """Test that centroids land on the blob centers."""
        result = kmeans(blob_samples, 4)

        assert result.converged
        assert result.centroids.shape == (4, 2)
        assert result.centroids.dtype == np.float32
        np.testing.assert_allclose(_sorted_rows(result.centroids), _sorted_rows(BLOB_CENTERS), atol=0.5)

    def test_labels_match_nearest_centroid(self, blob_samples: np.ndarray):
        """Test that returned labels are the final nearest-centroid assignment."""
        result = kmeans(blob_samples, 4)
        labels, _ = assign(blob_samples, result.centroids)

        np.testing.assert_array_equal(result.labels, labels)
        assert np.bincount(result.labels, minlength=4).tolist() == [25, 25, 25, 25]

    def test_random_seeding(self, blob_samples: np.ndarray):
        """Test clustering with random seeding."""
        params = KMeansParams(seeding=SeedingMethod.RANDOM, max_iterations=50)
        result = kmeans(blob_samples, 2, params)

        assert result.centroids.shape == (2, 2)
        assert len(np.unique(result.labels)) == 2

    def test_deterministic_for_fixed_seed(self, blob_samples: np.ndarray):
        """Test that the same random_state gives the same clustering."""
        first = kmeans(blob_samples, 3, KMeansParams(random_state=5))
        second = kmeans(blob_samples, 3, KMeansParams(random_state=5))

        np.testing.assert_array_equal(first.centroids, second.centroids)
        np.testing.assert_array_equal(first.labels, second.labels)

    def test_exactly_k_samples(self):
        """Test that k samples become k singleton clusters."""
        samples = np.array([[0.0, 1.0], [5.0, 5.0], [9.0, 2.0]], dtype=np.float32)
        result = kmeans(samples, 3)

        np.testing.assert_array_equal(result.centroids, samples)
        np.testing.assert_array_equal(result.labels, [0, 1, 2])
        assert result.converged
        assert result.inertia == 0.0

    def test_insufficient_samples(self):
        """Test that fewer samples than clusters fails."""
        samples = np.zeros((3, 2), dtype=np.float32)

        with pytest.raises(InsufficientSamplesError, match="Cannot build 4 clusters from 3"):
            kmeans(samples, 4)

    def test_invalid_cluster_count(self, blob_samples: np.ndarray):
        """Test that a non-positive cluster count fails."""
        with pytest.raises(InvalidParamsError):
            kmeans(blob_samples, 0)

    def test_invalid_shape(self):
        """Test that 1D samples are rejected."""
        with pytest.raises(InvalidParamsError, match="2D"):
            kmeans(np.zeros(10), 2)

    def test_invalid_params_checked_first(self, blob_samples: np.ndarray):
        """Test that params are validated before clustering."""
        with pytest.raises(InvalidParamsError, match="max_iterations"):
            kmeans(blob_samples, 4, KMeansParams(max_iterations=0))

    def test_convergence_warning(self, blob_samples: np.ndarray):
        """Test that hitting max_iterations warns but still returns centroids."""
        params = KMeansParams(max_iterations=1, convergence_threshold=0.0)

        with pytest.warns(ConvergenceWarning):
            result = kmeans(blob_samples, 4, params)

        assert not result.converged
        assert result.n_iterations == 1
        assert result.centroids.shape == (4, 2)

    def test_no_warning_when_converged(self, blob_samples: np.ndarray):
        """Test that a converged run emits no ConvergenceWarning."""
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            kmeans(blob_samples, 4, KMeansParams(max_iterations=100))

    def test_parallel_matches_sequential(self, rng: np.random.Generator):
        """Test that the worker pool doesn't change the result."""
        samples = rng.normal(size=(9000, 4)).astype(np.float32)

        sequential = kmeans(samples, 8, KMeansParams(n_workers=1, max_iterations=5))
        parallel = kmeans(samples, 8, KMeansParams(n_workers=4, max_iterations=5))

        np.testing.assert_array_equal(sequential.labels, parallel.labels)
        np.testing.assert_allclose(sequential.centroids, parallel.centroids)


class TestAssign:
    """Test suite for nearest-centroid assignment."""

    def test_nearest_centroid(self):
        """Test assignment against a brute-force argmin."""
        samples = np.array([[0.1, 0.0], [4.9, 5.0], [10.0, 0.2]], dtype=np.float32)
        centroids = np.array([[10.0, 0.0], [0.0, 0.0], [5.0, 5.0]], dtype=np.float32)

        labels, distances = assign(samples, centroids)

        np.testing.assert_array_equal(labels, [1, 2, 0])
        np.testing.assert_allclose(distances, [0.01, 0.01, 0.04], atol=1e-5)

    def test_ties_go_to_lowest_index(self):
        """Test that equidistant centroids resolve to the lowest index."""
        samples = np.array([[0.0, 0.0], [5.0, 0.0]], dtype=np.float32)
        centroids = np.array([[-1.0, 0.0], [1.0, 0.0], [5.0, 0.0], [5.0, 0.0]], dtype=np.float32)

        labels, _ = assign(samples, centroids)

        np.testing.assert_array_equal(labels, [0, 2])

    def test_empty_samples(self):
        """Test that no samples give empty labels."""
        labels, distances = assign(np.empty((0, 2)), np.zeros((3, 2)))

        assert labels.shape == (0,)
        assert distances.shape == (0,)
