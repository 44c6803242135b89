"""Flat k-means clustering of descriptors into visual words.

Lloyd's algorithm with k-means++ or random seeding:
1. Assign every sample to its nearest centroid (parallel over row chunks)
2. Recompute each centroid as the mean of its samples (sequential reduction)
3. Stop once no centroid moves farther than the convergence threshold, or
   after max_iterations (emitting ConvergenceWarning)

Each iteration is a barrier: the reduction finishes before the next
assignment pass begins.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
from scipy import sparse
from scipy.spatial.distance import cdist
from sklearn.cluster import kmeans_plusplus

from ..errors import ConvergenceWarning, InsufficientSamplesError, InvalidParamsError
from ..params import KMeansParams, SeedingMethod
from ..workers import parallel_map, row_chunks

logger = logging.getLogger(__name__)


@dataclass
class KMeansResult:
    """Output of a k-means run.

    Attributes:
        centroids: Cluster centers, shape (k, D) float32
        labels: Cluster index per sample, shape (N,)
        n_iterations: Lloyd iterations performed
        converged: Whether the convergence threshold was met
        inertia: Sum of squared distances to assigned centroids
    """

    centroids: np.ndarray
    labels: np.ndarray
    n_iterations: int
    converged: bool
    inertia: float


def assign(
    samples: np.ndarray,
    centroids: np.ndarray,
    n_workers: int | None = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """Assign each sample to its nearest centroid (Euclidean).

    Ties resolve to the lowest centroid index.

    Args:
        samples: Samples, shape (N, D)
        centroids: Centroids, shape (k, D)
        n_workers: Worker threads for the chunked distance computation

    Returns:
        Tuple of (labels (N,) int64, squared distances (N,) float64)
    """
    if len(samples) == 0:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64)

    def _assign_chunk(rows: slice) -> tuple[np.ndarray, np.ndarray]:
        distances = cdist(samples[rows], centroids, "sqeuclidean")
        labels = np.argmin(distances, axis=1)
        return labels, distances[np.arange(len(labels)), labels]

    parts = parallel_map(_assign_chunk, row_chunks(len(samples)), n_workers)
    labels = np.concatenate([p[0] for p in parts]).astype(np.int64)
    sq_distances = np.concatenate([p[1] for p in parts])
    return labels, sq_distances


def _seed(samples: np.ndarray, n_clusters: int, params: KMeansParams) -> np.ndarray:
    if params.seeding is SeedingMethod.KMEANS_PP:
        centers, _ = kmeans_plusplus(
            samples, n_clusters, random_state=params.random_state
        )
        return centers.astype(np.float64)

    rng = np.random.default_rng(params.random_state)
    rows = rng.choice(len(samples), size=n_clusters, replace=False)
    return samples[np.sort(rows)].astype(np.float64)


def _recompute(
    samples: np.ndarray,
    labels: np.ndarray,
    sq_distances: np.ndarray,
    previous: np.ndarray,
) -> np.ndarray:
    """Compute cluster means; empty clusters take the worst-fit samples."""
    n_clusters = len(previous)
    membership = sparse.csr_matrix(
        (np.ones(len(labels)), (labels, np.arange(len(labels)))),
        shape=(n_clusters, len(labels)),
    )
    sums = np.asarray(membership @ samples)
    counts = np.bincount(labels, minlength=n_clusters)

    centroids = previous.copy()
    filled = counts > 0
    centroids[filled] = sums[filled] / counts[filled, None]

    empty = np.flatnonzero(~filled)
    if len(empty) > 0:
        logger.debug(f"Re-seeding {len(empty)} empty clusters")
        farthest = np.argsort(-sq_distances, kind="stable")[: len(empty)]
        centroids[empty] = samples[farthest]
    return centroids


def kmeans(
    samples: np.ndarray,
    n_clusters: int,
    params: KMeansParams | None = None,
) -> KMeansResult:
    """Cluster samples into ``n_clusters`` groups.

    Args:
        samples: Samples, shape (N, D)
        n_clusters: Number of clusters (k)
        params: k-means settings

    Returns:
        KMeansResult with float32 centroids

    Raises:
        InvalidParamsError: If n_clusters <= 0 or samples are not 2D
        InsufficientSamplesError: If N < n_clusters
    """
    params = params or KMeansParams()
    params.validate()

    if n_clusters <= 0:
        raise InvalidParamsError(f"n_clusters must be > 0, got {n_clusters}")

    samples = np.asarray(samples)
    if samples.ndim != 2:
        raise InvalidParamsError(f"Samples must be 2D, got shape {samples.shape}")
    if len(samples) < n_clusters:
        raise InsufficientSamplesError(len(samples), n_clusters)

    samples = samples.astype(np.float64, copy=False)

    # Exactly k samples: each sample is its own cluster
    if len(samples) == n_clusters:
        return KMeansResult(
            centroids=samples.astype(np.float32),
            labels=np.arange(n_clusters, dtype=np.int64),
            n_iterations=0,
            converged=True,
            inertia=0.0,
        )

    centroids = _seed(samples, n_clusters, params)
    converged = False
    iteration = 0

    for iteration in range(1, params.max_iterations + 1):
        labels, sq_distances = assign(samples, centroids, params.n_workers)
        updated = _recompute(samples, labels, sq_distances, centroids)

        shift = float(np.max(np.linalg.norm(updated - centroids, axis=1)))
        centroids = updated
        logger.debug(f"k-means iteration {iteration}: max centroid shift {shift:.6g}")

        if shift <= params.convergence_threshold:
            converged = True
            break

    if not converged:
        warnings.warn(
            f"k-means with k={n_clusters} did not converge within "
            f"{params.max_iterations} iterations",
            ConvergenceWarning,
            stacklevel=2,
        )

    centroids = centroids.astype(np.float32)
    labels, sq_distances = assign(samples, centroids, params.n_workers)
    return KMeansResult(
        centroids=centroids,
        labels=labels,
        n_iterations=iteration,
        converged=converged,
        inertia=float(np.sum(sq_distances)),
    )
