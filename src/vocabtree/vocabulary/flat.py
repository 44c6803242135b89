"""Flat visual vocabulary: V k-means centroids, exact quantization.

Each descriptor maps to the nearest of the V centroids by Euclidean
distance (linear scan, ties to the lowest word id).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..errors import InvalidParamsError
from ..io import npz_path
from ..params import KMeansParams
from .kmeans import assign, kmeans

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlatVocabulary:
    """Bag of Visual Words vocabulary.

    Attributes:
        words: Cluster centers (visual words), shape (n_words, D) float32
    """

    words: np.ndarray

    def __post_init__(self) -> None:
        words = np.asarray(self.words, dtype=np.float32)
        if words.ndim != 2 or len(words) == 0:
            raise InvalidParamsError(f"Vocabulary words must be a non-empty 2D array, got {words.shape}")
        words.setflags(write=False)
        object.__setattr__(self, "words", words)

    @property
    def size(self) -> int:
        """Number of visual words."""
        return len(self.words)

    @property
    def dimension(self) -> int:
        """Descriptor dimensionality."""
        return self.words.shape[1]

    def quantize(self, descriptor: np.ndarray) -> int:
        """Map one descriptor to its nearest visual word.

        Args:
            descriptor: Descriptor, shape (D,)

        Returns:
            Visual word id in [0, size)
        """
        descriptor = np.asarray(descriptor, dtype=np.float32).reshape(1, -1)
        return int(self.quantize_batch(descriptor)[0])

    def quantize_batch(self, descriptors: np.ndarray, n_workers: int | None = 1) -> np.ndarray:
        """Map descriptors to visual words.

        Args:
            descriptors: Descriptors, shape (N, D)
            n_workers: Worker threads for the distance computation

        Returns:
            Visual word ids, shape (N,) int64
        """
        descriptors = np.asarray(descriptors, dtype=np.float32)
        if len(descriptors) == 0:
            return np.empty(0, dtype=np.int64)
        labels, _ = assign(descriptors, self.words, n_workers)
        return labels

    @classmethod
    def train(
        cls,
        samples: np.ndarray,
        vocabulary_size: int,
        kmeans_params: KMeansParams | None = None,
    ) -> FlatVocabulary:
        """Cluster descriptors into a vocabulary.

        Args:
            samples: Training descriptors, shape (N, D)
            vocabulary_size: Number of visual words
            kmeans_params: k-means settings

        Returns:
            Trained vocabulary

        Raises:
            InsufficientSamplesError: If N < vocabulary_size
        """
        result = kmeans(samples, vocabulary_size, kmeans_params)
        logger.info(
            f"Built flat vocabulary: {vocabulary_size} words from {len(samples)} "
            f"descriptors in {result.n_iterations} iterations "
            f"(inertia {result.inertia:.3e})"
        )
        return cls(words=result.centroids)

    def save(self, path: str | Path) -> None:
        """Save vocabulary to .npz file (the suffix is added if missing)."""
        path = npz_path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(path, words=self.words)

    @classmethod
    def load(cls, path: str | Path) -> FlatVocabulary:
        """Load vocabulary from .npz file."""
        with np.load(npz_path(path)) as data:
            return cls(words=data["words"])
