"""Exception and warning types raised by the retrieval engine.

Fatal errors abort the current ``train`` or ``search`` call and leave the
index in the state it was in before the call. Nothing is retried internally.
"""

from __future__ import annotations


class VocabTreeError(Exception):
    """Base class for all fatal retrieval errors."""


class InvalidParamsError(VocabTreeError, ValueError):
    """A TrainParams / SearchParams field (or query shape) is out of range."""


class InsufficientSamplesError(VocabTreeError, ValueError):
    """Fewer descriptors than requested clusters.

    Attributes:
        n_samples: Number of descriptors available
        n_clusters: Number of clusters requested
    """

    def __init__(self, n_samples: int, n_clusters: int) -> None:
        self.n_samples = n_samples
        self.n_clusters = n_clusters
        super().__init__(
            f"Cannot build {n_clusters} clusters from {n_samples} descriptors"
        )


class IndexNotTrainedError(VocabTreeError, RuntimeError):
    """Operation requires a trained index."""


class IndexAlreadyTrainedError(VocabTreeError, RuntimeError):
    """``train`` was called on an index that is already trained."""


class ConvergenceWarning(UserWarning):
    """k-means stopped at max_iterations without meeting its threshold."""
