"""TF-IDF document vectors.

An image's document vector weights each visual word by

    weight = tf * idf,    idf = ln(N / Nw)

where tf is the raw count of the image's descriptors assigned to the word,
N is the number of indexed images and Nw the number of images containing
the word. Words with Nw = 0 have no defined IDF and get weight 0. Words
carrying zero weight are dropped from sparse vectors since they cannot
change any similarity.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .params import Normalization
from .quantizer import Vocabulary, index_terms


def compute_idf(document_frequencies: np.ndarray, n_documents: int) -> np.ndarray:
    """Inverse document frequency per word.

    Args:
        document_frequencies: Images containing each word, shape (V,)
        n_documents: Total number of indexed images (N)

    Returns:
        IDF weights, shape (V,) float64; 0 where the frequency is 0
    """
    document_frequencies = np.asarray(document_frequencies, dtype=np.float64)
    idf = np.zeros(len(document_frequencies), dtype=np.float64)
    seen = document_frequencies > 0
    if n_documents > 0:
        idf[seen] = np.log(n_documents / document_frequencies[seen])
    return idf


def vector_norm(weights: np.ndarray, normalization: Normalization) -> float:
    """Norm used to scale a vector (1.0 for ``Normalization.NONE``)."""
    if normalization is Normalization.L1:
        return float(np.abs(weights).sum())
    if normalization is Normalization.L2:
        return float(np.sqrt(np.dot(weights, weights)))
    return 1.0


def normalize(weights: np.ndarray, normalization: Normalization) -> np.ndarray:
    """Scale a vector to unit norm. A zero vector stays zero."""
    weights = np.asarray(weights, dtype=np.float64)
    norm = vector_norm(weights, normalization)
    if norm == 0.0:
        return weights.copy()
    return weights / norm


@dataclass(frozen=True)
class DocumentVector:
    """Sparse weighted term vector of one image or query.

    Attributes:
        words: Word ids with non-zero weight, ascending, int64
        weights: Weight per word, float64
    """

    words: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        words = np.asarray(self.words, dtype=np.int64)
        weights = np.asarray(self.weights, dtype=np.float64)
        if words.shape != weights.shape:
            raise ValueError(
                f"words and weights must have the same shape, got {words.shape} and {weights.shape}"
            )
        object.__setattr__(self, "words", words)
        object.__setattr__(self, "weights", weights)

    @classmethod
    def empty(cls) -> DocumentVector:
        return cls(np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64))

    @classmethod
    def from_counts(
        cls,
        words: np.ndarray,
        counts: np.ndarray,
        idf: np.ndarray,
    ) -> DocumentVector:
        """Weight raw term frequencies by IDF, dropping zero-weight words."""
        words = np.asarray(words, dtype=np.int64)
        weights = np.asarray(counts, dtype=np.float64) * idf[words]
        keep = weights != 0
        return cls(words[keep], weights[keep])

    def __len__(self) -> int:
        return len(self.words)

    def norm(self, normalization: Normalization = Normalization.L2) -> float:
        return vector_norm(self.weights, normalization)

    def normalized(self, normalization: Normalization = Normalization.L2) -> DocumentVector:
        return DocumentVector(self.words, normalize(self.weights, normalization))

    def to_dense(self, size: int) -> np.ndarray:
        """Expand to a length-``size`` array."""
        dense = np.zeros(size, dtype=np.float64)
        dense[self.words] = self.weights
        return dense

    def as_dict(self) -> dict[int, float]:
        return dict(zip(self.words.tolist(), self.weights.tolist()))


def build_document_vector(
    descriptors: np.ndarray,
    vocabulary: Vocabulary,
    idf: np.ndarray,
    normalization: Normalization = Normalization.L2,
) -> DocumentVector:
    """Quantize descriptors and build their normalized TF-IDF vector.

    For a vocabulary tree the terms are all nodes on the descriptors' paths,
    and ``idf`` is indexed by node id.

    Args:
        descriptors: Descriptors, shape (N, D); may be empty
        vocabulary: Trained flat vocabulary or tree
        idf: IDF weight per word (or node)
        normalization: Normalization applied to the weighted vector

    Returns:
        DocumentVector (empty when there are no descriptors)
    """
    descriptors = np.asarray(descriptors, dtype=np.float32)
    if len(descriptors) == 0:
        return DocumentVector.empty()

    words, counts = index_terms(descriptors, vocabulary)
    return DocumentVector.from_counts(words, counts, idf).normalized(normalization)
