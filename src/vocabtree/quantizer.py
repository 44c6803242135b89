"""Map descriptors to visual words.

Flat vocabularies quantize exactly (nearest of V centroids); vocabulary trees
quantize approximately by greedy descent. Both return integer word ids:
``[0, V)`` for flat vocabularies, leaf node ids for trees.
"""

from __future__ import annotations

from typing import Union

import numpy as np

from .vocabulary import FlatVocabulary, VocabularyTree
from .workers import chunked_rows

Vocabulary = Union[FlatVocabulary, VocabularyTree]


def quantize(descriptor: np.ndarray, vocabulary: Vocabulary) -> int:
    """Quantize a single descriptor to its visual word."""
    return vocabulary.quantize(descriptor)


def quantize_all(
    descriptors: np.ndarray,
    vocabulary: Vocabulary,
    n_workers: int | None = 1,
) -> np.ndarray:
    """Quantize every descriptor.

    Args:
        descriptors: Descriptors, shape (N, D)
        vocabulary: Trained flat vocabulary or tree
        n_workers: Worker threads (row chunks are quantized in parallel)

    Returns:
        Visual word ids, shape (N,) int64
    """
    descriptors = np.asarray(descriptors, dtype=np.float32)
    if len(descriptors) == 0:
        return np.empty(0, dtype=np.int64)
    return chunked_rows(vocabulary.quantize_batch, descriptors, n_workers)


def _count(ids: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    words, counts = np.unique(ids, return_counts=True)
    return words.astype(np.int64), counts.astype(np.int64)


def word_counts(
    descriptors: np.ndarray,
    vocabulary: Vocabulary,
    n_workers: int | None = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """Raw term frequencies as parallel arrays.

    Returns:
        Tuple of (word ids ascending, counts); counts sum to N
    """
    return _count(quantize_all(descriptors, vocabulary, n_workers))


def path_counts(
    descriptors: np.ndarray,
    tree: VocabularyTree,
    n_workers: int | None = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """Per-node visit counts along every descriptor's root-to-leaf path.

    Each descriptor adds one to every node it passes through, so every
    interior node's count equals the sum over its children.

    Returns:
        Tuple of (node ids ascending, counts)
    """
    descriptors = np.asarray(descriptors, dtype=np.float32)
    if len(descriptors) == 0:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)
    paths = chunked_rows(tree.paths_batch, descriptors, n_workers)
    return _count(paths[paths >= 0])


def index_terms(
    descriptors: np.ndarray,
    vocabulary: Vocabulary,
    n_workers: int | None = 1,
) -> tuple[np.ndarray, np.ndarray]:
    """Terms an index stores for one descriptor set.

    Flat vocabularies index visual words; trees index every node on the
    quantized paths.
    """
    if isinstance(vocabulary, VocabularyTree):
        return path_counts(descriptors, vocabulary, n_workers)
    return word_counts(descriptors, vocabulary, n_workers)


def term_frequencies(descriptors: np.ndarray, vocabulary: Vocabulary) -> dict[int, int]:
    """Count descriptors per visual word (leaf, for trees)."""
    words, counts = word_counts(descriptors, vocabulary)
    return dict(zip(words.tolist(), counts.tolist()))


def path_frequencies(descriptors: np.ndarray, tree: VocabularyTree) -> dict[int, int]:
    """Count descriptors passing through each tree node."""
    nodes, counts = path_counts(descriptors, tree)
    return dict(zip(nodes.tolist(), counts.tolist()))
