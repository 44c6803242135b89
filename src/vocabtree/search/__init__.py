"""Search backends sharing one train / search contract.

Key components:
- BagOfWords: Flat vocabulary, dense histograms, O(V) per candidate
- InvertedIndex: Flat vocabulary, posting lists, sparse accumulation
- VocabTree: Hierarchical vocabulary, per-node inverted files
"""

from .bag_of_words import BagOfWords
from .base import (
    IndexState,
    SearchBackend,
    available_backends,
    create_backend,
    load_backend,
)
from .inverted_index import InvertedIndex
from .vocab_tree import VocabTree

__all__ = [
    # Contract
    "SearchBackend",
    "IndexState",
    "create_backend",
    "load_backend",
    "available_backends",
    # Backends
    "BagOfWords",
    "InvertedIndex",
    "VocabTree",
]
