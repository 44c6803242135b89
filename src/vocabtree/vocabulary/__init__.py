"""Visual vocabularies built by clustering descriptors.

Key components:
- kmeans: Flat Lloyd's k-means shared by both vocabularies
- FlatVocabulary: V centroids, exact nearest-word quantization
- VocabularyTree: Hierarchical k-means tree, greedy-descent quantization
"""

from .flat import FlatVocabulary
from .kmeans import KMeansResult, assign, kmeans
from .tree import TreeNode, VocabularyTree

__all__ = [
    # Clustering
    "kmeans",
    "assign",
    "KMeansResult",
    # Vocabularies
    "FlatVocabulary",
    "VocabularyTree",
    "TreeNode",
]
