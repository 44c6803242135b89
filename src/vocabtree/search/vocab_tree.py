"""Vocabulary Tree backend (Nister & Stewenius 2006).

Descriptors are quantized by greedy descent through a hierarchical k-means
tree. Every node on a descriptor's path, not only the leaf, gets an entry
in its inverted file, and every node carries its own weight

    idf_i = ln(N / N_i)

where N_i counts the images with at least one descriptor passing through
node i. Queries are scored over the union of their path nodes, so images
that only agree at coarse levels still collect some similarity. The root
holds every image (idf 0) and so never contributes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from ..dataset import Dataset
from ..document import DocumentVector, build_document_vector, compute_idf
from ..params import Normalization, SearchParams, VocabTreeTrainParams
from ..ranking import MatchResults, rank_arrays
from ..store import PostingListStore
from ..vocabulary import TreeNode, VocabularyTree
from .base import (
    IndexState,
    collect_images,
    count_terms,
    read_index,
    register_backend,
    require_trained,
    require_untrained,
    score_sparse,
    search_parallel,
    training_samples,
    validate_query,
    write_index,
)

logger = logging.getLogger(__name__)


@register_backend("vocab_tree")
class VocabTree:
    """Hierarchical vocabulary with per-node inverted files.

    Example:
        >>> index = VocabTree()
        >>> index.train(dataset, VocabTreeTrainParams(branching_factor=10, max_depth=4))
        >>> results = index.search(query_descriptors, SearchParams(result_count=5))
    """

    def __init__(self) -> None:
        self._state = IndexState.UNTRAINED
        self._tree: VocabularyTree | None = None
        self._store: PostingListStore | None = None

    @property
    def is_trained(self) -> bool:
        return self._state is IndexState.TRAINED

    @property
    def tree(self) -> VocabularyTree | None:
        return self._tree

    @property
    def vocabulary(self) -> VocabularyTree | None:
        return self._tree

    @property
    def idf(self) -> np.ndarray:
        """IDF weight per node id."""
        require_trained(self)
        return self._store.idf

    @property
    def image_ids(self) -> np.ndarray:
        require_trained(self)
        return self._store.image_ids

    @property
    def leaves(self) -> np.ndarray:
        require_trained(self)
        return self._tree.leaves

    def __len__(self) -> int:
        return len(self._store) if self._store is not None else 0

    def node(self, node_id: int) -> TreeNode:
        require_trained(self)
        return self._tree.node(node_id)

    def node_idf(self, node_id: int) -> float:
        require_trained(self)
        return float(self._store.idf[node_id])

    def inverted_file(self, node_id: int) -> dict[int, int]:
        """Images whose descriptors pass through a node, as {image id: tf}."""
        require_trained(self)
        image_ids, tfs = self._store.postings(node_id)
        return dict(zip(image_ids.tolist(), tfs.tolist()))

    def train(self, dataset: Dataset, params: VocabTreeTrainParams | None = None) -> None:
        """Build the tree and the per-node inverted files.

        Raises:
            InvalidParamsError: If params or the dataset are malformed
            InsufficientSamplesError: If there are fewer descriptors than B
            IndexAlreadyTrainedError: If this index was already trained
        """
        params = params or VocabTreeTrainParams()
        params.validate()
        require_untrained(self)

        images = collect_images(dataset)
        samples = training_samples(images, params.max_samples, params.kmeans.random_state)
        tree = VocabularyTree.build(
            samples,
            branching_factor=params.branching_factor,
            max_depth=params.max_depth,
            min_cluster_size=params.effective_min_cluster_size,
            kmeans_params=params.kmeans,
        )

        # Phase 1: path visit counts per image
        store = PostingListStore(tree.num_nodes)
        for image, (nodes, counts) in zip(images, count_terms(images, tree, params.kmeans.n_workers)):
            store.add(image.image_id, nodes, counts)

        # Phase 2: node IDF over the complete inverted files
        store.freeze(compute_idf(store.document_frequencies(), len(store)))

        self._commit(tree, store)
        logger.info(
            f"Indexed {len(store)} images into {tree.num_nodes} tree nodes "
            f"({store.num_postings} inverted file entries)"
        )

    def _commit(self, tree: VocabularyTree, store: PostingListStore) -> None:
        self._tree = tree
        self._store = store
        self._state = IndexState.TRAINED

    def document(self, image_id: int, normalization: Normalization = Normalization.L2) -> DocumentVector:
        """Node-weighted vector of an indexed image, rebuilt from inverted files."""
        require_trained(self)
        return self._store.document(image_id).normalized(normalization)

    def search(self, descriptors: np.ndarray, params: SearchParams | None = None) -> MatchResults:
        """Rank indexed images by hierarchical similarity to the query.

        Raises:
            IndexNotTrainedError: If the index hasn't been trained
            InvalidParamsError: If params or the query shape are invalid
        """
        params = params or SearchParams()
        params.validate()
        require_trained(self)

        descriptors = validate_query(descriptors, self._tree.dimension)
        if len(descriptors) == 0:
            return MatchResults.empty()

        query = build_document_vector(descriptors, self._tree, self._store.idf, Normalization.NONE)
        image_ids, scores = score_sparse(query, self._store, params)
        return rank_arrays(image_ids, scores, params.result_count)

    def search_many(
        self,
        queries: Sequence[np.ndarray],
        params: SearchParams | None = None,
    ) -> list[MatchResults]:
        """Search several queries concurrently (results in query order)."""
        params = params or SearchParams()
        params.validate()
        require_trained(self)
        return search_parallel(self.search, queries, params)

    def save(self, path: str | Path) -> None:
        """Save the trained index to a .npz file."""
        require_trained(self)
        write_index(
            path,
            self.kind,
            {**self._tree.to_arrays(), "idf": self._store.idf, **self._store.to_arrays()},
        )

    @classmethod
    def load(cls, path: str | Path) -> VocabTree:
        """Load a trained index saved with :meth:`save`."""
        _, data = read_index(path, cls.kind)
        index = cls()
        index._commit(
            VocabularyTree.from_arrays(data),
            PostingListStore.from_arrays(data, data["idf"]),
        )
        return index
