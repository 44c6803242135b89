"""Inverted Index backend: flat vocabulary, posting lists.

The vocabulary is built exactly as for Bag of Words. Instead of dense
histograms each word keeps a posting list of the images containing it, and
a search only walks the posting lists of the query's words. Search cost
grows with the number of postings touched, not with the dataset or
vocabulary size.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from ..dataset import Dataset
from ..document import DocumentVector, build_document_vector, compute_idf
from ..params import FlatTrainParams, Normalization, SearchParams
from ..ranking import MatchResults, rank_arrays
from ..store import PostingListStore
from ..vocabulary import FlatVocabulary
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


@register_backend("inverted_index")
class InvertedIndex:
    """Sparse posting-list matcher over a flat k-means vocabulary."""

    def __init__(self) -> None:
        self._state = IndexState.UNTRAINED
        self._vocabulary: FlatVocabulary | None = None
        self._store: PostingListStore | None = None

    @property
    def is_trained(self) -> bool:
        return self._state is IndexState.TRAINED

    @property
    def vocabulary(self) -> FlatVocabulary | None:
        return self._vocabulary

    @property
    def idf(self) -> np.ndarray:
        require_trained(self)
        return self._store.idf

    @property
    def image_ids(self) -> np.ndarray:
        require_trained(self)
        return self._store.image_ids

    def __len__(self) -> int:
        return len(self._store) if self._store is not None else 0

    def postings(self, word: int) -> dict[int, int]:
        """Posting list of one word as {image id: term frequency}."""
        require_trained(self)
        image_ids, tfs = self._store.postings(word)
        return dict(zip(image_ids.tolist(), tfs.tolist()))

    def document_frequencies(self) -> np.ndarray:
        require_trained(self)
        return self._store.document_frequencies()

    def train(self, dataset: Dataset, params: FlatTrainParams | None = None) -> None:
        """Build the vocabulary and posting lists for every image of ``dataset``.

        Raises:
            InvalidParamsError: If params or the dataset are malformed
            InsufficientSamplesError: If there are fewer descriptors than words
            IndexAlreadyTrainedError: If this index was already trained
        """
        params = params or FlatTrainParams()
        params.validate()
        require_untrained(self)

        images = collect_images(dataset)
        samples = training_samples(images, params.max_samples, params.kmeans.random_state)
        vocabulary = FlatVocabulary.train(samples, params.vocabulary_size, params.kmeans)

        # Phase 1: raw term frequencies
        store = PostingListStore(vocabulary.size)
        for image, (words, counts) in zip(images, count_terms(images, vocabulary, params.kmeans.n_workers)):
            store.add(image.image_id, words, counts)

        # Phase 2: IDF over the complete posting lists
        store.freeze(compute_idf(store.document_frequencies(), len(store)))

        self._commit(vocabulary, store)
        logger.info(
            f"Indexed {len(store)} images: {store.num_postings} postings over "
            f"{vocabulary.size} words"
        )

    def _commit(self, vocabulary: FlatVocabulary, store: PostingListStore) -> None:
        self._vocabulary = vocabulary
        self._store = store
        self._state = IndexState.TRAINED

    def document(self, image_id: int, normalization: Normalization = Normalization.L2) -> DocumentVector:
        """TF-IDF vector of an indexed image, rebuilt from the postings."""
        require_trained(self)
        return self._store.document(image_id).normalized(normalization)

    def search(self, descriptors: np.ndarray, params: SearchParams | None = None) -> MatchResults:
        """Rank indexed images by similarity to the query descriptors.

        Raises:
            IndexNotTrainedError: If the index hasn't been trained
            InvalidParamsError: If params or the query shape are invalid
        """
        params = params or SearchParams()
        params.validate()
        require_trained(self)

        descriptors = validate_query(descriptors, self._vocabulary.dimension)
        if len(descriptors) == 0:
            return MatchResults.empty()

        query = build_document_vector(descriptors, self._vocabulary, self._store.idf, Normalization.NONE)
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
            {"vocabulary_words": self._vocabulary.words, "idf": self._store.idf, **self._store.to_arrays()},
        )

    @classmethod
    def load(cls, path: str | Path) -> InvertedIndex:
        """Load a trained index saved with :meth:`save`."""
        _, data = read_index(path, cls.kind)
        index = cls()
        index._commit(
            FlatVocabulary(words=data["vocabulary_words"]),
            PostingListStore.from_arrays(data, data["idf"]),
        )
        return index
