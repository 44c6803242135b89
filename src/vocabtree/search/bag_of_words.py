"""Bag of Words backend: flat vocabulary, dense histograms.

Every image is stored as a length-V term-frequency histogram. A search
compares the query's dense TF-IDF vector against each candidate's row, so a
candidate costs O(V). That is only reasonable for small vocabularies; use
the InvertedIndex backend for large ones.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from ..dataset import Dataset
from ..document import DocumentVector, build_document_vector, compute_idf, normalize
from ..params import FlatTrainParams, Normalization, SearchParams, SimilarityMetric
from ..ranking import MatchResults, rank_arrays
from ..store import DenseHistogramStore
from ..vocabulary import FlatVocabulary
from .base import (
    IndexState,
    collect_images,
    count_terms,
    read_index,
    register_backend,
    require_trained,
    require_untrained,
    search_parallel,
    select_candidates,
    training_samples,
    validate_query,
    write_index,
)

logger = logging.getLogger(__name__)


def dense_scores(documents: np.ndarray, query: np.ndarray, metric: SimilarityMetric) -> np.ndarray:
    """Score each row of ``documents`` against ``query``.

    Args:
        documents: Normalized document vectors, shape (M, V)
        query: Normalized query vector, shape (V,)
        metric: Similarity metric

    Returns:
        Scores, shape (M,); distances are negated
    """
    if metric is SimilarityMetric.DOT:
        return documents @ query
    if metric is SimilarityMetric.INTERSECTION:
        return np.minimum(documents, query).sum(axis=1)
    if metric is SimilarityMetric.L1:
        return -np.abs(documents - query).sum(axis=1)
    return -np.sqrt(np.square(documents - query).sum(axis=1))


@register_backend("bow")
class BagOfWords:
    """Dense histogram matcher over a flat k-means vocabulary.

    Example:
        >>> index = BagOfWords()
        >>> index.train(dataset, BagOfWordsTrainParams(vocabulary_size=256))
        >>> for image_id, score in index.search(query_descriptors):
        ...     print(image_id, score)
    """

    def __init__(self) -> None:
        self._state = IndexState.UNTRAINED
        self._vocabulary: FlatVocabulary | None = None
        self._store: DenseHistogramStore | None = None

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

    @property
    def histograms(self) -> np.ndarray:
        """Raw term frequencies, shape (n_images, V), rows ordered by image id."""
        require_trained(self)
        return self._store.histograms

    def __len__(self) -> int:
        return len(self._store) if self._store is not None else 0

    def train(self, dataset: Dataset, params: FlatTrainParams | None = None) -> None:
        """Build the vocabulary and index every image of ``dataset``.

        Args:
            dataset: Images with descriptor sets
            params: Vocabulary and k-means settings

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

        store = DenseHistogramStore(vocabulary.size)
        for image, (words, counts) in zip(images, count_terms(images, vocabulary, params.kmeans.n_workers)):
            store.add(image.image_id, words, counts)

        store.freeze(compute_idf(store.document_frequencies(), len(store)))

        self._commit(vocabulary, store)
        logger.info(f"Indexed {len(store)} images into {vocabulary.size}-word histograms")

    def _commit(self, vocabulary: FlatVocabulary, store: DenseHistogramStore) -> None:
        self._vocabulary = vocabulary
        self._store = store
        self._state = IndexState.TRAINED

    def document(self, image_id: int, normalization: Normalization = Normalization.L2) -> DocumentVector:
        """TF-IDF vector of an indexed image."""
        require_trained(self)
        return self._store.document(image_id).normalized(normalization)

    def search(self, descriptors: np.ndarray, params: SearchParams | None = None) -> MatchResults:
        """Rank indexed images by similarity to the query descriptors.

        Args:
            descriptors: Query descriptors, shape (N, D); may be empty
            params: Result count, normalization and metric

        Returns:
            MatchResults (empty for an empty query)

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

        store = self._store
        query = build_document_vector(descriptors, self._vocabulary, store.idf, Normalization.NONE)

        if params.full_ranking:
            rows = np.arange(len(store))
        else:
            shared = np.count_nonzero(store.histograms[:, query.words], axis=1)
            rows = np.flatnonzero(shared)
            rows = rows[select_candidates(rows, shared[rows], params.candidate_cutoff)]

        documents = store.weights[rows] / store.divisors(params.normalization)[rows, None]
        query_dense = normalize(query.to_dense(self._vocabulary.size), params.normalization)
        scores = dense_scores(documents, query_dense, params.similarity_metric)
        return rank_arrays(store.image_ids[rows], scores, params.result_count)

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
    def load(cls, path: str | Path) -> BagOfWords:
        """Load a trained index saved with :meth:`save`."""
        _, data = read_index(path, cls.kind)
        index = cls()
        index._commit(
            FlatVocabulary(words=data["vocabulary_words"]),
            DenseHistogramStore.from_arrays(data, data["idf"]),
        )
        return index
