"""Contract and shared machinery of the search backends.

Every backend (BagOfWords, InvertedIndex, VocabTree) satisfies the
:class:`SearchBackend` protocol. Backends don't share a base class; each one
owns its vocabulary and index store and calls into the helpers below.

Lifecycle of an index instance::

    UNTRAINED --train()--> TRAINED

``train`` runs in two phases. Phase 1 builds the vocabulary and counts raw
term frequencies for every image on a worker pool. Phase 2 computes the IDF
weights from the completed counts and freezes the store. Nothing is assigned
to the instance until both phases succeed, so a failed ``train`` leaves it
untrained.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence, TypeVar, runtime_checkable

import numpy as np

from ..dataset import Dataset, DescriptorImage, stack_descriptors
from ..document import DocumentVector, normalize
from ..errors import IndexAlreadyTrainedError, IndexNotTrainedError, InvalidParamsError
from ..io import npz_path
from ..params import SearchParams, SimilarityMetric
from ..quantizer import Vocabulary, index_terms
from ..ranking import MatchResults
from ..store import PostingListStore
from ..workers import parallel_map

logger = logging.getLogger(__name__)

T = TypeVar("T")

INDEX_KIND_KEY = "index_kind"

_BACKENDS: dict[str, type] = {}


class IndexState(Enum):
    UNTRAINED = "untrained"
    TRAINED = "trained"


@runtime_checkable
class SearchBackend(Protocol):
    """Capability set shared by all retrieval backends."""

    @property
    def is_trained(self) -> bool: ...

    def train(self, dataset: Dataset, params=None) -> None: ...

    def search(self, descriptors: np.ndarray, params: SearchParams | None = None) -> MatchResults: ...

    def search_many(
        self,
        queries: Sequence[np.ndarray],
        params: SearchParams | None = None,
    ) -> list[MatchResults]: ...

    def save(self, path: str | Path) -> None: ...


def register_backend(name: str) -> Callable[[type[T]], type[T]]:
    """Class decorator making a backend available to :func:`create_backend`."""

    def decorator(cls: type[T]) -> type[T]:
        _BACKENDS[name] = cls
        cls.kind = name
        return cls

    return decorator


def available_backends() -> list[str]:
    return sorted(_BACKENDS)


def create_backend(name: str) -> SearchBackend:
    """Create an untrained backend by name ("bow", "inverted_index", "vocab_tree")."""
    try:
        cls = _BACKENDS[name]
    except KeyError:
        raise InvalidParamsError(
            f"Unknown backend '{name}'. Available: {', '.join(available_backends())}"
        ) from None
    return cls()


def load_backend(path: str | Path) -> SearchBackend:
    """Load a saved index of any backend type."""
    kind, _ = read_index(path)
    return _BACKENDS[kind].load(path)


# --- State guards -----------------------------------------------------------


def require_trained(backend: SearchBackend) -> None:
    if not backend.is_trained:
        raise IndexNotTrainedError(f"{type(backend).__name__} index has not been trained")


def require_untrained(backend: SearchBackend) -> None:
    if backend.is_trained:
        raise IndexAlreadyTrainedError(
            f"{type(backend).__name__} index is already trained; create a new instance to retrain"
        )


# --- Training helpers -------------------------------------------------------


def collect_images(dataset: Dataset) -> list[DescriptorImage]:
    """Materialize a dataset and check it is consistent.

    Raises:
        InvalidParamsError: On duplicate image ids, non-2D descriptor sets or
            mixed descriptor dimensionality
    """
    images = list(dataset)

    ids = [image.image_id for image in images]
    if len(set(ids)) != len(ids):
        raise InvalidParamsError("Dataset contains duplicate image ids")

    dimensions = set()
    for image in images:
        descriptors = np.asarray(image.descriptors)
        if len(descriptors) == 0:
            continue
        if descriptors.ndim != 2:
            raise InvalidParamsError(
                f"Image {image.image_id}: descriptors must be 2D, got shape {descriptors.shape}"
            )
        dimensions.add(descriptors.shape[1])

    if len(dimensions) > 1:
        raise InvalidParamsError(f"Descriptor dimensionality differs between images: {sorted(dimensions)}")
    return images


def training_samples(images: list[DescriptorImage], max_samples: int, random_state: int) -> np.ndarray:
    """Descriptors used to build the vocabulary."""
    samples = stack_descriptors(images, max_samples=max_samples, random_state=random_state)
    logger.info(f"Clustering {len(samples)} descriptors from {len(images)} images")
    return samples


def count_terms(
    images: list[DescriptorImage],
    vocabulary: Vocabulary,
    n_workers: int | None,
) -> list[tuple[np.ndarray, np.ndarray]]:
    """Phase 1: raw term frequencies for every image, one task per image."""
    return parallel_map(lambda image: index_terms(image.descriptors, vocabulary), images, n_workers)


# --- Search helpers ---------------------------------------------------------


def validate_query(descriptors: np.ndarray, dimension: int) -> np.ndarray:
    """Return the query as a float32 (N, D) matrix.

    An empty query becomes an empty (0, D) matrix.

    Raises:
        InvalidParamsError: If the query has the wrong shape or non-finite
            values
    """
    descriptors = np.asarray(descriptors, dtype=np.float32)
    if descriptors.size == 0:
        return np.empty((0, dimension), dtype=np.float32)
    if descriptors.ndim == 1:
        descriptors = descriptors.reshape(1, -1)
    if descriptors.ndim != 2 or descriptors.shape[1] != dimension:
        raise InvalidParamsError(
            f"Query descriptors must have shape (N, {dimension}), got {descriptors.shape}"
        )
    if not np.all(np.isfinite(descriptors)):
        raise InvalidParamsError("Query descriptors contain NaN or infinite values")
    return descriptors


def select_candidates(rows: np.ndarray, shared_words: np.ndarray, cutoff: int) -> np.ndarray:
    """Keep the ``cutoff`` candidates sharing the most words with the query.

    Ties are broken by ascending row (ascending image id). Returns the kept
    positions into ``rows``, in ascending order.
    """
    if cutoff <= 0 or len(rows) <= cutoff:
        return np.arange(len(rows))
    best = np.lexsort((rows, -shared_words))[:cutoff]
    return np.sort(best)


def score_sparse(
    query: DocumentVector,
    store: PostingListStore,
    params: SearchParams,
) -> tuple[np.ndarray, np.ndarray]:
    """Score candidates by walking the postings of the query's words.

    Only images sharing a word with the query are touched. With L1/L2
    metrics the distance over all words is recovered from the stored
    per-image norms plus a correction over the shared words:

        |q - d|_1  = |q|_1 + |d|_1 + sum_shared(|q_w - d_w| - q_w - d_w)
        |q - d|_2^2 = |q|_2^2 + |d|_2^2 - 2 * sum_shared(q_w * d_w)

    Args:
        query: Unnormalized TF-IDF vector of the query
        store: Frozen posting list store
        params: Search parameters (normalization, metric, cutoff, full ranking)

    Returns:
        Tuple of (image ids, scores); every indexed image when
        ``params.full_ranking`` is set, else only the touched candidates
    """
    normalization = params.normalization
    metric = params.similarity_metric
    q_weights = normalize(query.weights, normalization)

    rows_parts, q_parts, d_parts = [], [], []
    for word, q_w in zip(query.words.tolist(), q_weights.tolist()):
        rows, tfs = store.posting_rows(word)
        if len(rows) == 0:
            continue
        rows_parts.append(rows)
        q_parts.append(np.full(len(rows), q_w))
        d_parts.append(tfs * store.idf[word])

    if rows_parts:
        rows = np.concatenate(rows_parts)
        q = np.concatenate(q_parts)
        d = np.concatenate(d_parts) / store.divisors(normalization)[rows]
    else:
        rows = np.empty(0, dtype=np.int64)
        q = d = np.empty(0, dtype=np.float64)

    candidates, inverse = np.unique(rows, return_inverse=True)
    if params.candidate_cutoff and not params.full_ranking:
        kept = select_candidates(candidates, np.bincount(inverse), params.candidate_cutoff)
        if len(kept) < len(candidates):
            keep = np.zeros(len(candidates), dtype=bool)
            keep[kept] = True
            entries = keep[inverse]
            rows, q, d = rows[entries], q[entries], d[entries]
            candidates, inverse = np.unique(rows, return_inverse=True)

    if metric is SimilarityMetric.INTERSECTION:
        contributions = np.minimum(q, d)
    elif metric is SimilarityMetric.L1:
        contributions = np.abs(q - d) - q - d
    else:
        contributions = q * d
    partial = np.bincount(inverse.ravel(), weights=contributions, minlength=len(candidates))

    if params.full_ranking:
        full = np.zeros(len(store.image_ids), dtype=np.float64)
        full[candidates] = partial
        candidates, partial = np.arange(len(store.image_ids)), full

    d_l1, d_l2 = store.scaled_norms(normalization)
    if metric is SimilarityMetric.L1:
        distances = np.abs(q_weights).sum() + d_l1[candidates] + partial
        scores = -np.maximum(distances, 0.0)
    elif metric is SimilarityMetric.L2:
        squared = np.dot(q_weights, q_weights) + d_l2[candidates] ** 2 - 2.0 * partial
        scores = -np.sqrt(np.maximum(squared, 0.0))
    else:
        scores = partial

    return store.image_ids[candidates], scores


def search_parallel(
    search: Callable[[np.ndarray, SearchParams], MatchResults],
    queries: Iterable[np.ndarray],
    params: SearchParams,
) -> list[MatchResults]:
    """Run independent searches on a thread pool, preserving query order."""
    return parallel_map(lambda descriptors: search(descriptors, params), queries, params.n_workers)


# --- Persistence ------------------------------------------------------------


def write_index(path: str | Path, kind: str, arrays: dict[str, np.ndarray]) -> None:
    """Save index arrays to a .npz file tagged with the backend kind."""
    path = npz_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(path, **{INDEX_KIND_KEY: np.array(kind)}, **arrays)
    logger.info(f"Saved {kind} index to {path}")


def read_index(path: str | Path, kind: str | None = None) -> tuple[str, dict[str, np.ndarray]]:
    """Load index arrays from a .npz file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file isn't an index, or holds a different kind
    """
    path = npz_path(path)
    if not path.exists():
        raise FileNotFoundError(f"Index file not found: {path}")

    with np.load(path) as data:
        arrays = {key: data[key] for key in data.files}

    if INDEX_KIND_KEY not in arrays:
        raise ValueError(f"{path} is not a saved search index")
    stored = str(arrays.pop(INDEX_KIND_KEY))
    if stored not in _BACKENDS:
        raise ValueError(f"{path} holds an unknown index kind '{stored}'")
    if kind is not None and stored != kind:
        raise ValueError(f"{path} holds a '{stored}' index, expected '{kind}'")
    return stored, arrays
