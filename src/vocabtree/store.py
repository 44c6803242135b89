"""Index stores holding per-image term frequencies.

Two representations back the search backends:

- DenseHistogramStore: one length-V histogram per image (Bag of Words)
- PostingListStore: one posting list of (image id, tf) per word, packed
  into CSR arrays once frozen (Inverted Index, Vocabulary Tree)

Both are filled during the first training phase with raw term
frequencies, then frozen with the IDF weights computed in the second
phase. Freezing precomputes each image's weighted L1 and L2 norms under
every normalization, so normalized scores only read the rows of the touched
postings. The posting store also keeps an image-major copy of its entries
so one document is a slice. A frozen store is read-only and safe to share
between concurrent searches.
"""

from __future__ import annotations

import numpy as np

from .document import DocumentVector
from .params import Normalization


NormTable = dict[Normalization, tuple[np.ndarray, np.ndarray, np.ndarray]]


def _norm_table(l1: np.ndarray, l2: np.ndarray) -> NormTable:
    """Per-image (divisor, scaled L1, scaled L2) for every normalization.

    Zero vectors divide by 1. All arrays are read-only.
    """
    table = {}
    for normalization in Normalization:
        if normalization is Normalization.L1:
            divisors = np.where(l1 > 0, l1, 1.0)
        elif normalization is Normalization.L2:
            divisors = np.where(l2 > 0, l2, 1.0)
        else:
            divisors = np.ones(len(l1), dtype=np.float64)
        entry = (divisors, l1 / divisors, l2 / divisors)
        for array in entry:
            array.setflags(write=False)
        table[normalization] = entry
    return table


def _check_terms(words: np.ndarray, counts: np.ndarray, size: int) -> tuple[np.ndarray, np.ndarray]:
    words = np.asarray(words, dtype=np.int64)
    counts = np.asarray(counts, dtype=np.int64)
    if words.shape != counts.shape or words.ndim != 1:
        raise ValueError(f"words and counts must be matching 1D arrays, got {words.shape} and {counts.shape}")
    if len(words) and (words.min() < 0 or words.max() >= size):
        raise ValueError(f"Word ids must lie in [0, {size})")
    return words, counts


class DenseHistogramStore:
    """Term-frequency matrix of shape (n_images, vocabulary_size)."""

    def __init__(self, vocabulary_size: int) -> None:
        self.vocabulary_size = vocabulary_size
        self._pending: dict[int, np.ndarray] = {}
        self._frozen = False

        self.image_ids = np.empty(0, dtype=np.int64)
        self.histograms = np.empty((0, vocabulary_size), dtype=np.int32)
        self.idf = np.zeros(vocabulary_size, dtype=np.float64)
        self.weights = np.empty((0, vocabulary_size), dtype=np.float64)
        self._l1 = np.empty(0, dtype=np.float64)
        self._l2 = np.empty(0, dtype=np.float64)
        self._positions: dict[int, int] = {}
        self._norms = _norm_table(self._l1, self._l2)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self.image_ids) if self._frozen else len(self._pending)

    def add(self, image_id: int, words: np.ndarray, counts: np.ndarray) -> None:
        """Record one image's raw term frequencies.

        Raises:
            RuntimeError: If the store is frozen
            ValueError: If the image id was already added or a word is
                outside the vocabulary
        """
        if self._frozen:
            raise RuntimeError("Cannot add to a frozen histogram store")
        if image_id in self._pending:
            raise ValueError(f"Image {image_id} already added")
        words, counts = _check_terms(words, counts, self.vocabulary_size)

        row = np.zeros(self.vocabulary_size, dtype=np.int32)
        row[words] = counts
        self._pending[image_id] = row

    def document_frequencies(self) -> np.ndarray:
        """Number of images containing each word, shape (V,)."""
        if self._frozen:
            return np.count_nonzero(self.histograms, axis=0)
        df = np.zeros(self.vocabulary_size, dtype=np.int64)
        for row in self._pending.values():
            df += row > 0
        return df

    def freeze(self, idf: np.ndarray) -> None:
        """Stack the histograms (ordered by image id) and apply IDF."""
        if self._frozen:
            raise RuntimeError("Histogram store is already frozen")
        image_ids = np.array(sorted(self._pending), dtype=np.int64)
        if len(image_ids):
            histograms = np.vstack([self._pending[i] for i in image_ids.tolist()])
        else:
            histograms = np.empty((0, self.vocabulary_size), dtype=np.int32)
        self._pending = {}
        self._finalize(image_ids, histograms, idf)

    def _finalize(self, image_ids: np.ndarray, histograms: np.ndarray, idf: np.ndarray) -> None:
        self.image_ids = image_ids
        self.histograms = histograms
        self.idf = np.asarray(idf, dtype=np.float64)
        self.weights = histograms * self.idf
        self._l1 = np.abs(self.weights).sum(axis=1)
        self._l2 = np.sqrt(np.einsum("ij,ij->i", self.weights, self.weights))
        self._positions = {image_id: row for row, image_id in enumerate(image_ids.tolist())}
        self._norms = _norm_table(self._l1, self._l2)

        for array in (self.image_ids, self.histograms, self.idf, self.weights, self._l1, self._l2):
            array.setflags(write=False)
        self._frozen = True

    def divisors(self, normalization: Normalization) -> np.ndarray:
        """Per-image norm to divide weights by (1 for zero vectors)."""
        return self._norms[normalization][0]

    def position(self, image_id: int) -> int:
        """Row of an image in the frozen matrices."""
        try:
            return self._positions[image_id]
        except KeyError:
            raise KeyError(f"Image {image_id} is not indexed") from None

    def document(self, image_id: int) -> DocumentVector:
        """Unnormalized TF-IDF vector of an indexed image."""
        row = self.weights[self.position(image_id)]
        words = np.flatnonzero(row)
        return DocumentVector(words, row[words])

    def to_arrays(self) -> dict[str, np.ndarray]:
        return {"store_image_ids": self.image_ids, "store_histograms": self.histograms}

    @classmethod
    def from_arrays(cls, data, idf: np.ndarray) -> DenseHistogramStore:
        histograms = np.asarray(data["store_histograms"], dtype=np.int32)
        store = cls(histograms.shape[1])
        store._finalize(np.asarray(data["store_image_ids"], dtype=np.int64), histograms, idf)
        return store


class PostingListStore:
    """Per-word posting lists of (image id, term frequency).

    Entries are appended image by image while unfrozen. ``freeze`` packs them
    into CSR arrays: the postings of word ``w`` occupy
    ``offsets[w]:offsets[w + 1]``, ordered by ascending image id.
    """

    def __init__(self, vocabulary_size: int) -> None:
        self.vocabulary_size = vocabulary_size
        self._pending: dict[int, tuple[np.ndarray, np.ndarray]] = {}
        self._frozen = False

        self.image_ids = np.empty(0, dtype=np.int64)
        self.idf = np.zeros(vocabulary_size, dtype=np.float64)
        self._offsets = np.zeros(vocabulary_size + 1, dtype=np.int64)
        self._rows = np.empty(0, dtype=np.int64)
        self._tfs = np.empty(0, dtype=np.int64)
        self._l1 = np.empty(0, dtype=np.float64)
        self._l2 = np.empty(0, dtype=np.float64)
        self._norms = _norm_table(self._l1, self._l2)
        self._image_offsets = np.zeros(1, dtype=np.int64)
        self._image_words = np.empty(0, dtype=np.int64)
        self._image_tfs = np.empty(0, dtype=np.int64)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def num_postings(self) -> int:
        return len(self._rows)

    def __len__(self) -> int:
        return len(self.image_ids) if self._frozen else len(self._pending)

    def add(self, image_id: int, words: np.ndarray, counts: np.ndarray) -> None:
        """Append one image's (word, tf) entries.

        An image with no words is still registered so it counts towards N
        and can appear in full rankings.

        Raises:
            RuntimeError: If the store is frozen
            ValueError: If the image id was already added or a word is
                outside the vocabulary
        """
        if self._frozen:
            raise RuntimeError("Cannot add to a frozen posting list store")
        if image_id in self._pending:
            raise ValueError(f"Image {image_id} already added")
        self._pending[image_id] = _check_terms(words, counts, self.vocabulary_size)

    def document_frequencies(self) -> np.ndarray:
        """Posting list length per word, shape (V,)."""
        if self._frozen:
            return np.diff(self._offsets)
        df = np.zeros(self.vocabulary_size, dtype=np.int64)
        for words, _ in self._pending.values():
            df[words] += 1
        return df

    def freeze(self, idf: np.ndarray) -> None:
        """Pack postings into CSR arrays and apply IDF."""
        if self._frozen:
            raise RuntimeError("Posting list store is already frozen")
        image_ids = np.array(sorted(self._pending), dtype=np.int64)

        words_parts, rows_parts, tfs_parts = [], [], []
        for row, image_id in enumerate(image_ids.tolist()):
            words, counts = self._pending[image_id]
            words_parts.append(words)
            rows_parts.append(np.full(len(words), row, dtype=np.int64))
            tfs_parts.append(counts)
        self._pending = {}

        words = np.concatenate(words_parts) if words_parts else np.empty(0, dtype=np.int64)
        rows = np.concatenate(rows_parts) if rows_parts else np.empty(0, dtype=np.int64)
        tfs = np.concatenate(tfs_parts) if tfs_parts else np.empty(0, dtype=np.int64)

        # Stable sort keeps each posting list in ascending image id order
        order = np.argsort(words, kind="stable")
        offsets = np.zeros(self.vocabulary_size + 1, dtype=np.int64)
        offsets[1:] = np.cumsum(np.bincount(words, minlength=self.vocabulary_size))

        self._finalize(image_ids, offsets, rows[order], tfs[order], idf)

    def _finalize(
        self,
        image_ids: np.ndarray,
        offsets: np.ndarray,
        rows: np.ndarray,
        tfs: np.ndarray,
        idf: np.ndarray,
    ) -> None:
        self.image_ids = image_ids
        self.idf = np.asarray(idf, dtype=np.float64)
        self._offsets = offsets
        self._rows = rows
        self._tfs = tfs

        n_images = len(image_ids)
        entry_words = np.repeat(np.arange(self.vocabulary_size, dtype=np.int64), np.diff(offsets))
        weights = tfs * self.idf[entry_words]
        self._l1 = np.bincount(rows, weights=np.abs(weights), minlength=n_images)
        self._l2 = np.sqrt(np.bincount(rows, weights=weights**2, minlength=n_images))
        self._norms = _norm_table(self._l1, self._l2)

        # Image-major view of the same entries: the words of row ``r`` occupy
        # image_offsets[r]:image_offsets[r + 1], in ascending word order
        by_image = np.argsort(rows, kind="stable")
        self._image_offsets = np.zeros(n_images + 1, dtype=np.int64)
        self._image_offsets[1:] = np.cumsum(np.bincount(rows, minlength=n_images))
        self._image_words = entry_words[by_image]
        self._image_tfs = tfs[by_image]

        for array in (
            self.image_ids,
            self.idf,
            self._offsets,
            self._rows,
            self._tfs,
            self._l1,
            self._l2,
            self._image_offsets,
            self._image_words,
            self._image_tfs,
        ):
            array.setflags(write=False)
        self._frozen = True

    def posting_rows(self, word: int) -> tuple[np.ndarray, np.ndarray]:
        """Postings of a word as (image rows, tfs); rows index ``image_ids``."""
        start, stop = self._offsets[word], self._offsets[word + 1]
        return self._rows[start:stop], self._tfs[start:stop]

    def postings(self, word: int) -> tuple[np.ndarray, np.ndarray]:
        """Postings of a word as (image ids, tfs), ascending image id."""
        rows, tfs = self.posting_rows(word)
        return self.image_ids[rows], tfs

    def divisors(self, normalization: Normalization) -> np.ndarray:
        """Per-image norm to divide weights by (1 for zero vectors)."""
        return self._norms[normalization][0]

    def scaled_norms(self, normalization: Normalization) -> tuple[np.ndarray, np.ndarray]:
        """Per-image (L1, L2) norms after applying ``normalization``.

        Precomputed at freeze time; index them by row rather than copying.
        """
        _, l1, l2 = self._norms[normalization]
        return l1, l2

    def document(self, image_id: int) -> DocumentVector:
        """Reconstruct the unnormalized TF-IDF vector of an indexed image."""
        row = int(np.searchsorted(self.image_ids, image_id))
        if row >= len(self.image_ids) or self.image_ids[row] != image_id:
            raise KeyError(f"Image {image_id} is not indexed")
        start, stop = self._image_offsets[row], self._image_offsets[row + 1]
        return DocumentVector.from_counts(self._image_words[start:stop], self._image_tfs[start:stop], self.idf)

    def to_arrays(self) -> dict[str, np.ndarray]:
        return {
            "store_image_ids": self.image_ids,
            "store_offsets": self._offsets,
            "store_rows": self._rows,
            "store_tfs": self._tfs,
        }

    @classmethod
    def from_arrays(cls, data, idf: np.ndarray) -> PostingListStore:
        offsets = np.asarray(data["store_offsets"], dtype=np.int64)
        store = cls(len(offsets) - 1)
        store._finalize(
            np.asarray(data["store_image_ids"], dtype=np.int64),
            offsets,
            np.asarray(data["store_rows"], dtype=np.int64),
            np.asarray(data["store_tfs"], dtype=np.int64),
            idf,
        )
        return store
