"""Training and search configuration for the retrieval backends.

All parameter objects are frozen dataclasses. They are validated when a
backend uses them (``train`` / ``search``), before any clustering work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import InvalidParamsError


class Normalization(str, Enum):
    """Vector normalization applied to document and query vectors."""

    L1 = "l1"
    L2 = "l2"
    NONE = "none"


class SimilarityMetric(str, Enum):
    """Similarity used to score candidates.

    DOT and INTERSECTION are similarities. L1 and L2 are distances and are
    reported as ``score = -distance`` so every metric ranks descending.
    """

    DOT = "dot"
    L1 = "l1"
    L2 = "l2"
    INTERSECTION = "intersection"


class SeedingMethod(str, Enum):
    """Initial centroid selection for k-means."""

    KMEANS_PP = "kmeans++"
    RANDOM = "random"


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidParamsError(message)


@dataclass(frozen=True)
class KMeansParams:
    """Settings shared by flat and hierarchical k-means.

    Attributes:
        max_iterations: Hard cap on Lloyd iterations per clustering
        convergence_threshold: Stop once no centroid moves farther than this
        seeding: Initial centroid selection
        random_state: Seed for seeding and subsampling
        n_workers: Worker threads for assignment (None = os.cpu_count())
    """

    max_iterations: int = 25
    convergence_threshold: float = 1e-4
    seeding: SeedingMethod = SeedingMethod.KMEANS_PP
    random_state: int = 0
    n_workers: int | None = None

    def validate(self) -> None:
        _require(self.max_iterations > 0, f"max_iterations must be > 0, got {self.max_iterations}")
        _require(
            self.convergence_threshold >= 0,
            f"convergence_threshold must be >= 0, got {self.convergence_threshold}",
        )
        _require(
            self.n_workers is None or self.n_workers > 0,
            f"n_workers must be > 0, got {self.n_workers}",
        )
        _require(
            isinstance(self.seeding, SeedingMethod),
            f"Unknown seeding method: {self.seeding!r}",
        )


@dataclass(frozen=True)
class FlatTrainParams:
    """Training parameters for flat-vocabulary backends.

    Attributes:
        vocabulary_size: Number of visual words (k)
        max_samples: Descriptors sampled for clustering (0 = all)
        kmeans: k-means settings
    """

    vocabulary_size: int = 512
    max_samples: int = 0
    kmeans: KMeansParams = field(default_factory=KMeansParams)

    def validate(self) -> None:
        _require(self.vocabulary_size > 0, f"vocabulary_size must be > 0, got {self.vocabulary_size}")
        _require(self.max_samples >= 0, f"max_samples must be >= 0, got {self.max_samples}")
        _require(
            self.max_samples == 0 or self.max_samples >= self.vocabulary_size,
            f"max_samples ({self.max_samples}) must be 0 or >= vocabulary_size "
            f"({self.vocabulary_size})",
        )
        self.kmeans.validate()


# BagOfWords and InvertedIndex differ only in storage, not in vocabulary
# construction, so they share one parameter set.
BagOfWordsTrainParams = FlatTrainParams
InvertedIndexTrainParams = FlatTrainParams


@dataclass(frozen=True)
class VocabTreeTrainParams:
    """Training parameters for the hierarchical vocabulary tree.

    Attributes:
        branching_factor: Children per internal node (B)
        max_depth: Depth of the deepest leaves (root is depth 0)
        min_cluster_size: Nodes with fewer samples become leaves
            (None = branching_factor)
        max_samples: Descriptors sampled for clustering (0 = all)
        kmeans: k-means settings applied at every node
    """

    branching_factor: int = 10
    max_depth: int = 6
    min_cluster_size: int | None = None
    max_samples: int = 0
    kmeans: KMeansParams = field(default_factory=KMeansParams)

    def validate(self) -> None:
        _require(
            self.branching_factor >= 2,
            f"branching_factor must be >= 2, got {self.branching_factor}",
        )
        _require(self.max_depth >= 1, f"max_depth must be >= 1, got {self.max_depth}")
        _require(
            self.min_cluster_size is None or self.min_cluster_size >= 1,
            f"min_cluster_size must be >= 1, got {self.min_cluster_size}",
        )
        _require(self.max_samples >= 0, f"max_samples must be >= 0, got {self.max_samples}")
        self.kmeans.validate()

    @property
    def effective_min_cluster_size(self) -> int:
        if self.min_cluster_size is None:
            return self.branching_factor
        return max(self.min_cluster_size, self.branching_factor)


@dataclass(frozen=True)
class SearchParams:
    """Search parameters shared by every backend.

    Attributes:
        result_count: Maximum number of results (K)
        normalization: Normalization applied to query and document vectors
        similarity_metric: How candidates are scored
        full_ranking: Also rank images sharing no word with the query
        candidate_cutoff: Score only the N candidates sharing the most query
            words (0 = score all candidates)
        n_workers: Worker threads for ``search_many`` (None = os.cpu_count())
    """

    result_count: int = 10
    normalization: Normalization = Normalization.L2
    similarity_metric: SimilarityMetric = SimilarityMetric.DOT
    full_ranking: bool = False
    candidate_cutoff: int = 0
    n_workers: int | None = None

    def validate(self) -> None:
        _require(self.result_count > 0, f"result_count must be > 0, got {self.result_count}")
        _require(
            isinstance(self.normalization, Normalization),
            f"Unknown normalization: {self.normalization!r}",
        )
        _require(
            isinstance(self.similarity_metric, SimilarityMetric),
            f"Unknown similarity metric: {self.similarity_metric!r}",
        )
        _require(
            self.candidate_cutoff >= 0,
            f"candidate_cutoff must be >= 0, got {self.candidate_cutoff}",
        )
        _require(
            self.n_workers is None or self.n_workers > 0,
            f"n_workers must be > 0, got {self.n_workers}",
        )
