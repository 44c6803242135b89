"""Python VocabTree - content-based image retrieval with visual vocabularies."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .dataset import DescriptorDirectory, DescriptorImage, InMemoryDataset, stack_descriptors
from .document import DocumentVector, build_document_vector, compute_idf, normalize
from .errors import (
    ConvergenceWarning,
    IndexAlreadyTrainedError,
    IndexNotTrainedError,
    InsufficientSamplesError,
    InvalidParamsError,
    VocabTreeError,
)
from .params import (
    BagOfWordsTrainParams,
    FlatTrainParams,
    InvertedIndexTrainParams,
    KMeansParams,
    Normalization,
    SearchParams,
    SeedingMethod,
    SimilarityMetric,
    VocabTreeTrainParams,
)
from .quantizer import path_frequencies, quantize, quantize_all, term_frequencies
from .ranking import MatchResults, merge_results, rank
from .search import (
    BagOfWords,
    InvertedIndex,
    SearchBackend,
    VocabTree,
    create_backend,
    load_backend,
)
from .store import DenseHistogramStore, PostingListStore
from .vocabulary import FlatVocabulary, TreeNode, VocabularyTree, kmeans

__all__ = [
    "__version__",
    # Datasets
    "DescriptorImage",
    "InMemoryDataset",
    "DescriptorDirectory",
    "stack_descriptors",
    # Parameters
    "KMeansParams",
    "FlatTrainParams",
    "BagOfWordsTrainParams",
    "InvertedIndexTrainParams",
    "VocabTreeTrainParams",
    "SearchParams",
    "Normalization",
    "SimilarityMetric",
    "SeedingMethod",
    # Vocabularies
    "kmeans",
    "FlatVocabulary",
    "VocabularyTree",
    "TreeNode",
    # Quantization / TF-IDF
    "quantize",
    "quantize_all",
    "term_frequencies",
    "path_frequencies",
    "DocumentVector",
    "build_document_vector",
    "compute_idf",
    "normalize",
    # Index stores
    "DenseHistogramStore",
    "PostingListStore",
    # Search
    "SearchBackend",
    "BagOfWords",
    "InvertedIndex",
    "VocabTree",
    "create_backend",
    "load_backend",
    "MatchResults",
    "rank",
    "merge_results",
    # Errors
    "VocabTreeError",
    "InvalidParamsError",
    "InsufficientSamplesError",
    "IndexNotTrainedError",
    "IndexAlreadyTrainedError",
    "ConvergenceWarning",
]
