"""Tests for the flat vocabulary and the hierarchical vocabulary tree."""

from pathlib import Path

import numpy as np
import pytest

from vocabtree import (
    FlatVocabulary,
    InsufficientSamplesError,
    InvalidParamsError,
    KMeansParams,
    SeedingMethod,
    VocabularyTree,
)
from vocabtree.vocabulary import tree as tree_module


@pytest.fixture
def tree(blob_samples: np.ndarray) -> VocabularyTree:
    """Binary tree of depth 2 over the four blobs."""
    return VocabularyTree.build(blob_samples, branching_factor=2, max_depth=2)


class TestFlatVocabulary:
    """Test suite for FlatVocabulary."""

    def test_train(self, blob_samples: np.ndarray):
        """Test training produces the requested number of words."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)

        assert vocabulary.size == 4
        assert vocabulary.dimension == 2
        assert vocabulary.words.dtype == np.float32

    def test_own_centroid_round_trip(self, blob_samples: np.ndarray):
        """Test that each word's centroid quantizes to that word."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)

        for word_id, centroid in enumerate(vocabulary.words):
            assert vocabulary.quantize(centroid) == word_id

    def test_quantize_batch_matches_single(self, blob_samples: np.ndarray):
        """Test batch quantization agrees with one-at-a-time quantization."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)

        batch = vocabulary.quantize_batch(blob_samples)

        assert batch.tolist() == [vocabulary.quantize(d) for d in blob_samples]

    def test_quantize_empty(self, blob_samples: np.ndarray):
        """Test that quantizing no descriptors gives no words."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)

        assert vocabulary.quantize_batch(np.empty((0, 2))).shape == (0,)

    def test_words_are_read_only(self, blob_samples: np.ndarray):
        """Test that the trained centroids can't be modified."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)

        with pytest.raises(ValueError):
            vocabulary.words[0, 0] = 1.0

    def test_rejects_empty_words(self):
        """Test that a vocabulary needs at least one word."""
        with pytest.raises(InvalidParamsError):
            FlatVocabulary(words=np.empty((0, 2)))

    def test_save_load(self, blob_samples: np.ndarray, tmp_path: Path):
        """Test that a saved vocabulary loads back unchanged."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)
        path = tmp_path / "vocab" / "words.npz"

        vocabulary.save(path)
        loaded = FlatVocabulary.load(path)

        np.testing.assert_array_equal(loaded.words, vocabulary.words)

    def test_save_load_without_suffix(self, blob_samples: np.ndarray, tmp_path: Path):
        """Test that a path without .npz saves and loads the same file."""
        vocabulary = FlatVocabulary.train(blob_samples, 4)

        vocabulary.save(tmp_path / "words")
        loaded = FlatVocabulary.load(tmp_path / "words")

        assert (tmp_path / "words.npz").exists()
        np.testing.assert_array_equal(loaded.words, vocabulary.words)


class TestVocabularyTreeBuild:
    """Test suite for VocabularyTree.build()."""

    def test_four_leaves(self, tree: VocabularyTree):
        """Test that B=2, depth 2 over four blobs gives exactly 4 leaves."""
        assert len(tree.leaves) == 4
        assert tree.num_nodes == 7
        assert tree.depth == 2

    def test_breadth_first_ids(self, tree: VocabularyTree):
        """Test that node ids are assigned level by level."""
        assert list(tree.children(0)) == [1, 2]
        assert list(tree.children(1)) == [3, 4]
        assert list(tree.children(2)) == [5, 6]
        assert tree.leaves.tolist() == [3, 4, 5, 6]

    def test_node_view(self, tree: VocabularyTree):
        """Test the read-only node view."""
        root = tree.node(0)
        leaf = tree.node(3)

        assert root.centroid is None
        assert root.parent == -1
        assert root.depth == 0
        assert root.children == (1, 2)
        assert not root.is_leaf

        assert leaf.is_leaf
        assert leaf.parent == 1
        assert leaf.depth == 2
        assert leaf.centroid.shape == (2,)

    def test_node_out_of_range(self, tree: VocabularyTree):
        """Test that unknown node ids are rejected."""
        with pytest.raises(IndexError):
            tree.node(tree.num_nodes)

    def test_first_level_splits_far_pairs(self, tree: VocabularyTree):
        """Test that the root separates the two far-apart blob pairs."""
        xs = sorted(float(tree.centroid(node)[0]) for node in tree.children(0))

        assert xs[0] == pytest.approx(0.0, abs=1.0)
        assert xs[1] == pytest.approx(60.0, abs=1.0)

    def test_min_cluster_size_stops_early(self, blob_samples: np.ndarray):
        """Test that nodes smaller than min_cluster_size become leaves."""
        tree = VocabularyTree.build(blob_samples, branching_factor=2, max_depth=3, min_cluster_size=60)

        assert len(tree.leaves) == 2
        assert all(tree.node(leaf).depth == 1 for leaf in tree.leaves)

    def test_identical_samples_stop_branching(self):
        """Test that a cluster that can't be split becomes a leaf."""
        samples = np.ones((20, 3), dtype=np.float32)
        params = KMeansParams(seeding=SeedingMethod.RANDOM)

        tree = VocabularyTree.build(samples, branching_factor=2, max_depth=3, kmeans_params=params)

        assert tree.num_nodes == 1
        assert tree.leaves.tolist() == [0]

    def test_parallel_build_matches_sequential(self, blob_samples: np.ndarray):
        """Test that parallel subtree construction is deterministic."""
        sequential = VocabularyTree.build(
            blob_samples, 2, 2, kmeans_params=KMeansParams(n_workers=1)
        )
        parallel = VocabularyTree.build(
            blob_samples, 2, 2, kmeans_params=KMeansParams(n_workers=4)
        )

        for name, array in sequential.to_arrays().items():
            np.testing.assert_array_equal(parallel.to_arrays()[name], array)

    def test_insufficient_samples(self):
        """Test that fewer samples than B fails."""
        with pytest.raises(InsufficientSamplesError):
            VocabularyTree.build(np.zeros((2, 2)), branching_factor=3, max_depth=2)

    @pytest.mark.parametrize(
        "branching_factor,max_depth",
        [(1, 2), (2, 0)],
    )
    def test_invalid_shape_params(self, blob_samples: np.ndarray, branching_factor: int, max_depth: int):
        """Test that B < 2 or depth < 1 is rejected."""
        with pytest.raises(InvalidParamsError):
            VocabularyTree.build(blob_samples, branching_factor, max_depth)


class TestVocabularyTreeQuantize:
    """Test suite for greedy descent quantization."""

    def test_path_starts_at_root_and_ends_at_leaf(self, tree: VocabularyTree, blob_samples: np.ndarray):
        """Test that every path is a root-to-leaf chain of parent links."""
        for descriptor in blob_samples[::10]:
            path = tree.path(descriptor)

            assert path[0] == 0
            assert tree.is_leaf(path[-1])
            assert path == tree.ancestors(path[-1])

    def test_quantize_returns_leaf(self, tree: VocabularyTree, blob_samples: np.ndarray):
        """Test that quantization always reaches a leaf."""
        words = tree.quantize_batch(blob_samples)

        assert set(words.tolist()) == set(tree.leaves.tolist())

    def test_leaf_centroid_round_trip(self, tree: VocabularyTree):
        """Test that a leaf's own centroid quantizes back to that leaf."""
        for leaf in tree.leaves:
            assert tree.quantize(tree.centroid(leaf)) == leaf

    def test_paths_batch_shape(self, tree: VocabularyTree, blob_samples: np.ndarray):
        """Test the padded path matrix."""
        paths = tree.paths_batch(blob_samples)

        assert paths.shape == (100, 3)
        assert (paths[:, 0] == 0).all()
        assert tree.paths_batch(np.empty((0, 2))).shape == (0, 3)

    def test_same_blob_same_leaf(self, tree: VocabularyTree, blob_samples: np.ndarray):
        """Test that each blob maps to a single leaf."""
        words = tree.quantize_batch(blob_samples).reshape(4, 25)

        for blob_words in words:
            assert len(set(blob_words.tolist())) == 1
        assert len(set(words[:, 0].tolist())) == 4

    def test_save_load(self, tree: VocabularyTree, blob_samples: np.ndarray, tmp_path: Path):
        """Test that a saved tree quantizes identically after loading."""
        path = tmp_path / "tree.npz"

        tree.save(path)
        loaded = VocabularyTree.load(path)

        assert loaded.num_nodes == tree.num_nodes
        assert loaded.branching_factor == 2
        assert loaded.max_depth == 2
        np.testing.assert_array_equal(loaded.paths_batch(blob_samples), tree.paths_batch(blob_samples))

    def test_save_load_without_suffix(self, tree: VocabularyTree, tmp_path: Path):
        """Test that a path without .npz saves and loads the same file."""
        tree.save(tmp_path / "tree")

        loaded = VocabularyTree.load(str(tmp_path / "tree"))

        assert (tmp_path / "tree.npz").exists()
        assert loaded.num_nodes == tree.num_nodes


class TestVocabularyTreeParallelBuild:
    """Sibling subtrees are split concurrently at every level."""

    def test_every_level_fans_out(self, blob_samples: np.ndarray, monkeypatch):
        """Test that each level's splits go to the worker pool together."""
        batches = []
        original = tree_module.parallel_map

        def recording_map(fn, items, n_workers=None):
            items = list(items)
            batches.append((len(items), n_workers))
            return original(fn, items, n_workers)

        monkeypatch.setattr(tree_module, "parallel_map", recording_map)
        samples = np.vstack([blob_samples, blob_samples + np.array([0.0, 200.0], dtype=np.float32)])

        tree = VocabularyTree.build(samples, 2, 3, kmeans_params=KMeansParams(n_workers=4))

        assert len(tree.leaves) == 8
        assert batches == [(1, 4), (2, 4), (4, 4)]

    def test_deep_parallel_build_matches_sequential(self, blob_samples: np.ndarray):
        """Test that fanning out below the first level is deterministic."""
        samples = np.vstack([blob_samples, blob_samples + np.array([0.0, 200.0], dtype=np.float32)])

        sequential = VocabularyTree.build(samples, 2, 3, kmeans_params=KMeansParams(n_workers=1))
        parallel = VocabularyTree.build(samples, 2, 3, kmeans_params=KMeansParams(n_workers=8))

        for name, array in sequential.to_arrays().items():
            np.testing.assert_array_equal(parallel.to_arrays()[name], array)
