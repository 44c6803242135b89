"""Hierarchical k-means vocabulary tree.

The tree is built by recursively clustering descriptors into B groups
(Nister & Stewenius 2006). Nodes live in an arena indexed by integer id,
laid out in breadth-first order so that every node's children occupy a
contiguous id range:

    node 0             root (no centroid)
    nodes 1..B         depth 1
    ...

Quantization is a greedy descent: at each level pick the nearest child
centroid and never backtrack. That costs O(depth * B) distance
computations per descriptor instead of O(V), at the price of only
approximating the nearest leaf.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from pathlib import Path

import numpy as np
from scipy.spatial.distance import cdist

from ..errors import InsufficientSamplesError, InvalidParamsError
from ..io import npz_path
from ..params import KMeansParams
from ..workers import parallel_map
from .kmeans import kmeans

logger = logging.getLogger(__name__)

ROOT = 0


@dataclass(frozen=True)
class TreeNode:
    """Read-only view of one arena node.

    Attributes:
        node_id: Arena index
        parent: Parent node id (-1 for the root)
        depth: Distance from the root (root is 0)
        centroid: Cluster center, or None for the root
        children: Child node ids (empty for leaves)
    """

    node_id: int
    parent: int
    depth: int
    centroid: np.ndarray | None
    children: tuple[int, ...]

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass
class _Subtree:
    """Build-time node; discarded once the arena is laid out."""

    centroid: np.ndarray | None
    n_samples: int
    children: list[_Subtree] = field(default_factory=list)


class VocabularyTree:
    """Arena-backed hierarchical vocabulary.

    Construct with :meth:`build` or :meth:`load`. All arrays are read-only
    once constructed.
    """

    def __init__(
        self,
        centroids: np.ndarray,
        parents: np.ndarray,
        depths: np.ndarray,
        first_child: np.ndarray,
        n_children: np.ndarray,
        branching_factor: int,
        max_depth: int,
    ) -> None:
        """Initialize from arena arrays (see :meth:`build`).

        Args:
            centroids: Node centroids, shape (n_nodes, D); root row unused
            parents: Parent id per node, -1 for the root
            depths: Depth per node
            first_child: Id of the first child per node (0 for leaves)
            n_children: Child count per node
            branching_factor: B used during construction
            max_depth: Depth limit used during construction
        """
        self._centroids = np.asarray(centroids, dtype=np.float32)
        self._parents = np.asarray(parents, dtype=np.int64)
        self._depths = np.asarray(depths, dtype=np.int64)
        self._first_child = np.asarray(first_child, dtype=np.int64)
        self._n_children = np.asarray(n_children, dtype=np.int64)
        self.branching_factor = int(branching_factor)
        self.max_depth = int(max_depth)

        for array in (
            self._centroids,
            self._parents,
            self._depths,
            self._first_child,
            self._n_children,
        ):
            array.setflags(write=False)

        self._leaves = np.flatnonzero(self._n_children == 0)

    @classmethod
    def build(
        cls,
        samples: np.ndarray,
        branching_factor: int,
        max_depth: int,
        min_cluster_size: int | None = None,
        kmeans_params: KMeansParams | None = None,
    ) -> VocabularyTree:
        """Build a tree by hierarchical k-means.

        A node becomes a leaf when it reaches ``max_depth``, holds fewer than
        ``min_cluster_size`` samples (never less than B), or when its
        clustering collapses into a single non-empty group. Empty clusters
        are dropped, so internal nodes can have fewer than B children.

        Nodes are split one level at a time. All splits of a level run in
        parallel on the worker pool, one task per node; the root, alone on
        its level, runs a single k-means with parallel assignment.

        Args:
            samples: Training descriptors, shape (N, D)
            branching_factor: Children per node (B >= 2)
            max_depth: Depth of the deepest leaves (>= 1)
            min_cluster_size: Minimum samples for a node to be split
            kmeans_params: k-means settings applied at every node

        Returns:
            Trained vocabulary tree

        Raises:
            InvalidParamsError: If B < 2, max_depth < 1 or samples aren't 2D
            InsufficientSamplesError: If N < B
        """
        if branching_factor < 2:
            raise InvalidParamsError(f"branching_factor must be >= 2, got {branching_factor}")
        if max_depth < 1:
            raise InvalidParamsError(f"max_depth must be >= 1, got {max_depth}")

        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim != 2:
            raise InvalidParamsError(f"Samples must be 2D, got shape {samples.shape}")
        if len(samples) < branching_factor:
            raise InsufficientSamplesError(len(samples), branching_factor)

        kmeans_params = kmeans_params or KMeansParams()
        min_size = max(min_cluster_size or branching_factor, branching_factor)
        sequential = replace(kmeans_params, n_workers=1)

        def split(node_samples: np.ndarray, params: KMeansParams) -> list[tuple[np.ndarray, np.ndarray]]:
            result = kmeans(node_samples, branching_factor, params)
            groups = []
            for c in range(branching_factor):
                members = node_samples[result.labels == c]
                if len(members) > 0:
                    groups.append((result.centroids[c], members))
            return groups

        # Level by level: every node of a level has a fixed partition, so the
        # whole level is split on the pool. Samples are dropped once split.
        root = _Subtree(centroid=None, n_samples=len(samples))
        frontier = [(root, samples)] if len(samples) >= min_size else []
        depth = 0
        while frontier and depth < max_depth:
            # A lone node parallelizes inside k-means instead
            level_params = kmeans_params if len(frontier) == 1 else sequential
            splits = parallel_map(
                lambda item: split(item[1], level_params),
                frontier,
                kmeans_params.n_workers,
            )

            next_frontier = []
            for (node, _), groups in zip(frontier, splits):
                if len(groups) < 2:
                    continue
                for centroid, members in groups:
                    child = _Subtree(centroid=centroid, n_samples=len(members))
                    node.children.append(child)
                    if len(members) >= min_size:
                        next_frontier.append((child, members))
            frontier = next_frontier
            depth += 1

        tree = cls._from_subtree(root, samples.shape[1], branching_factor, max_depth)
        logger.info(
            f"Built vocabulary tree: B={branching_factor}, depth<={max_depth}, "
            f"{tree.num_nodes} nodes, {len(tree.leaves)} leaves from "
            f"{len(samples)} descriptors"
        )
        return tree

    @classmethod
    def _from_subtree(
        cls,
        root: _Subtree,
        dimension: int,
        branching_factor: int,
        max_depth: int,
    ) -> VocabularyTree:
        """Lay the build-time tree out in breadth-first arena order."""
        centroids: list[np.ndarray] = []
        parents: list[int] = []
        depths: list[int] = []
        first_child: list[int] = []
        n_children: list[int] = []

        queue: deque[tuple[_Subtree, int, int]] = deque([(root, -1, 0)])
        next_id = 1
        while queue:
            node, parent, depth = queue.popleft()
            centroids.append(
                np.zeros(dimension, dtype=np.float32) if node.centroid is None else node.centroid
            )
            parents.append(parent)
            depths.append(depth)
            node_id = len(parents) - 1

            if node.children:
                first_child.append(next_id)
                n_children.append(len(node.children))
                next_id += len(node.children)
                for child in node.children:
                    queue.append((child, node_id, depth + 1))
            else:
                first_child.append(0)
                n_children.append(0)

        return cls(
            centroids=np.vstack(centroids),
            parents=np.array(parents),
            depths=np.array(depths),
            first_child=np.array(first_child),
            n_children=np.array(n_children),
            branching_factor=branching_factor,
            max_depth=max_depth,
        )

    @property
    def num_nodes(self) -> int:
        return len(self._parents)

    @property
    def dimension(self) -> int:
        return self._centroids.shape[1]

    @property
    def leaves(self) -> np.ndarray:
        """Leaf node ids (the visual words), ascending."""
        return self._leaves

    @property
    def depth(self) -> int:
        """Depth of the deepest leaf."""
        return int(self._depths.max())

    def children(self, node_id: int) -> range:
        start = int(self._first_child[node_id])
        return range(start, start + int(self._n_children[node_id]))

    def is_leaf(self, node_id: int) -> bool:
        return self._n_children[node_id] == 0

    def centroid(self, node_id: int) -> np.ndarray:
        return self._centroids[node_id]

    def node(self, node_id: int) -> TreeNode:
        """Return a read-only view of one node."""
        if not 0 <= node_id < self.num_nodes:
            raise IndexError(f"Node id {node_id} out of range [0, {self.num_nodes})")
        return TreeNode(
            node_id=node_id,
            parent=int(self._parents[node_id]),
            depth=int(self._depths[node_id]),
            centroid=None if node_id == ROOT else self._centroids[node_id],
            children=tuple(self.children(node_id)),
        )

    def ancestors(self, node_id: int) -> list[int]:
        """Node ids from the root down to ``node_id`` inclusive."""
        path = []
        while node_id >= 0:
            path.append(node_id)
            node_id = int(self._parents[node_id])
        return path[::-1]

    def paths_batch(self, descriptors: np.ndarray) -> np.ndarray:
        """Greedy root-to-leaf descent for many descriptors.

        Args:
            descriptors: Descriptors, shape (N, D)

        Returns:
            Node ids along each path, shape (N, depth + 1); column 0 is the
            root, and rows that reach a shallower leaf are padded with -1
        """
        descriptors = np.asarray(descriptors, dtype=np.float32)
        n = len(descriptors)
        paths = np.full((n, self.depth + 1), -1, dtype=np.int64)
        if n == 0:
            return paths

        current = np.zeros(n, dtype=np.int64)
        paths[:, 0] = ROOT
        for level in range(1, self.depth + 1):
            active = np.flatnonzero(self._n_children[current] > 0)
            if len(active) == 0:
                break
            for node_id in np.unique(current[active]):
                rows = active[current[active] == node_id]
                start = self._first_child[node_id]
                stop = start + self._n_children[node_id]
                distances = cdist(descriptors[rows], self._centroids[start:stop], "sqeuclidean")
                current[rows] = start + np.argmin(distances, axis=1)
            paths[active, level] = current[active]
        return paths

    def quantize_batch(self, descriptors: np.ndarray) -> np.ndarray:
        """Leaf id reached by each descriptor, shape (N,)."""
        paths = self.paths_batch(descriptors)
        if len(paths) == 0:
            return np.empty(0, dtype=np.int64)
        depth_index = (paths >= 0).sum(axis=1) - 1
        return paths[np.arange(len(paths)), depth_index]

    def path(self, descriptor: np.ndarray) -> list[int]:
        """Node ids visited by one descriptor, root first."""
        row = self.paths_batch(np.asarray(descriptor).reshape(1, -1))[0]
        return [int(node_id) for node_id in row if node_id >= 0]

    def quantize(self, descriptor: np.ndarray) -> int:
        """Leaf id (visual word) reached by one descriptor."""
        return self.path(descriptor)[-1]

    def to_arrays(self) -> dict[str, np.ndarray]:
        """Arena arrays for serialization."""
        return {
            "tree_centroids": self._centroids,
            "tree_parents": self._parents,
            "tree_depths": self._depths,
            "tree_first_child": self._first_child,
            "tree_n_children": self._n_children,
            "tree_shape": np.array([self.branching_factor, self.max_depth]),
        }

    @classmethod
    def from_arrays(cls, data) -> VocabularyTree:
        """Rebuild a tree from :meth:`to_arrays` output (or a loaded npz)."""
        branching_factor, max_depth = (int(v) for v in data["tree_shape"])
        return cls(
            centroids=data["tree_centroids"],
            parents=data["tree_parents"],
            depths=data["tree_depths"],
            first_child=data["tree_first_child"],
            n_children=data["tree_n_children"],
            branching_factor=branching_factor,
            max_depth=max_depth,
        )

    def save(self, path: str | Path) -> None:
        """Save the tree to .npz file (the suffix is added if missing)."""
        path = npz_path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(path, **self.to_arrays())

    @classmethod
    def load(cls, path: str | Path) -> VocabularyTree:
        """Load a tree from .npz file."""
        with np.load(npz_path(path)) as data:
            return cls.from_arrays(data)
