#!/usr/bin/env python3
"""Compare the three search backends on a synthetic dataset.

Each synthetic "image" draws its descriptors from a few of many Gaussian
blobs, and each query is a noisy copy of one dataset image. The demo
reports how often the source image is ranked first, plus timings.

Usage:
    uv run python examples/backend_comparison_demo.py
"""

import time

import numpy as np

from vocabtree import (
    BagOfWords,
    FlatTrainParams,
    InMemoryDataset,
    InvertedIndex,
    KMeansParams,
    SearchParams,
    VocabTree,
    VocabTreeTrainParams,
)


def make_dataset(
    rng: np.random.Generator,
    n_images: int,
    n_blobs: int,
    dimension: int,
    descriptors_per_image: int,
) -> InMemoryDataset:
    """Generate images whose descriptors come from a few random blobs."""
    centers = rng.normal(scale=10.0, size=(n_blobs, dimension))
    descriptor_sets = []
    for _ in range(n_images):
        blobs = rng.choice(n_blobs, size=5, replace=False)
        picks = rng.choice(blobs, size=descriptors_per_image)
        descriptor_sets.append(centers[picks] + rng.normal(size=(descriptors_per_image, dimension)))
    return InMemoryDataset.from_arrays(descriptor_sets)


def main() -> None:
    """Run the backend comparison demo."""
    # Configuration
    n_images = 300
    n_blobs = 200
    dimension = 32
    descriptors_per_image = 60
    n_queries = 50

    rng = np.random.default_rng(7)
    print("Generating synthetic dataset...")
    dataset = make_dataset(rng, n_images, n_blobs, dimension, descriptors_per_image)

    query_ids = rng.choice(n_images, size=n_queries, replace=False)
    queries = []
    for image_id in query_ids:
        descriptors = dataset.image(int(image_id)).descriptors
        queries.append(descriptors + rng.normal(scale=0.3, size=descriptors.shape).astype(np.float32))

    kmeans = KMeansParams(max_iterations=20, random_state=0)
    backends = [
        ("bow", BagOfWords(), FlatTrainParams(vocabulary_size=256, kmeans=kmeans)),
        ("inverted_index", InvertedIndex(), FlatTrainParams(vocabulary_size=256, kmeans=kmeans)),
        ("vocab_tree", VocabTree(), VocabTreeTrainParams(branching_factor=8, max_depth=3, kmeans=kmeans)),
    ]
    params = SearchParams(result_count=5)

    print(f"Images: {n_images}, queries: {n_queries}, descriptor dim: {dimension}")
    print()
    print(f"{'Backend':<16} {'Train (s)':>10} {'Search (ms)':>12} {'Top-1':>7}")
    print("-" * 50)

    for name, index, train_params in backends:
        start = time.time()
        index.train(dataset, train_params)
        train_time = time.time() - start

        start = time.time()
        results = index.search_many(queries, params)
        search_ms = 1000 * (time.time() - start) / n_queries

        hits = sum(
            1 for image_id, result in zip(query_ids, results) if len(result) and result[0][0] == image_id
        )
        print(f"{name:<16} {train_time:>10.2f} {search_ms:>12.2f} {hits / n_queries:>7.0%}")

    print()
    print("Done!")


if __name__ == "__main__":
    main()
