#!/usr/bin/env python3
"""Train a search index on a descriptor dataset.

This script builds one of the three retrieval backends by:
1. Loading every image's descriptors from a dataset directory
2. Clustering (a sample of) the descriptors into a visual vocabulary
3. Indexing every image and computing IDF weights
4. Saving the trained index for scripts/query_index.py

Usage:
    uv run python scripts/build_index.py --dataset data/dataset
    uv run python scripts/build_index.py --backend inverted_index --vocabulary-size 4096
    uv run python scripts/build_index.py --backend vocab_tree --branching-factor 10 --max-depth 5

The dataset directory must contain images.csv and feats/descriptors/
(see scripts/extract_features.py). The index is saved to data/index.npz by
default.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from vocabtree import (
    DescriptorDirectory,
    FlatTrainParams,
    KMeansParams,
    SeedingMethod,
    VocabTreeTrainParams,
    create_backend,
)
from vocabtree.io import write_bow
from vocabtree.search import available_backends


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Train a visual vocabulary search index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dataset",
        type=Path,
        default=Path("data/dataset"),
        help="Dataset directory (default: data/dataset)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/index.npz"),
        help="Output index file (default: data/index.npz)",
    )
    parser.add_argument(
        "--backend",
        choices=available_backends(),
        default="vocab_tree",
        help="Index type (default: vocab_tree)",
    )
    parser.add_argument(
        "--vocabulary-size",
        type=int,
        default=1000,
        help="Visual words for bow / inverted_index (default: 1000)",
    )
    parser.add_argument(
        "--branching-factor",
        type=int,
        default=10,
        help="Children per node for vocab_tree (default: 10)",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=4,
        help="Tree depth for vocab_tree (default: 4)",
    )
    parser.add_argument(
        "--max-samples",
        type=int,
        default=0,
        help="Descriptors sampled for clustering, 0 = all (default: 0)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=25,
        help="k-means iterations per clustering (default: 25)",
    )
    parser.add_argument(
        "--seeding",
        choices=[method.value for method in SeedingMethod],
        default=SeedingMethod.KMEANS_PP.value,
        help="k-means seeding (default: kmeans++)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads (default: one per CPU)",
    )
    parser.add_argument(
        "--export-bow",
        type=Path,
        default=None,
        help="Also write each image's TF-IDF vector to <dir>/<image_id>.bow",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show library log messages",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if not args.dataset.exists():
        print(f"Error: Dataset directory not found: {args.dataset}")
        print("Run scripts/extract_features.py first.")
        sys.exit(1)

    kmeans_params = KMeansParams(
        max_iterations=args.max_iterations,
        seeding=SeedingMethod(args.seeding),
        n_workers=args.workers,
    )
    if args.backend == "vocab_tree":
        train_params = VocabTreeTrainParams(
            branching_factor=args.branching_factor,
            max_depth=args.max_depth,
            max_samples=args.max_samples,
            kmeans=kmeans_params,
        )
    else:
        train_params = FlatTrainParams(
            vocabulary_size=args.vocabulary_size,
            max_samples=args.max_samples,
            kmeans=kmeans_params,
        )

    print("=" * 60)
    print("Search Index Training")
    print("=" * 60)
    print(f"Dataset: {args.dataset}")
    print(f"Output file: {args.output}")
    print(f"Backend: {args.backend}")
    if args.backend == "vocab_tree":
        print(f"Branching factor: {args.branching_factor}")
        print(f"Max depth: {args.max_depth}")
    else:
        print(f"Visual words: {args.vocabulary_size}")
    if args.max_samples:
        print(f"Max samples: {args.max_samples}")
    print()

    dataset = DescriptorDirectory(args.dataset)
    print(f"Found {len(dataset)} images")

    index = create_backend(args.backend)
    start_time = time.time()
    index.train(dataset, train_params)
    elapsed = time.time() - start_time

    index.save(args.output)

    if args.export_bow:
        for image_id in index.image_ids.tolist():
            document = index.document(image_id)
            write_bow(args.export_bow / f"{image_id}.bow", document.words, document.weights)
        print(f"Exported {len(index)} BoW vectors to {args.export_bow}")

    print()
    print("=" * 60)
    print(f"Training complete in {elapsed:.1f}s")
    print(f"  Indexed images: {len(index)}")
    print(f"Index saved to: {args.output}")
    print("=" * 60)


if __name__ == "__main__":
    main()
