#!/usr/bin/env python3
"""Query a trained index with one or more descriptor files.

Usage:
    uv run python scripts/query_index.py --index data/index.npz query.npy
    uv run python scripts/query_index.py --metric l1 --normalization l1 q1.npy q2.npy
    uv run python scripts/query_index.py --merge view1.npy view2.npy view3.npy

Query files are .npy or binary matrix descriptor files. With --merge the
rankings of all queries are fused (best score per image), e.g. for several
views of the same object.
"""

import argparse
import sys
from pathlib import Path

from vocabtree import Normalization, SearchParams, SimilarityMetric, load_backend, merge_results
from vocabtree.io import load_descriptors


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Query a trained search index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "queries",
        type=Path,
        nargs="+",
        help="Query descriptor files",
    )
    parser.add_argument(
        "--index",
        type=Path,
        default=Path("data/index.npz"),
        help="Trained index file (default: data/index.npz)",
    )
    parser.add_argument(
        "--results",
        type=int,
        default=10,
        help="Results per query (default: 10)",
    )
    parser.add_argument(
        "--metric",
        choices=[metric.value for metric in SimilarityMetric],
        default=SimilarityMetric.DOT.value,
        help="Similarity metric (default: dot)",
    )
    parser.add_argument(
        "--normalization",
        choices=[norm.value for norm in Normalization],
        default=Normalization.L2.value,
        help="Vector normalization (default: l2)",
    )
    parser.add_argument(
        "--cutoff",
        type=int,
        default=0,
        help="Score only the N candidates sharing most words, 0 = all (default: 0)",
    )
    parser.add_argument(
        "--merge",
        action="store_true",
        help="Fuse the rankings of all queries into one",
    )
    args = parser.parse_args()

    if not args.index.exists():
        print(f"Error: Index file not found: {args.index}")
        print("Run scripts/build_index.py first.")
        sys.exit(1)

    index = load_backend(args.index)
    params = SearchParams(
        result_count=args.results,
        normalization=Normalization(args.normalization),
        similarity_metric=SimilarityMetric(args.metric),
        candidate_cutoff=args.cutoff,
    )

    queries = [load_descriptors(path) for path in args.queries]
    results = index.search_many(queries, params)

    print(f"Index: {args.index} ({index.kind}, {len(index)} images)")
    if args.merge:
        results = [merge_results(results, args.results)]
        names = ["merged"]
    else:
        names = [str(path) for path in args.queries]

    for name, result in zip(names, results):
        print()
        print(f"Query: {name}")
        if len(result) == 0:
            print("  No matches")
            continue
        for rank, (image_id, score) in enumerate(result, start=1):
            print(f"  {rank:3d}. image {image_id:6d}  score {score:.4f}")


if __name__ == "__main__":
    main()
