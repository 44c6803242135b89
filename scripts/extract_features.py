#!/usr/bin/env python3
"""Extract SIFT descriptors from a folder of images into a dataset directory.

This script builds the on-disk dataset layout read by DescriptorDirectory:
1. Detecting SIFT keypoints in every image of the input folder
2. Saving each image's descriptors to feats/descriptors/<name>.npy
3. Writing images.csv mapping image ids to descriptor files

Usage:
    uv run python scripts/extract_features.py --images data/oxford/jpg
    uv run python scripts/extract_features.py --images photos/ --output data/photos --max-features 500

Image ids are assigned 0..N-1 in sorted filename order.
"""

import argparse
import sys
import time
from pathlib import Path

from vocabtree.features import SiftExtractor, SiftParams
from vocabtree.io import save_descriptors

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff"}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Extract SIFT descriptors into a dataset directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--images",
        type=Path,
        required=True,
        help="Folder containing the images",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/dataset"),
        help="Dataset directory to create (default: data/dataset)",
    )
    parser.add_argument(
        "--max-features",
        type=int,
        default=0,
        help="SIFT keypoints kept per image, 0 = all (default: 0)",
    )
    parser.add_argument(
        "--contrast-threshold",
        type=float,
        default=0.04,
        help="SIFT contrast threshold (default: 0.04)",
    )
    parser.add_argument(
        "--edge-threshold",
        type=float,
        default=11.0,
        help="SIFT edge threshold (default: 11)",
    )
    args = parser.parse_args()

    if not args.images.exists():
        print(f"Error: Image folder not found: {args.images}")
        sys.exit(1)

    image_paths = sorted(p for p in args.images.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    if not image_paths:
        print(f"Error: No images found in {args.images}")
        sys.exit(1)

    print("=" * 60)
    print("SIFT Feature Extraction")
    print("=" * 60)
    print(f"Images: {args.images} ({len(image_paths)} files)")
    print(f"Output: {args.output}")
    print(f"Max features: {args.max_features or 'all'}")
    print()

    extractor = SiftExtractor(
        SiftParams(
            max_features=args.max_features,
            contrast_threshold=args.contrast_threshold,
            edge_threshold=args.edge_threshold,
        )
    )
    descriptor_dir = args.output / "feats" / "descriptors"
    descriptor_dir.mkdir(parents=True, exist_ok=True)

    start_time = time.time()
    lines = ["#image_id,filename"]
    total = 0
    for image_id, image_path in enumerate(image_paths):
        descriptors = extractor.extract_file(image_path)
        filename = f"{image_path.stem}.npy"
        save_descriptors(descriptor_dir / filename, descriptors)
        lines.append(f"{image_id},{filename}")
        total += len(descriptors)

        if (image_id + 1) % 50 == 0:
            print(f"  {image_id + 1}/{len(image_paths)} images, {total} descriptors")

    (args.output / "images.csv").write_text("\n".join(lines) + "\n")

    elapsed = time.time() - start_time
    print()
    print("=" * 60)
    print(f"Extracted {total} descriptors from {len(image_paths)} images in {elapsed:.1f}s")
    print(f"  Mean per image: {total / len(image_paths):.0f}")
    print(f"  Dataset: {args.output}")
    print("=" * 60)


if __name__ == "__main__":
    main()
