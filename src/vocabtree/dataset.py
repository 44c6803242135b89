"""Descriptor datasets consumed by the search backends.

A dataset is any sized iterable of :class:`DescriptorImage`. Backends only
read it during ``train``; descriptors are never modified.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Protocol

import numpy as np

from .io import load_descriptors


@dataclass(frozen=True)
class DescriptorImage:
    """One dataset image represented by its local descriptors.

    Attributes:
        image_id: Stable non-negative image identifier
        descriptors: Descriptor set, shape (N, D); N may be 0
        path: Optional source file of the descriptors
    """

    image_id: int
    descriptors: np.ndarray
    path: Path | None = None

    def __len__(self) -> int:
        return len(self.descriptors)


class Dataset(Protocol):
    """Enumerable collection of images with descriptor sets."""

    def __iter__(self) -> Iterator[DescriptorImage]: ...

    def __len__(self) -> int: ...


class InMemoryDataset:
    """Dataset held entirely in memory."""

    def __init__(self, images: Iterable[DescriptorImage] = ()) -> None:
        self._images: dict[int, DescriptorImage] = {}
        for image in images:
            self.add(image)

    @classmethod
    def from_arrays(cls, descriptor_sets: Iterable[np.ndarray]) -> InMemoryDataset:
        """Build a dataset assigning ids 0..N-1 in order."""
        return cls(
            DescriptorImage(image_id=i, descriptors=np.asarray(d, dtype=np.float32))
            for i, d in enumerate(descriptor_sets)
        )

    def add(self, image: DescriptorImage) -> None:
        """Add an image.

        Raises:
            ValueError: If the id is negative or already present
        """
        if image.image_id < 0:
            raise ValueError(f"Image ids must be non-negative, got {image.image_id}")
        if image.image_id in self._images:
            raise ValueError(f"Duplicate image id: {image.image_id}")
        self._images[image.image_id] = image

    def image(self, image_id: int) -> DescriptorImage | None:
        return self._images.get(image_id)

    def random_images(self, count: int, seed: int | None = None) -> list[DescriptorImage]:
        """Return ``count`` distinct images chosen uniformly at random."""
        ids = sorted(self._images)
        rng = np.random.default_rng(seed)
        chosen = rng.choice(len(ids), size=min(count, len(ids)), replace=False)
        return [self._images[ids[i]] for i in chosen]

    def __len__(self) -> int:
        return len(self._images)

    def __iter__(self) -> Iterator[DescriptorImage]:
        return iter(self._images.values())


class DescriptorDirectory:
    """Dataset stored as descriptor files on disk.

    Layout::

        <root>/images.csv               #image_id,filename
        <root>/feats/descriptors/<filename>

    Descriptor files are ``.npy`` or binary matrix files. They are loaded
    lazily, one image at a time, so the directory can be iterated repeatedly.
    """

    def __init__(self, root: str | Path) -> None:
        """Initialize the dataset from its root directory.

        Args:
            root: Dataset root directory

        Raises:
            FileNotFoundError: If the root, index file or descriptor directory
                doesn't exist
            ValueError: If images.csv is empty or malformed
        """
        self.root = Path(root)
        self.index_path = self.root / "images.csv"
        self.descriptor_dir = self.root / "feats" / "descriptors"

        self._validate_paths()
        self._entries = self._load_index()

        if not self._entries:
            raise ValueError(f"No images found in {self.index_path}")

    def _validate_paths(self) -> None:
        if not self.root.exists():
            raise FileNotFoundError(f"Dataset root does not exist: {self.root}")

        if not self.index_path.exists():
            raise FileNotFoundError(
                f"images.csv not found: {self.index_path}\n"
                f"This file is required to list image ids and descriptor files."
            )

        if not self.descriptor_dir.exists():
            raise FileNotFoundError(
                f"Descriptor directory not found: {self.descriptor_dir}\n"
                f"Expected structure: {self.root}/feats/descriptors/"
            )

    def _load_index(self) -> list[tuple[int, str]]:
        """Parse images.csv.

        CSV format:
            #image_id,filename
            0,all_souls_000000.npy
            1,all_souls_000001.npy

        Returns:
            List of (image_id, filename) tuples in file order
        """
        entries = []
        seen: set[int] = set()

        with open(self.index_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                try:
                    id_str, filename = line.split(",")
                    image_id = int(id_str.strip())
                except ValueError as e:
                    raise ValueError(
                        f"Invalid line in {self.index_path}: '{line}'\n"
                        f"Expected format: image_id,filename"
                    ) from e

                if image_id < 0 or image_id in seen:
                    raise ValueError(
                        f"Invalid or duplicate image id {image_id} in {self.index_path}"
                    )
                seen.add(image_id)
                entries.append((image_id, filename.strip()))

        return entries

    def load(self, image_id: int) -> DescriptorImage:
        """Load one image's descriptors by id.

        Raises:
            KeyError: If the id isn't listed in images.csv
            FileNotFoundError: If its descriptor file is missing
        """
        for entry_id, filename in self._entries:
            if entry_id == image_id:
                return self._load_entry(entry_id, filename)
        raise KeyError(f"Unknown image id: {image_id}")

    def _load_entry(self, image_id: int, filename: str) -> DescriptorImage:
        path = self.descriptor_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Descriptor file not found: {path}")
        return DescriptorImage(image_id=image_id, descriptors=load_descriptors(path), path=path)

    @property
    def image_ids(self) -> list[int]:
        return [image_id for image_id, _ in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DescriptorImage]:
        for image_id, filename in self._entries:
            yield self._load_entry(image_id, filename)


def stack_descriptors(
    images: Iterable[DescriptorImage],
    max_samples: int = 0,
    random_state: int = 0,
) -> np.ndarray:
    """Merge every image's descriptors into one matrix for clustering.

    Args:
        images: Dataset images
        max_samples: Keep a uniform random subset of this many rows (0 = all)
        random_state: Seed for the subset

    Returns:
        Stacked descriptors, shape (total, D) float32
    """
    blocks = [np.asarray(image.descriptors, dtype=np.float32) for image in images]
    blocks = [block for block in blocks if len(block) > 0]
    if not blocks:
        return np.empty((0, 0), dtype=np.float32)

    stacked = np.vstack(blocks)
    if 0 < max_samples < len(stacked):
        rng = np.random.default_rng(random_state)
        rows = np.sort(rng.choice(len(stacked), size=max_samples, replace=False))
        stacked = stacked[rows]
    return stacked
