"""Shared fixtures: small seeded synthetic descriptor datasets."""

import numpy as np
import pytest

from vocabtree import DescriptorImage, InMemoryDataset

# Two far-apart pairs of nearby blobs, so a binary tree splits pairs first
BLOB_CENTERS = np.array([[0.0, 0.0], [0.0, 8.0], [60.0, 0.0], [60.0, 8.0]], dtype=np.float32)


def make_blob_samples(rng: np.random.Generator, per_blob: int = 25, noise: float = 0.5) -> np.ndarray:
    """Samples drawn around BLOB_CENTERS, grouped by blob."""
    blocks = [center + rng.normal(scale=noise, size=(per_blob, 2)) for center in BLOB_CENTERS]
    return np.vstack(blocks).astype(np.float32)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(0)


@pytest.fixture
def blob_samples(rng: np.random.Generator) -> np.ndarray:
    """100 two-dimensional descriptors in 4 tight clusters."""
    return make_blob_samples(rng)


@pytest.fixture
def blob_dataset(blob_samples: np.ndarray) -> InMemoryDataset:
    """The 100 blob descriptors shuffled into 5 images of 20."""
    order = np.random.default_rng(1).permutation(len(blob_samples))
    shuffled = blob_samples[order]
    return InMemoryDataset.from_arrays(np.split(shuffled, 5))


@pytest.fixture
def word_dataset() -> InMemoryDataset:
    """Images 1, 2, 3 whose descriptors sit exactly on points P0..P3.

    Image 1 covers {P0, P1}, image 2 {P1, P2}, image 3 {P2, P3}.
    """
    points = np.array([[0.0, 0.0], [10.0, 0.0], [20.0, 0.0], [30.0, 0.0]], dtype=np.float32)
    images = [
        DescriptorImage(image_id=1, descriptors=points[[0, 0, 1, 1]]),
        DescriptorImage(image_id=2, descriptors=points[[1, 1, 2, 2]]),
        DescriptorImage(image_id=3, descriptors=points[[2, 2, 3, 3]]),
    ]
    return InMemoryDataset(images)


@pytest.fixture
def word_points() -> np.ndarray:
    return np.array([[0.0, 0.0], [10.0, 0.0], [20.0, 0.0], [30.0, 0.0]], dtype=np.float32)


@pytest.fixture
def retrieval_dataset() -> InMemoryDataset:
    """12 images of 16-D descriptors, each drawn from its own mix of 24 blobs."""
    rng = np.random.default_rng(42)
    centers = rng.normal(scale=10.0, size=(24, 16))
    descriptor_sets = []
    for i in range(12):
        blobs = [(i + offset) % 24 for offset in (0, 1, 2, 5)]
        counts = rng.integers(3, 7, size=len(blobs))
        rows = np.repeat(blobs, counts)
        descriptor_sets.append(centers[rows] + rng.normal(scale=0.3, size=(len(rows), 16)))
    return InMemoryDataset.from_arrays(descriptor_sets)
