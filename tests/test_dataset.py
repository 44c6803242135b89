"""Tests for descriptor datasets."""

from pathlib import Path

import numpy as np
import pytest

from vocabtree import DescriptorDirectory, DescriptorImage, InMemoryDataset, stack_descriptors
from vocabtree.io import save_descriptors, write_matrix


@pytest.fixture
def mock_dataset(tmp_path: Path) -> Path:
    """Create a mock descriptor dataset directory for testing.

    Args:
        tmp_path: Pytest temporary directory fixture

    Returns:
        Path to the dataset root
    """
    root = tmp_path / "oxford"
    descriptor_dir = root / "feats" / "descriptors"
    descriptor_dir.mkdir(parents=True)

    # Image i has i + 2 descriptors filled with the value i
    for image_id in range(3):
        descriptors = np.full((image_id + 2, 8), image_id, dtype=np.float32)
        if image_id == 1:
            write_matrix(descriptor_dir / "image_1.bin", descriptors)
        else:
            save_descriptors(descriptor_dir / f"image_{image_id}.npy", descriptors)

    csv_content = "#image_id,filename\n"
    csv_content += "0,image_0.npy\n"
    csv_content += "1,image_1.bin\n"
    csv_content += "2,image_2.npy\n"
    (root / "images.csv").write_text(csv_content)

    return root


class TestDescriptorDirectory:
    """Test suite for DescriptorDirectory."""

    def test_initialization(self, mock_dataset: Path):
        """Test that the dataset indexes every listed image."""
        dataset = DescriptorDirectory(mock_dataset)

        assert dataset.root == mock_dataset
        assert len(dataset) == 3
        assert dataset.image_ids == [0, 1, 2]

    def test_initialization_missing_root(self, tmp_path: Path):
        """Test that initialization fails with a missing root."""
        with pytest.raises(FileNotFoundError, match="Dataset root does not exist"):
            DescriptorDirectory(tmp_path / "nonexistent")

    def test_initialization_missing_csv(self, tmp_path: Path):
        """Test that initialization fails when images.csv is missing."""
        (tmp_path / "feats" / "descriptors").mkdir(parents=True)

        with pytest.raises(FileNotFoundError, match="images.csv not found"):
            DescriptorDirectory(tmp_path)

    def test_initialization_missing_descriptor_dir(self, tmp_path: Path):
        """Test that initialization fails when the descriptor directory is missing."""
        (tmp_path / "images.csv").write_text("#image_id,filename\n0,a.npy\n")

        with pytest.raises(FileNotFoundError, match="Descriptor directory not found"):
            DescriptorDirectory(tmp_path)

    def test_empty_csv(self, mock_dataset: Path):
        """Test that a CSV without images is rejected."""
        (mock_dataset / "images.csv").write_text("#image_id,filename\n")

        with pytest.raises(ValueError, match="No images found"):
            DescriptorDirectory(mock_dataset)

    def test_malformed_csv(self, mock_dataset: Path):
        """Test that a malformed line is rejected."""
        (mock_dataset / "images.csv").write_text("#image_id,filename\nzero,image_0.npy\n")

        with pytest.raises(ValueError, match="Invalid line"):
            DescriptorDirectory(mock_dataset)

    def test_duplicate_ids(self, mock_dataset: Path):
        """Test that duplicate image ids are rejected."""
        (mock_dataset / "images.csv").write_text("0,image_0.npy\n0,image_2.npy\n")

        with pytest.raises(ValueError, match="duplicate image id"):
            DescriptorDirectory(mock_dataset)

    def test_iteration(self, mock_dataset: Path):
        """Test iterating loads every image in file order, from both formats."""
        images = list(DescriptorDirectory(mock_dataset))

        assert [image.image_id for image in images] == [0, 1, 2]
        assert [len(image) for image in images] == [2, 3, 4]
        assert images[1].descriptors.dtype == np.float32
        assert (images[2].descriptors == 2).all()
        assert images[0].path.name == "image_0.npy"

    def test_reiterable(self, mock_dataset: Path):
        """Test that the dataset can be iterated more than once."""
        dataset = DescriptorDirectory(mock_dataset)

        assert len(list(dataset)) == len(list(dataset)) == 3

    def test_load_by_id(self, mock_dataset: Path):
        """Test loading one image by id."""
        image = DescriptorDirectory(mock_dataset).load(1)

        assert image.image_id == 1
        assert image.descriptors.shape == (3, 8)

    def test_load_unknown_id(self, mock_dataset: Path):
        """Test that unknown ids raise KeyError."""
        with pytest.raises(KeyError):
            DescriptorDirectory(mock_dataset).load(42)

    def test_missing_descriptor_file(self, mock_dataset: Path):
        """Test that a listed but missing file fails on load."""
        (mock_dataset / "feats" / "descriptors" / "image_2.npy").unlink()
        dataset = DescriptorDirectory(mock_dataset)

        with pytest.raises(FileNotFoundError, match="Descriptor file not found"):
            dataset.load(2)


class TestInMemoryDataset:
    """Test suite for InMemoryDataset."""

    def test_from_arrays_assigns_ids(self):
        """Test that ids are assigned in order."""
        dataset = InMemoryDataset.from_arrays([np.zeros((2, 4)), np.ones((3, 4))])

        assert len(dataset) == 2
        assert [image.image_id for image in dataset] == [0, 1]
        assert dataset.image(1).descriptors.dtype == np.float32

    def test_rejects_duplicates(self):
        """Test that adding the same id twice fails."""
        dataset = InMemoryDataset([DescriptorImage(0, np.zeros((1, 2)))])

        with pytest.raises(ValueError, match="Duplicate"):
            dataset.add(DescriptorImage(0, np.ones((1, 2))))

    def test_rejects_negative_ids(self):
        """Test that ids must be non-negative."""
        with pytest.raises(ValueError):
            InMemoryDataset([DescriptorImage(-1, np.zeros((1, 2)))])

    def test_random_images(self):
        """Test sampling distinct images."""
        dataset = InMemoryDataset.from_arrays([np.zeros((1, 2))] * 10)

        sample = dataset.random_images(4, seed=0)

        assert len(sample) == 4
        assert len({image.image_id for image in sample}) == 4
        assert [i.image_id for i in dataset.random_images(4, seed=0)] == [i.image_id for i in sample]
        assert len(dataset.random_images(50, seed=0)) == 10

    def test_unknown_image(self):
        """Test that unknown ids return None."""
        assert InMemoryDataset().image(3) is None


class TestStackDescriptors:
    """Test suite for stack_descriptors()."""

    def test_stacks_all(self):
        """Test merging every image's descriptors."""
        dataset = InMemoryDataset.from_arrays([np.zeros((2, 4)), np.empty((0, 4)), np.ones((3, 4))])

        stacked = stack_descriptors(dataset)

        assert stacked.shape == (5, 4)
        assert stacked.dtype == np.float32

    def test_subsample(self):
        """Test keeping a random subset of rows."""
        rows = np.arange(100, dtype=np.float32).reshape(50, 2)
        dataset = InMemoryDataset.from_arrays([rows])

        subset = stack_descriptors(dataset, max_samples=10, random_state=0)

        assert subset.shape == (10, 2)
        assert len(np.unique(subset[:, 0])) == 10
        np.testing.assert_array_equal(subset, stack_descriptors(dataset, max_samples=10, random_state=0))

    def test_no_descriptors(self):
        """Test that a dataset without descriptors gives an empty matrix."""
        assert stack_descriptors(InMemoryDataset()).size == 0
