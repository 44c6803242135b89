"""On-disk formats for descriptor matrices and sparse BoW vectors."""

from .matrix_io import (
    load_bow,
    load_descriptors,
    load_matrix,
    npz_path,
    save_descriptors,
    write_bow,
    write_matrix,
)

__all__ = [
    "load_matrix",
    "write_matrix",
    "load_bow",
    "write_bow",
    "load_descriptors",
    "save_descriptors",
    "npz_path",
]
