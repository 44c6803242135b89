"""Binary matrix and sparse BoW file formats.

Matrix files start with a fixed 24-byte little-endian header followed by the
row-major element data:

    uint64 elem_size   bytes per element (all channels)
    uint64 elem_type   OpenCV type code (depth + 8 * (channels - 1))
    uint32 rows
    uint32 cols

BoW files store a ``uint32`` pair count followed by packed
``(uint32 word, float32 weight)`` pairs.
"""

from __future__ import annotations

import struct
from pathlib import Path

import numpy as np

_HEADER = struct.Struct("<QQII")
_BOW_COUNT = struct.Struct("<I")
_BOW_PAIR = np.dtype([("word", "<u4"), ("weight", "<f4")])

# OpenCV depth codes (CV_8U ... CV_64F)
_DEPTH_TO_DTYPE: dict[int, np.dtype] = {
    0: np.dtype(np.uint8),
    1: np.dtype(np.int8),
    2: np.dtype(np.uint16),
    3: np.dtype(np.int16),
    4: np.dtype(np.int32),
    5: np.dtype(np.float32),
    6: np.dtype(np.float64),
}
_DTYPE_TO_DEPTH = {dtype: depth for depth, dtype in _DEPTH_TO_DTYPE.items()}


def write_matrix(path: str | Path, data: np.ndarray) -> None:
    """Write a 2D single-channel matrix.

    Args:
        path: Output file path (parent directories are created)
        data: Matrix, shape (rows, cols)

    Raises:
        ValueError: If the array is not 2D or has an unsupported dtype
    """
    data = np.asarray(data)
    if data.ndim == 1:
        data = data.reshape(1, -1)
    if data.ndim != 2:
        raise ValueError(f"Expected a 2D matrix, got shape {data.shape}")

    dtype = data.dtype.newbyteorder("=")
    if dtype not in _DTYPE_TO_DEPTH:
        raise ValueError(f"Unsupported matrix dtype: {data.dtype}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows, cols = data.shape
    with open(path, "wb") as f:
        f.write(_HEADER.pack(dtype.itemsize, _DTYPE_TO_DEPTH[dtype], rows, cols))
        f.write(np.ascontiguousarray(data, dtype=dtype.newbyteorder("<")).tobytes())


def load_matrix(path: str | Path) -> np.ndarray:
    """Read a matrix written by :func:`write_matrix`.

    Args:
        path: Input file path

    Returns:
        Matrix, shape (rows, cols)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the header is invalid or the file is truncated
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Matrix file not found: {path}")

    raw = path.read_bytes()
    if len(raw) < _HEADER.size:
        raise ValueError(f"Truncated matrix header in {path}")

    elem_size, elem_type, rows, cols = _HEADER.unpack_from(raw)
    depth = elem_type & 7
    channels = (elem_type >> 3) + 1
    if depth not in _DEPTH_TO_DTYPE:
        raise ValueError(f"Unsupported element type {elem_type} in {path}")

    dtype = _DEPTH_TO_DTYPE[depth].newbyteorder("<")
    if elem_size != dtype.itemsize * channels:
        raise ValueError(
            f"Element size {elem_size} doesn't match type {elem_type} in {path}"
        )

    n_bytes = rows * cols * elem_size
    payload = raw[_HEADER.size:_HEADER.size + n_bytes]
    if len(payload) != n_bytes:
        raise ValueError(
            f"Truncated matrix data in {path}: expected {n_bytes} bytes, "
            f"got {len(payload)}"
        )

    data = np.frombuffer(payload, dtype=dtype).astype(dtype.newbyteorder("="))
    return data.reshape(rows, cols * channels)


def write_bow(path: str | Path, words: np.ndarray, weights: np.ndarray) -> None:
    """Write a sparse BoW vector as (word, weight) pairs.

    Args:
        path: Output file path
        words: Visual word ids, shape (M,)
        weights: Weight per word, shape (M,)
    """
    words = np.asarray(words)
    weights = np.asarray(weights)
    if words.shape != weights.shape:
        raise ValueError(
            f"words and weights must match, got {words.shape} and {weights.shape}"
        )

    pairs = np.empty(len(words), dtype=_BOW_PAIR)
    pairs["word"] = words
    pairs["weight"] = weights

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(_BOW_COUNT.pack(len(pairs)))
        f.write(pairs.tobytes())


def load_bow(path: str | Path) -> tuple[np.ndarray, np.ndarray]:
    """Read a sparse BoW vector written by :func:`write_bow`.

    Returns:
        Tuple of (words uint32, weights float32)
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"BoW file not found: {path}")

    raw = path.read_bytes()
    if len(raw) < _BOW_COUNT.size:
        raise ValueError(f"Truncated BoW header in {path}")

    (count,) = _BOW_COUNT.unpack_from(raw)
    payload = raw[_BOW_COUNT.size:]
    if len(payload) != count * _BOW_PAIR.itemsize:
        raise ValueError(f"Truncated BoW data in {path}: expected {count} pairs")

    pairs = np.frombuffer(payload, dtype=_BOW_PAIR)
    return pairs["word"].astype(np.uint32), pairs["weight"].astype(np.float32)


def load_descriptors(path: str | Path) -> np.ndarray:
    """Load a descriptor matrix from ``.npy`` or the binary matrix format.

    Returns:
        Descriptors, shape (N, D) float32
    """
    path = Path(path)
    if path.suffix == ".npy":
        if not path.exists():
            raise FileNotFoundError(f"Descriptor file not found: {path}")
        descriptors = np.load(path, allow_pickle=False)
    else:
        descriptors = load_matrix(path)

    if descriptors.ndim != 2:
        raise ValueError(f"Descriptors in {path} must be 2D, got shape {descriptors.shape}")
    return descriptors.astype(np.float32, copy=False)


def save_descriptors(path: str | Path, descriptors: np.ndarray) -> None:
    """Save descriptors as ``.npy`` or the binary matrix format by suffix."""
    path = Path(path)
    if path.suffix == ".npy":
        path.parent.mkdir(parents=True, exist_ok=True)
        np.save(path, np.asarray(descriptors))
    else:
        write_matrix(path, descriptors)


def npz_path(path: str | Path) -> Path:
    """Return the file ``np.savez`` writes for ``path``.

    numpy appends ``.npz`` when the name doesn't already end with it; loaders
    resolve the same name so ``save("index")`` pairs with ``load("index")``.
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_name(path.name + ".npz")
    return path
