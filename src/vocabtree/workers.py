"""Thread worker pool used for data-parallel training and batch search.

numpy and scipy release the GIL inside their distance and reduction kernels,
so threads give real parallelism for the chunked work done here while keeping
every result in shared memory for the sequential reduction step.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Sequence, TypeVar

import numpy as np

T = TypeVar("T")
R = TypeVar("R")

# Rows per assignment task; small enough to balance, large enough to amortize
# the per-task overhead.
DEFAULT_CHUNK_ROWS = 4096


def resolve_workers(n_workers: int | None) -> int:
    """Return the worker count to use (None means one per CPU)."""
    if n_workers is None:
        return os.cpu_count() or 1
    return max(1, n_workers)


def parallel_map(
    fn: Callable[[T], R],
    items: Sequence[T] | Iterable[T],
    n_workers: int | None = None,
) -> list[R]:
    """Apply ``fn`` to every item, preserving input order.

    Runs inline when a single worker is requested or there is at most one
    item. Exceptions raised by ``fn`` propagate to the caller.
    """
    items = list(items)
    workers = min(resolve_workers(n_workers), len(items))
    if workers <= 1:
        return [fn(item) for item in items]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(fn, items))


def row_chunks(n_rows: int, chunk_rows: int = DEFAULT_CHUNK_ROWS) -> list[slice]:
    """Split ``range(n_rows)`` into contiguous slices."""
    return [slice(start, min(start + chunk_rows, n_rows)) for start in range(0, n_rows, chunk_rows)]


def chunked_rows(
    fn: Callable[[np.ndarray], np.ndarray],
    rows: np.ndarray,
    n_workers: int | None = None,
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
) -> np.ndarray:
    """Apply a row-wise function over chunks of ``rows`` and concatenate."""
    if len(rows) <= chunk_rows:
        return fn(rows)
    parts = parallel_map(lambda s: fn(rows[s]), row_chunks(len(rows), chunk_rows), n_workers)
    return np.concatenate(parts)
