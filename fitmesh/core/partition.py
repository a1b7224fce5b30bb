"""Spatial element partitioning and partitioned reduction.

Elements are grouped by the grid cell of their centroid. Each partition
computes a partial result (energy, gradient or Hessian triplets) from the
same read-only coordinate snapshot; the partials are combined by summation
once every partition has finished.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np

from .constants import EPS_VOLUME
from .logging_utils import get_logger

logger = get_logger('fitmesh.partition')

R = TypeVar('R')


def partition_elements(centroids: np.ndarray, n_partitions: int = 1) -> List[np.ndarray]:
    """Partition element ids by spatial location.

    Strategy:
    1. Compute the bounding box of all element centroids
    2. Divide the first two axes into a ``g x g`` grid, ``g = ceil(sqrt(n))``
    3. Assign each element to the cell holding its centroid
    4. Fold cells onto ``n_partitions`` groups and drop empty ones

    Every element lands in exactly one partition.
    """
    centroids = np.asarray(centroids, dtype=np.float64)
    n_elem = centroids.shape[0]
    if n_partitions <= 1 or n_elem == 0:
        return [np.arange(n_elem, dtype=np.int64)]

    mins = centroids.min(axis=0)
    ranges = np.maximum(centroids.max(axis=0) - mins, EPS_VOLUME)
    grid_size = int(np.ceil(np.sqrt(n_partitions)))
    normalized = (centroids[:, :2] - mins[:2]) / ranges[:2] * grid_size
    cells = np.clip(np.floor(normalized).astype(np.int64), 0, grid_size - 1)
    cell_indices = (cells[:, 1] * grid_size + cells[:, 0]) % n_partitions

    partitions = [np.flatnonzero(cell_indices == k) for k in range(n_partitions)]
    partitions = [p for p in partitions if p.size]
    logger.debug('Partitioned %d elements into %d groups', n_elem, len(partitions))
    if logger.isEnabledFor(logging.DEBUG):
        for i, p in enumerate(partitions):
            logger.debug('  Partition %d: %d elements', i, p.size)
    return partitions


class PartitionedReducer:
    """Map a kernel over element partitions with a thread pool, then sum.

    ``kernel(element_ids)`` must only read shared state. ``reduce`` waits for
    every partition before combining, so callers never observe a partial sum.
    A single partition runs inline without a pool.
    """

    def __init__(self, partitions: Sequence[np.ndarray], max_workers: Optional[int] = None):
        self.partitions = list(partitions)
        self.max_workers = max_workers

    @property
    def n_partitions(self) -> int:
        return len(self.partitions)

    def map(self, kernel: Callable[[np.ndarray], R]) -> List[R]:
        if len(self.partitions) == 1:
            return [kernel(self.partitions[0])]
        workers = self.max_workers or len(self.partitions)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(kernel, part) for part in self.partitions]
            # result() re-raises worker exceptions in the caller
            return [f.result() for f in futures]

    def reduce(self, kernel: Callable[[np.ndarray], R], combine: Callable[[List[R]], R] = None) -> R:
        partials = self.map(kernel)
        if combine is not None:
            return combine(partials)
        total = partials[0]
        for part in partials[1:]:
            total = total + part
        return total


__all__ = ['partition_elements', 'PartitionedReducer']
