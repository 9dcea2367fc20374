"""Nearest-neighbor strategy interface and the distance ratio test."""

from abc import ABC, abstractmethod
from collections.abc import Iterable

import numpy as np

from ..config import MatchingMethod
from ..regions import RegionSet
from ..scene import DescriptorType


def empty_matches() -> np.ndarray:
    """Correspondence array with no rows, shape (0, 2), int64."""
    return np.zeros((0, 2), dtype=np.int64)


def ratio_filter(
    indices: np.ndarray, distances: np.ndarray, ratio: float
) -> np.ndarray:
    """Keep the nearest neighbors that pass the distance ratio test.

    A query i is kept iff ``distances[i, 0] / distances[i, 1] < ratio``,
    evaluated as ``distances[i, 0] < ratio * distances[i, 1]`` so that two
    equidistant zero-distance candidates are rejected as ambiguous. Rows
    with a missing neighbor (index -1) are dropped.

    Args:
        indices: Nearest and second nearest database indices per query, shape (N, 2).
        distances: Matching distances, shape (N, 2), ascending per row.
        ratio: Ratio threshold.

    Returns:
        Correspondences (query index, database index), shape (M, 2), int64.
    """
    if len(indices) == 0:
        return empty_matches()
    valid = (indices[:, 0] >= 0) & (indices[:, 1] >= 0) & np.isfinite(distances[:, 1])
    keep = valid & (distances[:, 0] < ratio * distances[:, 1])
    query = np.nonzero(keep)[0]
    return np.stack([query, indices[keep, 0]], axis=1).astype(np.int64)


def exact_l2_pairs(
    query: np.ndarray, database: np.ndarray, indices: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Recompute exact L2 distances for approximate neighbor candidates.

    Approximate indexes report distances in their own units (squared,
    quantized, ...). Re-ranking the two candidates by exact distance keeps
    the ratio test uniform across strategies.

    Args:
        query: Query descriptors, shape (N, D), float32.
        database: Database descriptors, shape (M, D), float32.
        indices: Candidate database indices per query, shape (N, 2); -1 = missing.

    Returns:
        Tuple of (indices, distances), both shape (N, 2), sorted ascending
        by distance per row. Missing candidates get distance inf.
    """
    indices = indices.astype(np.int64, copy=True)
    safe = np.where(indices >= 0, indices, 0)
    diffs = database[safe] - query[:, None, :]
    distances = np.linalg.norm(diffs, axis=2)
    distances[indices < 0] = np.inf

    swap = distances[:, 1] < distances[:, 0]
    indices[swap] = indices[swap][:, ::-1]
    distances[swap] = distances[swap][:, ::-1]
    return indices, distances


def as_float32(descriptors: np.ndarray) -> np.ndarray:
    """Contiguous float32 view of scalar descriptors."""
    return np.ascontiguousarray(descriptors, dtype=np.float32)


class NearestNeighborMatcher(ABC):
    """Nearest-neighbor strategy used to match the descriptors of two views.

    Subclasses implement search(); match_pair() adds the guards for
    degenerate region sets and the ratio test.
    """

    method: MatchingMethod
    descriptor_type: DescriptorType
    metric: str

    def prepare(self, view_ids: Iterable[int], provider) -> None:
        """Precompute per-view data before pairs are matched (optional hook).

        Args:
            view_ids: Views referenced by the pair set.
            provider: Region provider used to fetch region sets.
        """

    @abstractmethod
    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        """Find the two nearest descriptors of B for every descriptor of A.

        Args:
            region_a: Query region set (at least one descriptor).
            region_b: Database region set (at least two descriptors).

        Returns:
            Tuple of (indices, distances), both shape (len(A), 2), ordered
            nearest first. Missing neighbors have index -1.
        """

    def match_pair(
        self, region_a: RegionSet, region_b: RegionSet, ratio: float
    ) -> np.ndarray:
        """Putative correspondences from A to B passing the ratio test.

        Args:
            region_a: Region set of the first (smaller id) view.
            region_b: Region set of the second view.
            ratio: Ratio threshold.

        Returns:
            Correspondences (index in A, index in B), shape (M, 2), int64.
            Empty when A has no descriptors or B has fewer than two.
        """
        if len(region_a) == 0 or len(region_b) < 2:
            return empty_matches()
        indices, distances = self.search(region_a, region_b)
        return ratio_filter(indices, distances, ratio)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(method={self.method.value})"
