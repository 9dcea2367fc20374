"""Exact brute-force strategies (L2 with torch, Hamming with OpenCV)."""

import cv2
import numpy as np
import torch

from ..config import MatchingMethod
from ..regions import RegionSet
from ..scene import DescriptorType
from .base import NearestNeighborMatcher, as_float32


class BruteForceL2Matcher(NearestNeighborMatcher):
    """Exact Euclidean nearest neighbors from the full distance matrix.

    Queries are processed in chunks so the distance matrix stays bounded
    at chunk_size x len(B).

    Args:
        chunk_size: Number of query descriptors per distance matrix block.
        device: Torch device the distances are computed on.
    """

    method = MatchingMethod.BRUTEFORCEL2
    descriptor_type = DescriptorType.SCALAR
    metric = "l2"

    def __init__(self, chunk_size: int = 4096, device: str = "cpu"):
        self.chunk_size = chunk_size
        self.device = device

    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        query = torch.from_numpy(as_float32(region_a.descriptors)).to(self.device)
        database = torch.from_numpy(as_float32(region_b.descriptors)).to(self.device)

        all_distances = []
        all_indices = []
        with torch.no_grad():
            for start in range(0, query.shape[0], self.chunk_size):
                block = query[start : start + self.chunk_size]
                # Equal distances must compare equal: no matmul expansion
                dist = torch.cdist(
                    block, database, compute_mode="donot_use_mm_for_euclid_dist"
                )
                values, indices = torch.topk(dist, k=2, dim=1, largest=False, sorted=True)
                all_distances.append(values.cpu())
                all_indices.append(indices.cpu())

        distances = torch.cat(all_distances).numpy().astype(np.float64)
        indices = torch.cat(all_indices).numpy().astype(np.int64)
        return indices, distances


class BruteForceHammingMatcher(NearestNeighborMatcher):
    """Exact Hamming nearest neighbors of packed binary descriptors."""

    method = MatchingMethod.BRUTEFORCEHAMMING
    descriptor_type = DescriptorType.BINARY
    metric = "hamming"

    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        query = np.ascontiguousarray(region_a.descriptors, dtype=np.uint8)
        database = np.ascontiguousarray(region_b.descriptors, dtype=np.uint8)

        matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        knn = matcher.knnMatch(query, database, k=2)

        n = query.shape[0]
        indices = np.full((n, 2), -1, dtype=np.int64)
        distances = np.full((n, 2), np.inf, dtype=np.float64)
        for neighbors in knn:
            for rank, m in enumerate(neighbors[:2]):
                indices[m.queryIdx, rank] = m.trainIdx
                distances[m.queryIdx, rank] = m.distance
        return indices, distances
