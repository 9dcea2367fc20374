"""Approximate L2 strategies: HNSW graphs (faiss) and KD-trees (FLANN)."""

import cv2
import faiss
import numpy as np

from ..config import MatchingMethod
from ..regions import RegionSet
from ..scene import DescriptorType
from .base import NearestNeighborMatcher, as_float32, exact_l2_pairs


# OpenCV does not expose the FLANN index enums
FLANN_INDEX_KDTREE = 1


class HnswL2Matcher(NearestNeighborMatcher):
    """Approximate L2 neighbors with a Hierarchical Navigable Small World graph.

    A fresh index over B is built for each pair. Candidate distances are
    recomputed exactly before the ratio test.

    Args:
        m: Number of graph neighbors per node.
        ef_search: Size of the dynamic candidate list at query time.
    """

    method = MatchingMethod.HNSWL2
    descriptor_type = DescriptorType.SCALAR
    metric = "l2"

    def __init__(self, m: int = 16, ef_search: int = 64):
        self.m = m
        self.ef_search = ef_search

    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        query = as_float32(region_a.descriptors)
        database = as_float32(region_b.descriptors)

        index = faiss.IndexHNSWFlat(database.shape[1], self.m)
        index.hnsw.efSearch = max(self.ef_search, 2)
        index.add(database)
        _, indices = index.search(query, 2)

        return exact_l2_pairs(query, database, indices)


class FlannL2Matcher(NearestNeighborMatcher):
    """Approximate L2 neighbors with randomized KD-trees (FLANN).

    Args:
        trees: Number of randomized KD-trees.
        checks: Number of leaves visited per query.
    """

    method = MatchingMethod.ANNL2
    descriptor_type = DescriptorType.SCALAR
    metric = "l2"

    def __init__(self, trees: int = 4, checks: int = 64):
        self.trees = trees
        self.checks = checks

    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        query = as_float32(region_a.descriptors)
        database = as_float32(region_b.descriptors)

        matcher = cv2.FlannBasedMatcher(
            {"algorithm": FLANN_INDEX_KDTREE, "trees": self.trees},
            {"checks": self.checks},
        )
        knn = matcher.knnMatch(query, database, k=2)

        indices = np.full((query.shape[0], 2), -1, dtype=np.int64)
        for neighbors in knn:
            for rank, m in enumerate(neighbors[:2]):
                indices[m.queryIdx, rank] = m.trainIdx

        return exact_l2_pairs(query, database, indices)
