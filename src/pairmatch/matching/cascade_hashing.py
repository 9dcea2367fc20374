"""Cascade hashing L2 strategies.

Descriptors are zero-centered and hashed twice with random projections:
a long binary code used to rank candidates by Hamming distance, and a few
short codes that place each descriptor in one bucket per bucket group.
For a query, the candidates are the database descriptors sharing a bucket
in any group; the best ranked ones by Hamming distance are re-ranked by
exact L2 distance.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from ..config import MatchingMethod
from ..errors import RegionNotFoundError
from ..regions import RegionSet
from ..scene import DescriptorType
from .base import NearestNeighborMatcher, as_float32

logger = logging.getLogger(__name__)

# Number of set bits of every byte value
_POPCOUNT = np.array([bin(i).count("1") for i in range(256)], dtype=np.uint8)


@dataclass
class HashedDescriptions:
    """Hashed form of one region set.

    Attributes:
        codes: Packed primary hash codes, shape (N, ceil(n_hash_bits / 8)), uint8.
        buckets: Bucket id per bucket group, shape (N, n_bucket_groups), int64.
    """

    codes: np.ndarray
    buckets: np.ndarray

    def __len__(self) -> int:
        return int(self.codes.shape[0])


class CascadeHasher:
    """Random projection hasher for descriptors of a fixed dimension.

    Args:
        dimension: Descriptor length.
        n_bucket_groups: Number of independent bucket groups.
        n_bits_per_bucket: Bits per bucket id (2**bits buckets per group).
        n_top_candidates: Candidates kept after Hamming ranking.
        seed: Random seed of the projections.
    """

    def __init__(
        self,
        dimension: int,
        n_bucket_groups: int = 6,
        n_bits_per_bucket: int = 10,
        n_top_candidates: int = 10,
        seed: int = 5489,
    ):
        self.dimension = dimension
        self.n_bucket_groups = n_bucket_groups
        self.n_bits_per_bucket = n_bits_per_bucket
        self.n_top_candidates = n_top_candidates

        rng = np.random.default_rng(seed)
        self.primary_projection = rng.standard_normal(
            (dimension, dimension)
        ).astype(np.float32)
        self.secondary_projection = rng.standard_normal(
            (n_bucket_groups, n_bits_per_bucket, dimension)
        ).astype(np.float32)
        self._bucket_weights = (1 << np.arange(n_bits_per_bucket)).astype(np.int64)

    def hash(self, descriptors: np.ndarray, zero_mean: np.ndarray) -> HashedDescriptions:
        """Hash descriptors after subtracting the zero-mean vector."""
        centered = as_float32(descriptors) - zero_mean.astype(np.float32)
        codes = np.packbits(centered @ self.primary_projection.T > 0, axis=1)
        bits = np.einsum("nd,gbd->ngb", centered, self.secondary_projection) > 0
        buckets = (bits.astype(np.int64) * self._bucket_weights).sum(axis=2)
        return HashedDescriptions(codes=codes, buckets=buckets)

    def match(
        self,
        hashed_a: HashedDescriptions,
        descriptors_a: np.ndarray,
        hashed_b: HashedDescriptions,
        descriptors_b: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Two nearest neighbors in B of every descriptor of A.

        Returns:
            Tuple of (indices, distances), both shape (len(A), 2). Queries
            with fewer than two candidates keep index -1 / distance inf.
        """
        query = as_float32(descriptors_a)
        database = as_float32(descriptors_b)

        n = len(hashed_a)
        indices = np.full((n, 2), -1, dtype=np.int64)
        distances = np.full((n, 2), np.inf, dtype=np.float64)

        # Per group: database ids sorted by bucket, for range lookups
        group_order = []
        group_sorted = []
        for g in range(self.n_bucket_groups):
            order = np.argsort(hashed_b.buckets[:, g], kind="stable")
            group_order.append(order)
            group_sorted.append(hashed_b.buckets[order, g])

        for i in range(n):
            members = []
            for g in range(self.n_bucket_groups):
                bucket = hashed_a.buckets[i, g]
                lo = np.searchsorted(group_sorted[g], bucket, side="left")
                hi = np.searchsorted(group_sorted[g], bucket, side="right")
                if hi > lo:
                    members.append(group_order[g][lo:hi])
            if not members:
                continue
            candidates = np.unique(np.concatenate(members))
            if len(candidates) < 2:
                continue

            if len(candidates) > self.n_top_candidates:
                xor = np.bitwise_xor(hashed_b.codes[candidates], hashed_a.codes[i])
                hamming = _POPCOUNT[xor].sum(axis=1, dtype=np.int64)
                ranked = np.argsort(hamming, kind="stable")
                candidates = candidates[ranked[: self.n_top_candidates]]

            dist = np.linalg.norm(database[candidates] - query[i], axis=1)
            best = np.argsort(dist, kind="stable")[:2]
            indices[i] = candidates[best]
            distances[i] = dist[best]

        return indices, distances


class CascadeHashingL2Matcher(NearestNeighborMatcher):
    """Cascade hashing; both region sets are hashed for every pair.

    Args:
        seed: Random seed of the hash projections.
        n_bucket_groups: Number of bucket groups.
        n_bits_per_bucket: Bits per bucket id.
        n_top_candidates: Candidates re-ranked by exact L2 distance.
    """

    method = MatchingMethod.CASCADEHASHINGL2
    descriptor_type = DescriptorType.SCALAR
    metric = "l2"

    def __init__(
        self,
        seed: int = 5489,
        n_bucket_groups: int = 6,
        n_bits_per_bucket: int = 10,
        n_top_candidates: int = 10,
    ):
        self.seed = seed
        self.n_bucket_groups = n_bucket_groups
        self.n_bits_per_bucket = n_bits_per_bucket
        self.n_top_candidates = n_top_candidates
        self._hashers: dict[int, CascadeHasher] = {}
        self._hashers_lock = threading.Lock()

    def hasher(self, dimension: int) -> CascadeHasher:
        """Hasher for a descriptor dimension (created once, shared by workers)."""
        with self._hashers_lock:
            hasher = self._hashers.get(dimension)
            if hasher is None:
                hasher = CascadeHasher(
                    dimension,
                    n_bucket_groups=self.n_bucket_groups,
                    n_bits_per_bucket=self.n_bits_per_bucket,
                    n_top_candidates=self.n_top_candidates,
                    seed=self.seed,
                )
                self._hashers[dimension] = hasher
            return hasher

    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        _check_dimensions(region_a, region_b)
        hasher = self.hasher(region_a.dimension)
        zero_mean = np.concatenate(
            [as_float32(region_a.descriptors), as_float32(region_b.descriptors)]
        ).mean(axis=0)
        hashed_a = hasher.hash(region_a.descriptors, zero_mean)
        hashed_b = hasher.hash(region_b.descriptors, zero_mean)
        return hasher.match(hashed_a, region_a.descriptors, hashed_b, region_b.descriptors)


class FastCascadeHashingL2Matcher(CascadeHashingL2Matcher):
    """Cascade hashing with hashed regions precomputed once per view.

    prepare() computes one zero-mean vector over all views of the pair set
    and hashes every view up front. Matching then reuses the stored hashes,
    trading memory for speed.
    """

    method = MatchingMethod.FASTCASCADEHASHINGL2

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.zero_mean: np.ndarray | None = None
        self._hashed: dict[int, HashedDescriptions] = {}

    def prepare(self, view_ids: Iterable[int], provider) -> None:
        view_ids = list(view_ids)
        self._hashed = {}

        # Pass 1: zero-mean vector of the whole collection
        total = None
        count = 0
        dimension = None
        for view_id in view_ids:
            try:
                region = provider.fetch(view_id)
            except RegionNotFoundError as e:
                logger.debug("Hash precomputation: %s", e)
                continue
            if len(region) == 0:
                continue
            if dimension is None:
                dimension = region.dimension
            elif region.dimension != dimension:
                logger.warning(
                    "View %d has descriptor length %d (expected %d), not hashed",
                    view_id,
                    region.dimension,
                    dimension,
                )
                continue
            block_sum = as_float32(region.descriptors).sum(axis=0, dtype=np.float64)
            total = block_sum if total is None else total + block_sum
            count += len(region)

        if dimension is None:
            self.zero_mean = None
            return
        self.zero_mean = (total / count).astype(np.float32)

        # Pass 2: hash every view
        hasher = self.hasher(dimension)
        for view_id in view_ids:
            try:
                region = provider.fetch(view_id)
            except RegionNotFoundError:
                continue
            if len(region) == 0 or region.dimension != dimension:
                continue
            self._hashed[view_id] = hasher.hash(region.descriptors, self.zero_mean)

        logger.info("Precomputed hashed regions for %d views", len(self._hashed))

    def search(
        self, region_a: RegionSet, region_b: RegionSet
    ) -> tuple[np.ndarray, np.ndarray]:
        if self.zero_mean is None or self.zero_mean.shape[0] != region_a.dimension:
            return super().search(region_a, region_b)
        _check_dimensions(region_a, region_b)

        hasher = self.hasher(region_a.dimension)
        hashed_a = self._hashed.get(region_a.view_id)
        if hashed_a is None:
            hashed_a = hasher.hash(region_a.descriptors, self.zero_mean)
        hashed_b = self._hashed.get(region_b.view_id)
        if hashed_b is None:
            hashed_b = hasher.hash(region_b.descriptors, self.zero_mean)
        return hasher.match(hashed_a, region_a.descriptors, hashed_b, region_b.descriptors)


def _check_dimensions(region_a: RegionSet, region_b: RegionSet) -> None:
    if region_a.dimension != region_b.dimension:
        raise ValueError(
            f"Descriptor length mismatch between views {region_a.view_id} "
            f"({region_a.dimension}) and {region_b.view_id} ({region_b.dimension})"
        )
