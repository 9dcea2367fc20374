"""Putative matching of a pair set with a bounded worker pool."""

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np

from ..config import MatchingMethod
from ..errors import RegionNotFoundError
from ..interfaces import NullProgress, ProgressObserver
from ..pairs import PairKey, canonical_pair
from ..scene import DescriptorType
from .base import NearestNeighborMatcher, empty_matches
from .factory import create_matcher

logger = logging.getLogger(__name__)

PutativeMatches = dict[PairKey, np.ndarray]


class MatchEngine:
    """Match every pair of a pair set with one nearest-neighbor strategy.

    Pairs are independent: each worker fetches both region sets from the
    provider, runs the strategy, and hands its result back to the calling
    thread, which alone writes the output mapping.

    Args:
        matcher: Nearest-neighbor strategy.
        ratio: Distance ratio threshold.
        num_workers: Number of worker threads.
    """

    def __init__(
        self, matcher: NearestNeighborMatcher, ratio: float = 0.8, num_workers: int = 4
    ):
        self.matcher = matcher
        self.ratio = ratio
        self.num_workers = num_workers
        self.failed_pairs: list[PairKey] = []

    def match(
        self,
        pairs: Iterable[PairKey],
        provider,
        progress: ProgressObserver | None = None,
    ) -> PutativeMatches:
        """Compute putative matches for every pair.

        Args:
            pairs: Pairs to match (any order; canonicalized and deduplicated).
            provider: Region provider (RegionProvider or RegionProviderCache).
            progress: Optional observer advanced once per completed pair.

        Returns:
            Canonical pair key to correspondences (index in first view, index
            in second view), shape (M, 2), int64. Every input pair is present,
            with an empty array when nothing passed the ratio test or the
            pair could not be matched.
        """
        progress = progress or NullProgress()
        pair_list = sorted({canonical_pair(i, j) for i, j in pairs})
        self.failed_pairs = []

        view_ids = sorted({view_id for pair in pair_list for view_id in pair})
        self.matcher.prepare(view_ids, provider)

        results: PutativeMatches = {}
        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            futures = {
                executor.submit(self._match_one, pair, provider): pair
                for pair in pair_list
            }
            for future in as_completed(futures):
                pair = futures[future]
                matches, ok = future.result()
                results[pair] = matches
                if not ok:
                    self.failed_pairs.append(pair)
                progress.advance()

        if self.failed_pairs:
            logger.warning(
                "%d of %d pairs could not be matched and were stored empty",
                len(self.failed_pairs),
                len(pair_list),
            )
        self.failed_pairs.sort()
        return {pair: results[pair] for pair in pair_list}

    def _match_one(self, pair: PairKey, provider) -> tuple[np.ndarray, bool]:
        """Match one pair; failures degrade to an empty result."""
        i, j = pair
        try:
            region_a = provider.fetch(i)
            region_b = provider.fetch(j)
            matches = self.matcher.match_pair(region_a, region_b, self.ratio)
        except RegionNotFoundError as e:
            logger.warning("Pair (%d, %d): %s, storing no matches", i, j, e)
            return empty_matches(), False
        except Exception:
            logger.exception("Pair (%d, %d): matching failed, storing no matches", i, j)
            return empty_matches(), False

        logger.debug("Pair (%d, %d): %d putative matches", i, j, len(matches))
        return matches, True


def match_all_pairs(
    pairs: Iterable[PairKey],
    provider,
    descriptor_type: DescriptorType,
    method: MatchingMethod | str = MatchingMethod.AUTO,
    ratio: float = 0.8,
    num_workers: int = 4,
    progress: ProgressObserver | None = None,
    seed: int = 5489,
) -> PutativeMatches:
    """Match all pairs with the strategy selected by method and descriptor type.

    Args:
        pairs: Pairs to match.
        provider: Region provider.
        descriptor_type: Declared descriptor type of the collection.
        method: Method selector.
        ratio: Distance ratio threshold.
        num_workers: Number of worker threads.
        progress: Optional progress observer.
        seed: Random seed for the cascade hashing strategies.

    Returns:
        Putative matches keyed by canonical pair.

    Raises:
        ConfigurationError: If the method is unknown or incompatible.
    """
    matcher = create_matcher(method, descriptor_type, seed=seed)
    engine = MatchEngine(matcher, ratio=ratio, num_workers=num_workers)
    return engine.match(pairs, provider, progress=progress)
