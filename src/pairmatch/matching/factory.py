"""Strategy selection from the method selector and the descriptor type."""

import logging

from ..config import MatchingMethod
from ..errors import ConfigurationError
from ..scene import DescriptorType
from .approximate import FlannL2Matcher, HnswL2Matcher
from .base import NearestNeighborMatcher
from .brute_force import BruteForceHammingMatcher, BruteForceL2Matcher
from .cascade_hashing import CascadeHashingL2Matcher, FastCascadeHashingL2Matcher

logger = logging.getLogger(__name__)

# Concrete strategies per descriptor type
STRATEGIES: dict[DescriptorType, dict[MatchingMethod, type[NearestNeighborMatcher]]] = {
    DescriptorType.SCALAR: {
        MatchingMethod.BRUTEFORCEL2: BruteForceL2Matcher,
        MatchingMethod.HNSWL2: HnswL2Matcher,
        MatchingMethod.ANNL2: FlannL2Matcher,
        MatchingMethod.CASCADEHASHINGL2: CascadeHashingL2Matcher,
        MatchingMethod.FASTCASCADEHASHINGL2: FastCascadeHashingL2Matcher,
    },
    DescriptorType.BINARY: {
        MatchingMethod.BRUTEFORCEHAMMING: BruteForceHammingMatcher,
    },
}

# What AUTO resolves to
AUTO_METHODS = {
    DescriptorType.SCALAR: MatchingMethod.FASTCASCADEHASHINGL2,
    DescriptorType.BINARY: MatchingMethod.BRUTEFORCEHAMMING,
}


def parse_method(method: MatchingMethod | str) -> MatchingMethod:
    """Convert a selector name to a MatchingMethod.

    Raises:
        ConfigurationError: If the name is not a known selector.
    """
    if isinstance(method, MatchingMethod):
        return method
    try:
        return MatchingMethod(str(method).strip().upper())
    except ValueError:
        raise ConfigurationError(
            f"Invalid nearest neighbor method: {method!r}. "
            f"Valid methods: {[m.value for m in MatchingMethod]}"
        ) from None


def resolve_method(
    method: MatchingMethod | str, descriptor_type: DescriptorType
) -> MatchingMethod:
    """Resolve AUTO and check the selector against the descriptor type.

    Args:
        method: Method selector.
        descriptor_type: Declared descriptor type of the collection.

    Returns:
        Concrete method.

    Raises:
        ConfigurationError: If the selector is unknown or incompatible.
    """
    method = parse_method(method)
    if method == MatchingMethod.AUTO:
        return AUTO_METHODS[descriptor_type]
    if method not in STRATEGIES[descriptor_type]:
        raise ConfigurationError(
            f"Method {method.value} cannot match {descriptor_type.value} descriptors. "
            f"Valid methods: {[m.value for m in STRATEGIES[descriptor_type]]} or AUTO"
        )
    return method


def create_matcher(
    method: MatchingMethod | str,
    descriptor_type: DescriptorType,
    seed: int = 5489,
) -> NearestNeighborMatcher:
    """Create the nearest-neighbor strategy for a run.

    Args:
        method: Method selector (AUTO or a concrete method).
        descriptor_type: Declared descriptor type of the collection.
        seed: Random seed used by the cascade hashing strategies.

    Returns:
        Initialized strategy.

    Raises:
        ConfigurationError: If the selector is unknown or incompatible.
    """
    resolved = resolve_method(method, descriptor_type)
    strategy_cls = STRATEGIES[descriptor_type][resolved]
    if issubclass(strategy_cls, CascadeHashingL2Matcher):
        matcher = strategy_cls(seed=seed)
    else:
        matcher = strategy_cls()
    logger.info("Using %s matcher", resolved.value)
    return matcher
