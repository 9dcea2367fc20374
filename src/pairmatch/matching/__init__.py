"""Nearest-neighbor strategies and the putative matching engine."""

from .approximate import FlannL2Matcher, HnswL2Matcher
from .base import NearestNeighborMatcher, empty_matches, ratio_filter
from .brute_force import BruteForceHammingMatcher, BruteForceL2Matcher
from .cascade_hashing import (
    CascadeHasher,
    CascadeHashingL2Matcher,
    FastCascadeHashingL2Matcher,
)
from .engine import MatchEngine, PutativeMatches, match_all_pairs
from .factory import create_matcher, parse_method, resolve_method

__all__ = [
    "NearestNeighborMatcher",
    "BruteForceL2Matcher",
    "BruteForceHammingMatcher",
    "HnswL2Matcher",
    "FlannL2Matcher",
    "CascadeHasher",
    "CascadeHashingL2Matcher",
    "FastCascadeHashingL2Matcher",
    "MatchEngine",
    "PutativeMatches",
    "match_all_pairs",
    "create_matcher",
    "parse_method",
    "resolve_method",
    "empty_matches",
    "ratio_filter",
]
