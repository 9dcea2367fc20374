"""Putative feature matching across candidate image pairs with resumable runs."""

from .config import MatchingConfig, MatchingMethod
from .errors import (
    ConfigurationError,
    InputError,
    InvalidPairError,
    MatchFormatError,
    PairMatchError,
    PairParseError,
    RegionNotFoundError,
)
from .graph import (
    build_match_graph,
    export_adjacency_matrix,
    export_diagnostics,
    export_graphviz,
    graph_statistics,
)
from .matching import MatchEngine, create_matcher, match_all_pairs, resolve_method
from .pairs import (
    canonical_pair,
    contiguous_pairs,
    exhaustive_pairs,
    load_pairs,
    save_pairs,
)
from .pipeline import MatchingResult, Pipeline, build_pipeline_context, run_pipeline
from .regions import (
    NpzRegionLoader,
    RegionProvider,
    RegionProviderCache,
    RegionSet,
    create_region_provider,
)
from .scene import DescriptorType, SceneCatalog, View, load_descriptor_type, load_scene
from .store import load_matches, save_matches, summarize_matches

__version__ = "0.1.0"

__all__ = [
    "MatchingConfig",
    "MatchingMethod",
    "PairMatchError",
    "ConfigurationError",
    "InputError",
    "PairParseError",
    "InvalidPairError",
    "RegionNotFoundError",
    "MatchFormatError",
    "View",
    "SceneCatalog",
    "DescriptorType",
    "load_scene",
    "load_descriptor_type",
    "RegionSet",
    "NpzRegionLoader",
    "RegionProvider",
    "RegionProviderCache",
    "create_region_provider",
    "canonical_pair",
    "load_pairs",
    "save_pairs",
    "exhaustive_pairs",
    "contiguous_pairs",
    "MatchEngine",
    "create_matcher",
    "resolve_method",
    "match_all_pairs",
    "save_matches",
    "load_matches",
    "summarize_matches",
    "build_match_graph",
    "graph_statistics",
    "export_adjacency_matrix",
    "export_graphviz",
    "export_diagnostics",
    "Pipeline",
    "MatchingResult",
    "build_pipeline_context",
    "run_pipeline",
]
