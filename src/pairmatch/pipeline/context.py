"""Pipeline context dataclass for validated run inputs."""

from dataclasses import dataclass

from ..config import MatchingConfig
from ..matching import NearestNeighborMatcher
from ..pairs import PairKey
from ..scene import SceneCatalog


@dataclass
class PipelineContext:
    """Inputs of a matching run, loaded and validated before any work.

    Created once by build_pipeline_context().
    """

    config: MatchingConfig
    catalog: SceneCatalog
    pairs: set[PairKey]
    matcher: NearestNeighborMatcher
