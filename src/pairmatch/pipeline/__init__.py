"""Pipeline orchestration package for putative matching runs.

Provides the pipeline context, builder, and runner.
"""

from .builder import build_pipeline_context
from .context import PipelineContext
from .runner import MatchingResult, Pipeline, compute_matches, run_pipeline

__all__ = [
    "MatchingResult",
    "Pipeline",
    "PipelineContext",
    "build_pipeline_context",
    "compute_matches",
    "run_pipeline",
]
