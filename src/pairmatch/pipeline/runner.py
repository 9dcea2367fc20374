"""Pipeline runner: resume check, matching, persistence, and diagnostics."""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from ..config import MatchingConfig
from ..graph import build_match_graph, export_diagnostics
from ..interfaces import TqdmProgress
from ..matching import MatchEngine, PutativeMatches
from ..regions import NpzRegionLoader, create_region_provider
from ..store import (
    load_matches,
    save_matches,
    should_reuse,
    summarize_matches,
    validate_matches,
)
from .builder import build_pipeline_context
from .context import PipelineContext

logger = logging.getLogger(__name__)


@dataclass
class MatchingResult:
    """Outcome of a matching run.

    Attributes:
        matches: Final putative matches (computed or reused).
        reused: True if an existing match file was adopted.
        failed_pairs: Pairs degraded to empty results (computed runs only).
        summary: Pair and correspondence counts.
        diagnostics: Written diagnostic paths (None for failed exports).
    """

    matches: PutativeMatches
    reused: bool
    failed_pairs: list = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)
    diagnostics: dict[str, Path | None] = field(default_factory=dict)


def compute_matches(ctx: PipelineContext) -> tuple[PutativeMatches, list]:
    """Load regions and match every pair of the context.

    Args:
        ctx: Validated pipeline context.

    Returns:
        Tuple of (matches, failed_pairs).
    """
    config = ctx.config
    catalog = ctx.catalog

    loader = NpzRegionLoader(
        config.resolved_features_dir,
        catalog.descriptor_type,
        catalog.descriptor_length,
    )
    logger.info(
        "Region cache size: %s",
        "unlimited" if config.cache_size == 0 else config.cache_size,
    )
    with TqdmProgress(
        catalog.view_count, "Loading regions", unit="view", quiet=config.quiet
    ) as progress:
        provider = create_region_provider(
            catalog, loader, capacity=config.cache_size, progress=progress
        )

    engine = MatchEngine(ctx.matcher, ratio=config.ratio, num_workers=config.num_workers)
    start = time.perf_counter()
    with TqdmProgress(len(ctx.pairs), "Matching pairs", quiet=config.quiet) as progress:
        matches = engine.match(ctx.pairs, provider, progress=progress)
    logger.info("Regions matching done in %.2f s", time.perf_counter() - start)

    return matches, engine.failed_pairs


def run_pipeline(config: MatchingConfig) -> MatchingResult:
    """Run putative matching end to end.

    If the output file exists and recomputation is not forced, it is
    adopted as the result and no matching is performed. Otherwise every
    pair is matched and the complete result is saved atomically. The match
    graph diagnostics are written next to the output file in both cases.

    Args:
        config: Matching configuration.

    Returns:
        MatchingResult describing the run.

    Raises:
        ConfigurationError: Invalid configuration.
        InputError: Unreadable or malformed inputs.
        MatchFormatError: Malformed existing match file.
        OSError: Match file cannot be read or written.
    """
    ctx = build_pipeline_context(config)
    output_path = Path(config.output_path)

    failed_pairs = []
    if should_reuse(output_path, config.force):
        matches = load_matches(output_path)
        validate_matches(matches, ctx.catalog.view_ids)
        reused = True
        logger.info("Previous results loaded; #pair: %d", len(matches))
    else:
        matches, failed_pairs = compute_matches(ctx)
        save_matches(matches, output_path)
        reused = False

    summary = summarize_matches(matches)
    logger.info(
        "%d pairs, %d with matches, %d putative matches in total",
        summary["pairs"],
        summary["nonempty_pairs"],
        summary["correspondences"],
    )

    diagnostics = {}
    if config.export_graph:
        graph = build_match_graph(ctx.catalog.view_ids, matches)
        diagnostics = export_diagnostics(graph, output_path.parent)

    logger.info("Matching complete")
    return MatchingResult(
        matches=matches,
        reused=reused,
        failed_pairs=failed_pairs,
        summary=summary,
        diagnostics=diagnostics,
    )


class Pipeline:
    """Putative matching pipeline.

    Primary programmatic entry point for pairmatch.

    Example:
        pipeline = Pipeline(config)
        result = pipeline.run()
    """

    def __init__(self, config: MatchingConfig):
        """Initialize the pipeline with configuration.

        Args:
            config: Matching configuration.
        """
        self.config = config

    def run(self) -> MatchingResult:
        """Run the pipeline. Equivalent to calling run_pipeline(config)."""
        return run_pipeline(self.config)
