"""Pipeline context builder for one-time initialization."""

import logging

from ..config import MatchingConfig
from ..matching import create_matcher
from ..pairs import load_pairs
from ..scene import load_descriptor_type, load_scene
from .context import PipelineContext

logger = logging.getLogger(__name__)


def build_pipeline_context(config: MatchingConfig) -> PipelineContext:
    """Load and validate every input of a matching run.

    Checks required paths, loads the scene and its descriptor declaration,
    selects the matching strategy, and loads the pair list. Any failure
    here is fatal and happens before region data is touched.

    Args:
        config: Matching configuration.

    Returns:
        PipelineContext with the validated inputs.

    Raises:
        ConfigurationError: If a required path is missing or the method is
            unknown or incompatible with the descriptor type.
        InputError: If the scene, describer declaration, or pair list is
            unreadable or malformed.
    """
    config.check_required()

    # 1. Load scene views
    logger.info("Loading scene from %s", config.scene_path)
    catalog = load_scene(config.scene_path)

    # 2. Attach the descriptor declaration
    describer_path = config.resolved_describer_path
    logger.info("Loading descriptor declaration from %s", describer_path)
    descriptor_type, descriptor_length = load_descriptor_type(describer_path)
    catalog = catalog.with_descriptor_type(descriptor_type, descriptor_length)
    logger.info(
        "Descriptor type: %s (length %s)",
        descriptor_type.value,
        descriptor_length if descriptor_length is not None else "undeclared",
    )

    # 3. Select the strategy (fails fast on a bad selector)
    matcher = create_matcher(config.method, descriptor_type, seed=config.seed)

    # 4. Load candidate pairs
    pairs = load_pairs(catalog.view_count, config.pair_list_path)
    unknown = {pair for pair in pairs if pair[0] not in catalog or pair[1] not in catalog}
    if unknown:
        logger.warning(
            "Skipping %d pair(s) referencing view ids absent from the scene: %s",
            len(unknown),
            sorted(unknown)[:10],
        )
        pairs -= unknown

    return PipelineContext(
        config=config,
        catalog=catalog,
        pairs=pairs,
        matcher=matcher,
    )
