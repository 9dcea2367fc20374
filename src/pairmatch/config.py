"""Configuration management for the pairmatch pipeline."""

import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Match file formats understood by pairmatch.store
VALID_MATCH_SUFFIXES = [".txt", ".pt"]

DEFAULT_DESCRIBER_FILENAME = "image_describer.json"


class MatchingMethod(str, Enum):
    """Nearest-neighbor strategy selector.

    AUTO picks the fastest hashed strategy for scalar descriptors and brute
    force Hamming for binary descriptors. Every other value names one
    concrete strategy:
    - BRUTEFORCEL2: exact L2 brute force
    - HNSWL2: approximate L2 with Hierarchical Navigable Small World graphs
    - ANNL2: approximate L2 with randomized KD-trees
    - CASCADEHASHINGL2: L2 cascade hashing
    - FASTCASCADEHASHINGL2: L2 cascade hashing with precomputed hashed regions
    - BRUTEFORCEHAMMING: exact Hamming brute force (binary descriptors)
    """

    AUTO = "AUTO"
    BRUTEFORCEL2 = "BRUTEFORCEL2"
    HNSWL2 = "HNSWL2"
    ANNL2 = "ANNL2"
    CASCADEHASHINGL2 = "CASCADEHASHINGL2"
    FASTCASCADEHASHINGL2 = "FASTCASCADEHASHINGL2"
    BRUTEFORCEHAMMING = "BRUTEFORCEHAMMING"


class MatchingConfig(BaseModel):
    """Configuration for a putative matching run.

    Attributes:
        scene_path: Path to the scene description JSON (views + image sizes).
        output_path: Match file to write (or reuse). Suffix selects the format.
        pair_list_path: Text file listing the candidate pairs.
        features_dir: Directory holding per-view descriptor files. Defaults to
            the folder of output_path.
        describer_path: Descriptor type declaration. Defaults to
            image_describer.json inside features_dir.
        ratio: Nearest / second-nearest distance ratio threshold.
        method: Nearest-neighbor strategy selector.
        force: Recompute matches even if output_path already exists.
        cache_size: Maximum number of region sets kept in memory (0 = all).
        num_workers: Number of worker threads matching pairs concurrently.
        export_graph: Write adjacency matrix and graph diagnostics.
        seed: Seed for the random projections of the cascade hashing strategies.
        quiet: Suppress progress output.
    """

    model_config = ConfigDict(extra="allow")

    # Required fields (no sensible defaults)
    scene_path: str = ""
    output_path: str = ""
    pair_list_path: str = ""

    # Optional with defaults
    features_dir: str | None = None
    describer_path: str | None = None
    ratio: float = 0.8
    method: MatchingMethod = MatchingMethod.AUTO
    force: bool = False
    cache_size: int = 0
    num_workers: int = 4
    export_graph: bool = True
    seed: int = 5489
    quiet: bool = False

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        """Accept method names regardless of case."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("ratio")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """Validate that ratio lies in (0, 1]."""
        if not 0.0 < v <= 1.0:
            raise ValueError(f"ratio must be in (0, 1], got {v}")
        return v

    @field_validator("cache_size")
    @classmethod
    def validate_cache_size(cls, v: int) -> int:
        """Validate that cache_size is non-negative."""
        if v < 0:
            raise ValueError(f"cache_size must be >= 0, got {v}")
        return v

    @field_validator("num_workers")
    @classmethod
    def validate_num_workers(cls, v: int) -> int:
        """Validate that at least one worker is requested."""
        if v < 1:
            raise ValueError(f"num_workers must be >= 1, got {v}")
        return v

    @field_validator("output_path")
    @classmethod
    def validate_output_suffix(cls, v: str) -> str:
        """Validate that the match file suffix is a supported format."""
        if v and Path(v).suffix.lower() not in VALID_MATCH_SUFFIXES:
            raise ValueError(
                f"Unsupported match file format: {v!r}. "
                f"Valid suffixes: {VALID_MATCH_SUFFIXES}"
            )
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "MatchingConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in MatchingConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    def check_required(self) -> None:
        """Check that every required path is set.

        Raises:
            ConfigurationError: If scene, output, or pair list path is empty.
        """
        missing = [
            name
            for name in ("scene_path", "output_path", "pair_list_path")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration value(s): {', '.join(missing)}"
            )

    @property
    def resolved_features_dir(self) -> Path:
        """Directory containing descriptor files and the describer declaration."""
        if self.features_dir:
            return Path(self.features_dir)
        return Path(self.output_path).parent

    @property
    def resolved_describer_path(self) -> Path:
        """Path of the descriptor type declaration."""
        if self.describer_path:
            return Path(self.describer_path)
        return self.resolved_features_dir / DEFAULT_DESCRIBER_FILENAME

    @classmethod
    def from_yaml(cls, path: str | Path) -> "MatchingConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ConfigurationError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file {path} must contain a mapping, "
                f"got {type(data).__name__}"
            )

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ConfigurationError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                # Array index
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
