"""Exception hierarchy for the matching pipeline.

Fatal errors (configuration, input, output write) abort a run before or
without leaving a match file behind. RegionNotFoundError is the only
non-fatal kind: the engine absorbs it per pair.
"""


class PairMatchError(Exception):
    """Base class for all pairmatch errors."""


class ConfigurationError(PairMatchError, ValueError):
    """Missing required path, or unrecognized/incompatible method selector."""


class InputError(PairMatchError, ValueError):
    """Unreadable or malformed scene, describer declaration, or pair list."""


class PairParseError(InputError):
    """Pair list source is malformed."""


class InvalidPairError(InputError):
    """Pair list references a view id outside the known range."""


class RegionNotFoundError(PairMatchError, LookupError):
    """Descriptor data for a view is unknown or cannot be loaded."""

    def __init__(self, view_id: int, reason: str = ""):
        self.view_id = view_id
        self.reason = reason
        message = f"No regions for view {view_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MatchFormatError(PairMatchError, ValueError):
    """Match file exists and is readable but its content is malformed."""
