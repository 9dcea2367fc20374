"""Protocol interfaces for externally supplied capabilities."""

import sys
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tqdm import tqdm

if TYPE_CHECKING:
    from .regions import RegionSet
    from .scene import View


@runtime_checkable
class RegionLoader(Protocol):
    """Protocol for loading the descriptor data of one view.

    Implementations raise RegionNotFoundError when the data is missing or
    cannot be parsed.
    """

    def load(self, view: "View") -> "RegionSet":
        """Load the region set of a view."""
        ...


@runtime_checkable
class ProgressObserver(Protocol):
    """Observer notified as units of work complete.

    Progress is a side channel only: nothing depends on it for correctness.
    """

    def advance(self, n: int = 1) -> None:
        """Record that n more units of work are done."""
        ...


class NullProgress:
    """Progress observer that ignores every update."""

    def advance(self, n: int = 1) -> None:
        pass


class TqdmProgress:
    """Progress observer backed by a tqdm bar.

    Args:
        total: Number of units expected.
        desc: Bar description.
        unit: Unit label.
        quiet: Disable the bar entirely.
    """

    def __init__(self, total: int, desc: str, unit: str = "pair", quiet: bool = False):
        self._bar = tqdm(
            total=total,
            desc=desc,
            unit=unit,
            disable=quiet or not sys.stderr.isatty(),
        )

    def advance(self, n: int = 1) -> None:
        self._bar.update(n)

    def close(self) -> None:
        self._bar.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
