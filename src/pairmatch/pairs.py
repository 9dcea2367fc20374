"""Candidate pair lists: parsing, validation, and generation."""

import logging
from collections.abc import Iterable
from pathlib import Path

from .errors import InputError, InvalidPairError, PairParseError

logger = logging.getLogger(__name__)

PairKey = tuple[int, int]


def canonical_pair(i: int, j: int) -> PairKey:
    """Return the canonical (smaller id first) key of an unordered pair."""
    return (i, j) if i < j else (j, i)


def parse_pairs(view_count: int, lines: Iterable[str]) -> set[PairKey]:
    """Parse pair list lines into a set of canonical pair keys.

    Each non-blank line holds whitespace separated view ids ``I J K ...``
    and denotes the pairs (I, J), (I, K), ... Lines starting with ``#``
    are comments. Self pairs are skipped.

    Args:
        view_count: Number of views; every id must be below it.
        lines: Pair list lines.

    Returns:
        Set of canonical pair keys (no duplicates, whatever the source order).

    Raises:
        PairParseError: If a line is malformed.
        InvalidPairError: If an id is negative or >= view_count.
    """
    pairs: set[PairKey] = set()
    for line_no, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        tokens = stripped.split()
        if len(tokens) < 2:
            raise PairParseError(
                f"Line {line_no}: expected at least two view ids, got {stripped!r}"
            )
        try:
            ids = [int(token) for token in tokens]
        except ValueError:
            raise PairParseError(
                f"Line {line_no}: view ids must be integers, got {stripped!r}"
            ) from None

        for view_id in ids:
            if view_id < 0 or view_id >= view_count:
                raise InvalidPairError(
                    f"Line {line_no}: view id {view_id} out of range "
                    f"(view count {view_count})"
                )

        first = ids[0]
        for other in ids[1:]:
            if other == first:
                logger.debug("Line %d: skipping self pair (%d, %d)", line_no, first, other)
                continue
            pairs.add(canonical_pair(first, other))

    return pairs


def load_pairs(view_count: int, source: str | Path) -> set[PairKey]:
    """Load and validate a pair list file.

    Args:
        view_count: Number of views; every id must be below it.
        source: Path to the pair list text file.

    Returns:
        Set of canonical pair keys.

    Raises:
        InputError: If the file cannot be read.
        PairParseError: If the file is malformed.
        InvalidPairError: If an id is out of range.
    """
    source = Path(source)
    try:
        with open(source) as f:
            pairs = parse_pairs(view_count, f)
    except UnicodeDecodeError as e:
        raise PairParseError(f"Pair list {str(source)!r} is not text: {e}") from e
    except OSError as e:
        raise InputError(f"Cannot read pair list {str(source)!r}: {e}") from e

    logger.info("Loaded %d pairs from %s", len(pairs), source)
    return pairs


def save_pairs(pairs: Iterable[PairKey], path: str | Path) -> None:
    """Write pairs as a pair list file, one line per first view id.

    Args:
        pairs: Pair keys to write.
        path: Output text file path.
    """
    grouped: dict[int, list[int]] = {}
    for i, j in sorted(canonical_pair(a, b) for a, b in pairs):
        grouped.setdefault(i, []).append(j)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        for i, others in grouped.items():
            f.write(" ".join(str(v) for v in [i, *others]) + "\n")


def exhaustive_pairs(view_ids: Iterable[int]) -> set[PairKey]:
    """All unordered pairs of distinct views."""
    ids = sorted(set(view_ids))
    return {(a, b) for idx, a in enumerate(ids) for b in ids[idx + 1 :]}


def contiguous_pairs(view_ids: Iterable[int], overlap: int) -> set[PairKey]:
    """Pairs of each view with its next ``overlap`` views (sequence order).

    Args:
        view_ids: View identifiers; pairs follow their ascending order.
        overlap: Number of following views each view is paired with.

    Returns:
        Set of canonical pair keys.
    """
    if overlap < 1:
        raise ValueError(f"overlap must be >= 1, got {overlap}")
    ids = sorted(set(view_ids))
    pairs = set()
    for idx, a in enumerate(ids):
        for b in ids[idx + 1 : idx + 1 + overlap]:
            pairs.add((a, b))
    return pairs
