"""Persistence of putative matches (text and torch formats) and resume policy."""

import logging
import os
import pickle
import tempfile
import zipfile
from collections.abc import Iterable
from pathlib import Path
from typing import IO

import numpy as np
import torch

from .errors import ConfigurationError, MatchFormatError
from .pairs import PairKey

logger = logging.getLogger(__name__)

PutativeMatches = dict[PairKey, np.ndarray]


def _format_for(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".txt":
        return "txt"
    if suffix == ".pt":
        return "pt"
    raise ConfigurationError(f"Unsupported match file format: {str(path)!r}")


def _write_txt(matches: PutativeMatches, f: IO[str]) -> None:
    for (i, j), corr in sorted(matches.items()):
        f.write(f"{i} {j}\n{len(corr)}\n")
        for a, b in np.asarray(corr, dtype=np.int64).reshape(-1, 2):
            f.write(f"{a} {b}\n")


def _read_txt(f: IO[str]) -> PutativeMatches:
    tokens = iter(f.read().split())
    matches: PutativeMatches = {}

    def next_int(what: str) -> int:
        try:
            return int(next(tokens))
        except StopIteration:
            raise MatchFormatError(f"Unexpected end of file while reading {what}") from None
        except ValueError as e:
            raise MatchFormatError(f"Invalid integer for {what}: {e}") from None

    for first in tokens:
        try:
            i = int(first)
        except ValueError:
            raise MatchFormatError(f"Invalid view id {first!r}") from None
        j = next_int("pair view id")
        key = _check_key(i, j)
        if key in matches:
            raise MatchFormatError(f"Duplicate pair ({i}, {j})")
        count = next_int(f"match count of pair ({i}, {j})")
        if count < 0:
            raise MatchFormatError(f"Negative match count for pair ({i}, {j})")
        values = [next_int(f"matches of pair ({i}, {j})") for _ in range(2 * count)]
        corr = np.array(values, dtype=np.int64).reshape(count, 2)
        if (corr < 0).any():
            raise MatchFormatError(f"Negative feature index in pair ({i}, {j})")
        matches[key] = corr

    return matches


def _check_key(i: int, j: int) -> PairKey:
    if i < 0 or j < 0 or i >= j:
        raise MatchFormatError(f"Pair ({i}, {j}) is not a canonical pair key")
    return (i, j)


def _to_torch_payload(matches: PutativeMatches) -> dict[str, torch.Tensor]:
    return {
        f"{i}_{j}": torch.from_numpy(
            np.ascontiguousarray(corr, dtype=np.int64).reshape(-1, 2)
        )
        for (i, j), corr in sorted(matches.items())
    }


def _from_torch_payload(payload) -> PutativeMatches:
    if not isinstance(payload, dict):
        raise MatchFormatError(f"Expected a dict payload, got {type(payload).__name__}")
    matches: PutativeMatches = {}
    for name, tensor in payload.items():
        parts = str(name).split("_")
        if len(parts) != 2:
            raise MatchFormatError(f"Invalid pair key {name!r}")
        try:
            key = _check_key(int(parts[0]), int(parts[1]))
        except ValueError:
            raise MatchFormatError(f"Invalid pair key {name!r}") from None
        if not isinstance(tensor, torch.Tensor) or tensor.ndim != 2 or tensor.shape[1] != 2:
            raise MatchFormatError(f"Matches of pair {name!r} must be an (M, 2) tensor")
        matches[key] = tensor.numpy().astype(np.int64)
    return matches


def _default_file_mode() -> int:
    # mkstemp creates 0600 files; match what open() would have created.
    mask = os.umask(0)
    os.umask(mask)
    return 0o666 & ~mask


def save_matches(matches: PutativeMatches, path: str | Path) -> None:
    """Write the complete match set atomically.

    The data is written to a temporary file in the destination directory
    and renamed over path, so path holds either the previous content or the
    complete new content.

    Args:
        matches: Putative matches keyed by canonical pair.
        path: Output path; ``.txt`` for text, ``.pt`` for a torch file.

    Raises:
        OSError: If the file cannot be written.
    """
    path = Path(path)
    fmt = _format_for(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        if fmt == "txt":
            with os.fdopen(fd, "w") as f:
                _write_txt(matches, f)
        else:
            with os.fdopen(fd, "wb") as f:
                torch.save(_to_torch_payload(matches), f)
        os.chmod(tmp_name, _default_file_mode())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Saved matches of %d pairs to %s", len(matches), path)


def load_matches(path: str | Path) -> PutativeMatches:
    """Load a match file written by save_matches().

    Args:
        path: Match file path.

    Returns:
        Putative matches keyed by canonical pair.

    Raises:
        OSError: If the file cannot be read.
        MatchFormatError: If the content is malformed.
    """
    path = Path(path)
    fmt = _format_for(path)
    if fmt == "txt":
        try:
            with open(path) as f:
                return _read_txt(f)
        except UnicodeDecodeError as e:
            raise MatchFormatError(f"Match file {str(path)!r} is not text: {e}") from e

    with open(path, "rb") as f:
        try:
            payload = torch.load(f, weights_only=True)
        except (RuntimeError, pickle.UnpicklingError, EOFError, zipfile.BadZipFile) as e:
            raise MatchFormatError(f"Cannot decode match file {str(path)!r}: {e}") from e
    return _from_torch_payload(payload)


def should_reuse(path: str | Path, force: bool) -> bool:
    """Whether an existing match file is adopted instead of recomputing."""
    return not force and Path(path).exists()


def validate_matches(matches: PutativeMatches, view_ids: Iterable[int]) -> None:
    """Check that every pair key references two distinct known views.

    Raises:
        MatchFormatError: If a key references an unknown or repeated view.
    """
    known = set(view_ids)
    for i, j in matches:
        if i == j or i not in known or j not in known:
            raise MatchFormatError(
                f"Pair ({i}, {j}) does not reference two distinct scene views"
            )


def summarize_matches(matches: PutativeMatches) -> dict[str, int]:
    """Pair and correspondence counts of a match set.

    Returns:
        Dict with "pairs", "nonempty_pairs", and "correspondences".
    """
    sizes = [len(corr) for corr in matches.values()]
    return {
        "pairs": len(sizes),
        "nonempty_pairs": sum(1 for n in sizes if n > 0),
        "correspondences": int(sum(sizes)),
    }
