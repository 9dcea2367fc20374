"""Scene catalog: the views of a collection and its descriptor type."""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import InputError

logger = logging.getLogger(__name__)


class DescriptorType(str, Enum):
    """Kind of descriptor shared by every view of a collection."""

    SCALAR = "scalar"  # fixed-length numeric vector, L2 metric
    BINARY = "binary"  # fixed-length packed bit code, Hamming metric


@dataclass(frozen=True)
class View:
    """One image of the collection.

    Attributes:
        view_id: Unique, stable integer identifier.
        image_path: Image path, relative to the scene root path.
        width: Image width in pixels.
        height: Image height in pixels.
    """

    view_id: int
    image_path: str
    width: int
    height: int

    @property
    def stem(self) -> str:
        """Image file name without extension (names the descriptor file)."""
        return Path(self.image_path).stem


@dataclass
class SceneCatalog:
    """Views of a collection together with the declared descriptor type.

    Attributes:
        root_path: Root directory the image paths are relative to.
        views: View id to View mapping.
        descriptor_type: Declared descriptor type (None until attached).
        descriptor_length: Declared descriptor length (None if not declared).
    """

    root_path: str
    views: dict[int, View]
    descriptor_type: DescriptorType | None = None
    descriptor_length: int | None = None
    _sorted_ids: list[int] = field(init=False, repr=False)

    def __post_init__(self):
        self._sorted_ids = sorted(self.views)

    @property
    def view_ids(self) -> list[int]:
        """View identifiers in ascending order."""
        return list(self._sorted_ids)

    @property
    def view_count(self) -> int:
        """Number of views in the collection."""
        return len(self.views)

    def __contains__(self, view_id: int) -> bool:
        return view_id in self.views

    def image_paths(self) -> list[str]:
        """Full image paths in view id order."""
        root = Path(self.root_path)
        return [str(root / self.views[i].image_path) for i in self._sorted_ids]

    def with_descriptor_type(
        self, descriptor_type: DescriptorType, descriptor_length: int | None = None
    ) -> "SceneCatalog":
        """Return a copy of this catalog carrying the descriptor declaration."""
        return replace(
            self,
            descriptor_type=descriptor_type,
            descriptor_length=descriptor_length,
        )


def _read_json(path: Path, what: str) -> Any:
    if not path.exists():
        raise InputError(f"The {what} file {str(path)!r} does not exist")
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise InputError(f"Invalid JSON in {what} file {str(path)!r}: {e}") from e
    except UnicodeDecodeError as e:
        raise InputError(f"The {what} file {str(path)!r} is not text: {e}") from e
    except OSError as e:
        raise InputError(f"The {what} file {str(path)!r} cannot be read: {e}") from e


def _parse_view(entry: Any) -> View:
    """Parse one view entry in either the plain or the OpenMVG layout."""
    if not isinstance(entry, dict):
        raise InputError(f"View entry must be an object, got {entry!r}")

    if "value" in entry:
        # OpenMVG sfm_data.json: {"key": id, "value": {"ptr_wrapper": {"data": {...}}}}
        value = entry["value"]
        wrapper = value.get("ptr_wrapper", {}) if isinstance(value, dict) else None
        data = wrapper.get("data", {}) if isinstance(wrapper, dict) else None
        if not isinstance(data, dict):
            raise InputError(f"Malformed view entry {entry!r}: expected value.ptr_wrapper.data")
        view_id = data.get("id_view", entry.get("key"))
        path = data.get("filename")
        local_path = data.get("local_path", "")
        if path is not None and local_path:
            path = str(Path(local_path) / path)
    else:
        data = entry
        view_id = entry.get("id")
        path = entry.get("path")

    try:
        return View(
            view_id=int(view_id),
            image_path=str(path) if path is not None else "",
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
        )
    except (TypeError, ValueError) as e:
        raise InputError(f"Malformed view entry {entry!r}: {e}") from e


def load_scene(path: str | Path) -> SceneCatalog:
    """Load the views of a scene description file.

    Accepts a plain layout ``{"root_path", "views": [{"id", "path", "width",
    "height"}]}`` as well as an OpenMVG ``sfm_data.json`` file.

    Args:
        path: Path to the scene description JSON.

    Returns:
        SceneCatalog without descriptor declaration.

    Raises:
        InputError: If the file is missing, malformed, or has no/duplicate views.
    """
    path = Path(path)
    data = _read_json(path, "scene")

    if not isinstance(data, dict) or not isinstance(data.get("views"), list):
        raise InputError(f"Scene file {str(path)!r} has no 'views' list")
    if not data["views"]:
        raise InputError(f"Scene file {str(path)!r} contains no views")

    views: dict[int, View] = {}
    for entry in data["views"]:
        view = _parse_view(entry)
        if view.view_id < 0:
            raise InputError(f"Negative view id {view.view_id} in {str(path)!r}")
        if view.view_id in views:
            raise InputError(f"Duplicate view id {view.view_id} in {str(path)!r}")
        views[view.view_id] = view

    catalog = SceneCatalog(root_path=str(data.get("root_path", "")), views=views)
    logger.info("Loaded %d views from %s", catalog.view_count, path)
    return catalog


def load_descriptor_type(path: str | Path) -> tuple[DescriptorType, int | None]:
    """Load the descriptor type declaration of a collection.

    The plain layout is ``{"descriptor_type": "scalar" | "binary",
    "descriptor_length": D}``. An OpenMVG ``image_describer.json`` is also
    accepted: its region type name decides (binary region types contain
    "Binary" in their name).

    Args:
        path: Path to the describer declaration JSON.

    Returns:
        Tuple of (descriptor_type, descriptor_length or None).

    Raises:
        InputError: If the file is missing or does not declare a valid type.
    """
    path = Path(path)
    data = _read_json(path, "describer")
    if not isinstance(data, dict):
        raise InputError(f"Describer file {str(path)!r} must contain an object")

    length = data.get("descriptor_length")
    if "descriptor_type" in data:
        try:
            descriptor_type = DescriptorType(str(data["descriptor_type"]).lower())
        except ValueError:
            raise InputError(
                f"Invalid descriptor_type {data['descriptor_type']!r} in "
                f"{str(path)!r}. Valid types: {[t.value for t in DescriptorType]}"
            ) from None
    elif isinstance(data.get("regions_type"), dict):
        name = str(data["regions_type"].get("polymorphic_name", ""))
        if not name:
            raise InputError(f"Describer file {str(path)!r} has no region type name")
        descriptor_type = (
            DescriptorType.BINARY if "Binary" in name else DescriptorType.SCALAR
        )
    else:
        raise InputError(f"Describer file {str(path)!r} declares no descriptor type")

    if length is not None:
        try:
            length = int(length)
        except (TypeError, ValueError):
            raise InputError(
                f"Invalid descriptor_length {length!r} in {str(path)!r}"
            ) from None
        if length <= 0:
            raise InputError(f"descriptor_length must be positive in {str(path)!r}")

    return descriptor_type, length
