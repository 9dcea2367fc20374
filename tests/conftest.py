"""Shared pytest fixtures for pairmatch tests."""

import json
import threading
import time
from pathlib import Path

import numpy as np
import pytest

from pairmatch.config import MatchingConfig
from pairmatch.errors import RegionNotFoundError
from pairmatch.regions import RegionSet
from pairmatch.scene import SceneCatalog, View

# Four well separated 8-D features; each view holds a perturbed copy
BASE_FEATURES = 10.0 * np.eye(8, dtype=np.float32)[:4]


def view_descriptors() -> dict[int, np.ndarray]:
    """Descriptors of the three test views.

    View 1 lists the features in the order (1, 0, 3, 2), views 0 and 2 in
    natural order, so the expected correspondences of every pair are known.
    """
    return {
        0: BASE_FEATURES.copy(),
        1: BASE_FEATURES[[1, 0, 3, 2]] + 0.05,
        2: BASE_FEATURES + 0.02,
    }


EXPECTED_MATCHES = {
    (0, 1): np.array([[0, 1], [1, 0], [2, 3], [3, 2]], dtype=np.int64),
    (0, 2): np.array([[0, 0], [1, 1], [2, 2], [3, 3]], dtype=np.int64),
    (1, 2): np.array([[0, 1], [1, 0], [2, 3], [3, 2]], dtype=np.int64),
}


def write_scene(path: Path, n_views: int, root_path: str = "images") -> Path:
    """Write a plain scene description with n_views views."""
    data = {
        "root_path": root_path,
        "views": [
            {"id": i, "path": f"img_{i:03d}.jpg", "width": 640, "height": 480}
            for i in range(n_views)
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f)
    return path


def write_describer(
    path: Path, descriptor_type: str = "scalar", descriptor_length: int | None = 8
) -> Path:
    """Write a descriptor type declaration."""
    data = {"descriptor_type": descriptor_type}
    if descriptor_length is not None:
        data["descriptor_length"] = descriptor_length
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f)
    return path


def write_regions(features_dir: Path, view_id: int, descriptors: np.ndarray) -> Path:
    """Write the descriptor file of a view."""
    features_dir.mkdir(parents=True, exist_ok=True)
    path = features_dir / f"img_{view_id:03d}.npz"
    np.savez(path, descriptors=descriptors)
    return path


class DictRegionLoader:
    """In-memory region loader that counts loads.

    Args:
        descriptors: View id to descriptor array.
        delay: Seconds each load sleeps (to widen concurrency windows).
        failing: View ids whose load raises RegionNotFoundError.
    """

    def __init__(
        self,
        descriptors: dict[int, np.ndarray],
        delay: float = 0.0,
        failing: set[int] | None = None,
    ):
        self.descriptors = descriptors
        self.delay = delay
        self.failing = set(failing or ())
        self.calls: dict[int, int] = {}
        self._lock = threading.Lock()

    def load(self, view: View) -> RegionSet:
        with self._lock:
            self.calls[view.view_id] = self.calls.get(view.view_id, 0) + 1
        if self.delay:
            time.sleep(self.delay)
        if view.view_id in self.failing or view.view_id not in self.descriptors:
            raise RegionNotFoundError(view.view_id, "not available")
        return RegionSet(view_id=view.view_id, descriptors=self.descriptors[view.view_id])

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


def make_catalog(n_views: int) -> SceneCatalog:
    """Catalog of n_views views named img_000.jpg, img_001.jpg, ..."""
    views = {
        i: View(view_id=i, image_path=f"img_{i:03d}.jpg", width=640, height=480)
        for i in range(n_views)
    }
    return SceneCatalog(root_path="images", views=views)


@pytest.fixture
def project(tmp_path: Path) -> dict[str, Path]:
    """Three-view scalar project with pair list ``0 1`` / ``1 2``.

    Descriptor files and the describer declaration live in the output
    folder, next to the match file.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        Dict with "scene", "output", "pairs", and "features_dir" paths.
    """
    output_dir = tmp_path / "matches"
    scene_path = write_scene(tmp_path / "scene.json", 3)
    write_describer(output_dir / "image_describer.json")
    for view_id, descriptors in view_descriptors().items():
        write_regions(output_dir, view_id, descriptors)

    pairs_path = tmp_path / "pairs.txt"
    pairs_path.write_text("0 1\n1 2\n")

    return {
        "scene": scene_path,
        "output": output_dir / "matches.putative.txt",
        "pairs": pairs_path,
        "features_dir": output_dir,
    }


@pytest.fixture
def make_config(project):
    """Factory building a MatchingConfig for the project fixture.

    Returns:
        Callable accepting MatchingConfig field overrides.
    """

    def _make(**overrides) -> MatchingConfig:
        values = {
            "scene_path": str(project["scene"]),
            "output_path": str(project["output"]),
            "pair_list_path": str(project["pairs"]),
            "method": "BRUTEFORCEL2",
            "num_workers": 2,
            "quiet": True,
        }
        values.update(overrides)
        return MatchingConfig(**values)

    return _make
