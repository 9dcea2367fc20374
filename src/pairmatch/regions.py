"""Region providers: descriptor data for each view under a memory budget."""

import logging
import threading
import zipfile
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .errors import RegionNotFoundError
from .interfaces import NullProgress, ProgressObserver, RegionLoader
from .scene import DescriptorType, SceneCatalog, View

logger = logging.getLogger(__name__)


@dataclass
class RegionSet:
    """Feature descriptors detected in one view.

    Attributes:
        view_id: Owning view identifier.
        descriptors: Descriptor array, shape (N, D). float32 or uint8 for
            scalar descriptors, uint8 packed bytes for binary descriptors.
        keypoints: Optional feature positions, shape (N, 2), float32.
    """

    view_id: int
    descriptors: np.ndarray
    keypoints: np.ndarray | None = None

    def __len__(self) -> int:
        return int(self.descriptors.shape[0])

    @property
    def dimension(self) -> int:
        """Descriptor length (bytes for binary descriptors)."""
        return int(self.descriptors.shape[1])


class NpzRegionLoader:
    """Load region sets from ``<features_dir>/<image stem>.npz`` files.

    Each file holds a ``descriptors`` array (N, D) and optionally a
    ``keypoints`` array (N, 2).

    Args:
        features_dir: Directory containing the per-view descriptor files.
        descriptor_type: Declared descriptor type of the collection.
        descriptor_length: Declared descriptor length, checked when given.
    """

    def __init__(
        self,
        features_dir: str | Path,
        descriptor_type: DescriptorType,
        descriptor_length: int | None = None,
    ):
        self.features_dir = Path(features_dir)
        self.descriptor_type = descriptor_type
        self.descriptor_length = descriptor_length

    def path_for(self, view: View) -> Path:
        """Descriptor file path of a view."""
        return self.features_dir / f"{view.stem}.npz"

    def load(self, view: View) -> RegionSet:
        path = self.path_for(view)
        if not path.exists():
            raise RegionNotFoundError(view.view_id, f"missing file {path}")

        try:
            with np.load(path, allow_pickle=False) as data:
                if "descriptors" not in data:
                    raise RegionNotFoundError(
                        view.view_id, f"no 'descriptors' array in {path}"
                    )
                descriptors = data["descriptors"]
                keypoints = data["keypoints"] if "keypoints" in data else None
        except (OSError, ValueError, EOFError, zipfile.BadZipFile) as e:
            raise RegionNotFoundError(view.view_id, f"cannot read {path}: {e}") from e

        self._validate(view.view_id, descriptors, keypoints)
        return RegionSet(view_id=view.view_id, descriptors=descriptors, keypoints=keypoints)

    def _validate(
        self, view_id: int, descriptors: np.ndarray, keypoints: np.ndarray | None
    ) -> None:
        if descriptors.ndim != 2:
            raise RegionNotFoundError(
                view_id, f"descriptors must be 2-D, got shape {descriptors.shape}"
            )
        if self.descriptor_type == DescriptorType.BINARY:
            if descriptors.dtype != np.uint8:
                raise RegionNotFoundError(
                    view_id, f"binary descriptors must be uint8, got {descriptors.dtype}"
                )
        elif not np.issubdtype(descriptors.dtype, np.number):
            raise RegionNotFoundError(
                view_id, f"scalar descriptors must be numeric, got {descriptors.dtype}"
            )
        if (
            self.descriptor_length is not None
            and descriptors.shape[0] > 0
            and descriptors.shape[1] != self.descriptor_length
        ):
            raise RegionNotFoundError(
                view_id,
                f"descriptor length {descriptors.shape[1]} does not match "
                f"declared length {self.descriptor_length}",
            )
        if keypoints is not None and keypoints.shape[0] != descriptors.shape[0]:
            raise RegionNotFoundError(
                view_id,
                f"{keypoints.shape[0]} keypoints for {descriptors.shape[0]} descriptors",
            )


class RegionProvider:
    """Hold every view's region set in memory.

    All region sets are loaded once by load(); fetch() is then a pure
    lookup and never evicts. Views whose data cannot be loaded are logged
    and left absent, so fetching them raises RegionNotFoundError.

    Args:
        loader: Loader used to read each view's region set.
    """

    capacity = 0

    def __init__(self, loader: RegionLoader):
        self.loader = loader
        self._regions: dict[int, RegionSet] = {}
        self.load_count = 0

    def load(
        self, catalog: SceneCatalog, progress: ProgressObserver | None = None
    ) -> int:
        """Eagerly load the region sets of every catalog view.

        Args:
            catalog: Scene catalog listing the views.
            progress: Optional observer advanced once per view.

        Returns:
            Number of views whose regions were loaded.
        """
        progress = progress or NullProgress()
        for view_id in catalog.view_ids:
            try:
                self._regions[view_id] = self.loader.load(catalog.views[view_id])
                self.load_count += 1
            except Exception as e:
                error = (
                    e
                    if isinstance(e, RegionNotFoundError)
                    else RegionNotFoundError(view_id, str(e))
                )
                logger.warning("%s (view skipped)", error)
            progress.advance()

        logger.info(
            "Loaded regions for %d of %d views", len(self._regions), catalog.view_count
        )
        return len(self._regions)

    def fetch(self, view_id: int) -> RegionSet:
        """Return the region set of a view.

        Raises:
            RegionNotFoundError: If the view is unknown or failed to load.
        """
        try:
            return self._regions[view_id]
        except KeyError:
            raise RegionNotFoundError(view_id, "not loaded") from None

    def __len__(self) -> int:
        return len(self._regions)

    def __contains__(self, view_id: int) -> bool:
        return view_id in self._regions

    def resident_ids(self) -> list[int]:
        return sorted(self._regions)


class RegionProviderCache:
    """Bounded least-recently-used cache of region sets, loaded on demand.

    At most ``capacity`` region sets are resident. A hit refreshes recency
    and never evicts. A miss loads the view outside the lock; concurrent
    fetches of the same uncached view wait on a single shared load.
    Failed loads are not cached.

    Args:
        loader: Loader used to read each view's region set.
        capacity: Maximum number of resident region sets (> 0).
    """

    def __init__(self, loader: RegionLoader, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.loader = loader
        self.capacity = capacity
        self._views: dict[int, View] = {}
        self._cache: OrderedDict[int, RegionSet] = OrderedDict()
        self._inflight: dict[int, Future] = {}
        self._lock = threading.Lock()
        self.load_count = 0

    def load(
        self, catalog: SceneCatalog, progress: ProgressObserver | None = None
    ) -> int:
        """Register the catalog views; region sets are read lazily on fetch.

        Returns:
            Number of registered views.
        """
        with self._lock:
            self._views = dict(catalog.views)
        if progress is not None:
            progress.advance(catalog.view_count)
        logger.info(
            "Region cache ready for %d views (capacity %d)",
            catalog.view_count,
            self.capacity,
        )
        return catalog.view_count

    def fetch(self, view_id: int) -> RegionSet:
        """Return the region set of a view, loading it on a miss.

        Raises:
            RegionNotFoundError: If the view is unknown or its data cannot be loaded.
        """
        with self._lock:
            region = self._cache.get(view_id)
            if region is not None:
                self._cache.move_to_end(view_id)
                return region

            future = self._inflight.get(view_id)
            is_owner = future is None
            if is_owner:
                view = self._views.get(view_id)
                if view is None:
                    raise RegionNotFoundError(view_id, "unknown view")
                future = Future()
                self._inflight[view_id] = future

        if not is_owner:
            return future.result()

        try:
            region = self.loader.load(view)
        except Exception as e:
            error = (
                e
                if isinstance(e, RegionNotFoundError)
                else RegionNotFoundError(view_id, str(e))
            )
            with self._lock:
                del self._inflight[view_id]
            future.set_exception(error)
            if error is e:
                raise
            raise error from e

        with self._lock:
            del self._inflight[view_id]
            self._insert(view_id, region)
            self.load_count += 1
        future.set_result(region)
        return region

    def _insert(self, view_id: int, region: RegionSet) -> None:
        """Insert a loaded entry, evicting LRU entries first. Caller holds the lock."""
        while len(self._cache) >= self.capacity:
            evicted_id, _ = self._cache.popitem(last=False)
            logger.debug("Evicted regions of view %d", evicted_id)
        self._cache[view_id] = region

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, view_id: int) -> bool:
        with self._lock:
            return view_id in self._cache

    def resident_ids(self) -> list[int]:
        """Resident view ids, least recently used first."""
        with self._lock:
            return list(self._cache)


def create_region_provider(
    catalog: SceneCatalog,
    loader: RegionLoader,
    capacity: int = 0,
    progress: ProgressObserver | None = None,
) -> RegionProvider | RegionProviderCache:
    """Create and prime the region provider for a catalog.

    Args:
        catalog: Scene catalog listing the views.
        loader: Loader used to read each view's region set.
        capacity: Maximum number of resident region sets (0 = load everything).
        progress: Optional observer advanced while priming.

    Returns:
        RegionProvider when capacity is 0, RegionProviderCache otherwise.
    """
    if capacity == 0:
        provider = RegionProvider(loader)
    else:
        provider = RegionProviderCache(loader, capacity)
    provider.load(catalog, progress=progress)
    return provider
