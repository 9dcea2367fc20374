"""Tests for region loading and region providers."""

import threading

import numpy as np
import pytest

from pairmatch.errors import RegionNotFoundError
from pairmatch.interfaces import NullProgress
from pairmatch.regions import (
    NpzRegionLoader,
    RegionProvider,
    RegionProviderCache,
    RegionSet,
    create_region_provider,
)
from pairmatch.scene import DescriptorType, View

from conftest import DictRegionLoader, make_catalog


def _descriptors(n_views: int) -> dict[int, np.ndarray]:
    rng = np.random.default_rng(0)
    return {i: rng.standard_normal((5, 8)).astype(np.float32) for i in range(n_views)}


class CountingProgress:
    """Progress observer recording the advanced total."""

    def __init__(self):
        self.total = 0

    def advance(self, n: int = 1) -> None:
        self.total += n


class TestNpzRegionLoader:
    """Tests for NpzRegionLoader."""

    @pytest.fixture
    def view(self):
        return View(view_id=3, image_path="sub/img_003.jpg", width=10, height=10)

    def test_load(self, tmp_path, view):
        """Test loading descriptors and keypoints."""
        descriptors = np.arange(16, dtype=np.float32).reshape(2, 8)
        keypoints = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
        np.savez(tmp_path / "img_003.npz", descriptors=descriptors, keypoints=keypoints)

        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR, 8)
        region = loader.load(view)

        assert region.view_id == 3
        assert len(region) == 2
        assert region.dimension == 8
        np.testing.assert_array_equal(region.descriptors, descriptors)
        np.testing.assert_array_equal(region.keypoints, keypoints)

    def test_path_uses_image_stem(self, tmp_path, view):
        """Test that the descriptor file is named after the image stem."""
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR)
        assert loader.path_for(view) == tmp_path / "img_003.npz"

    def test_missing_file(self, tmp_path, view):
        """Test that a missing file raises RegionNotFoundError."""
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR)
        with pytest.raises(RegionNotFoundError, match="view 3"):
            loader.load(view)

    def test_corrupt_file(self, tmp_path, view):
        """Test that an unreadable file raises RegionNotFoundError."""
        (tmp_path / "img_003.npz").write_bytes(b"definitely not an archive")
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR)
        with pytest.raises(RegionNotFoundError, match="cannot read"):
            loader.load(view)

    def test_missing_descriptor_array(self, tmp_path, view):
        """Test that an archive without descriptors is rejected."""
        np.savez(tmp_path / "img_003.npz", keypoints=np.zeros((2, 2)))
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR)
        with pytest.raises(RegionNotFoundError, match="no 'descriptors'"):
            loader.load(view)

    def test_not_two_dimensional(self, tmp_path, view):
        """Test that 1-D descriptors are rejected."""
        np.savez(tmp_path / "img_003.npz", descriptors=np.zeros(8, dtype=np.float32))
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR)
        with pytest.raises(RegionNotFoundError, match="2-D"):
            loader.load(view)

    def test_binary_requires_uint8(self, tmp_path, view):
        """Test that binary descriptors must be packed bytes."""
        np.savez(tmp_path / "img_003.npz", descriptors=np.zeros((2, 32), dtype=np.float32))
        loader = NpzRegionLoader(tmp_path, DescriptorType.BINARY)
        with pytest.raises(RegionNotFoundError, match="uint8"):
            loader.load(view)

    def test_length_mismatch(self, tmp_path, view):
        """Test that the declared descriptor length is enforced."""
        np.savez(tmp_path / "img_003.npz", descriptors=np.zeros((2, 4), dtype=np.float32))
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR, 8)
        with pytest.raises(RegionNotFoundError, match="declared length 8"):
            loader.load(view)

    def test_empty_region_set(self, tmp_path, view):
        """Test that a view without features loads as an empty set."""
        np.savez(tmp_path / "img_003.npz", descriptors=np.zeros((0, 8), dtype=np.float32))
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR, 8)
        assert len(loader.load(view)) == 0

    def test_keypoint_count_mismatch(self, tmp_path, view):
        """Test that keypoints must align with descriptors."""
        np.savez(
            tmp_path / "img_003.npz",
            descriptors=np.zeros((2, 8), dtype=np.float32),
            keypoints=np.zeros((3, 2), dtype=np.float32),
        )
        loader = NpzRegionLoader(tmp_path, DescriptorType.SCALAR)
        with pytest.raises(RegionNotFoundError, match="keypoints"):
            loader.load(view)


class TestRegionProvider:
    """Tests for the unbounded RegionProvider."""

    def test_loads_every_view_once(self):
        """Test eager loading and lookup."""
        catalog = make_catalog(3)
        loader = DictRegionLoader(_descriptors(3))
        provider = RegionProvider(loader)
        progress = CountingProgress()

        assert provider.load(catalog, progress=progress) == 3
        assert progress.total == 3
        assert len(provider) == 3

        for _ in range(3):
            for view_id in range(3):
                assert provider.fetch(view_id).view_id == view_id
        assert loader.calls == {0: 1, 1: 1, 2: 1}
        assert provider.load_count == 3

    def test_failed_view_is_skipped(self):
        """Test that a view failing to load is absent, others remain."""
        catalog = make_catalog(3)
        provider = RegionProvider(DictRegionLoader(_descriptors(3), failing={1}))
        assert provider.load(catalog) == 2
        assert 1 not in provider
        assert provider.resident_ids() == [0, 2]
        with pytest.raises(RegionNotFoundError, match="not loaded"):
            provider.fetch(1)

    def test_unexpected_loader_error_is_wrapped(self, caplog):
        """Test that arbitrary loader errors skip the view instead of escaping."""

        class BrokenLoader:
            def load(self, view):
                if view.view_id == 1:
                    raise OSError("disk on fire")
                return RegionSet(
                    view_id=view.view_id,
                    descriptors=np.zeros((1, 8), dtype=np.float32),
                )

        provider = RegionProvider(BrokenLoader())
        assert provider.load(make_catalog(3)) == 2
        assert provider.resident_ids() == [0, 2]
        assert "No regions for view 1: disk on fire (view skipped)" in caplog.text
        with pytest.raises(RegionNotFoundError):
            provider.fetch(1)


class TestRegionProviderCache:
    """Tests for the bounded RegionProviderCache."""

    def _cache(self, capacity: int, n_views: int = 4, **loader_kwargs):
        loader = DictRegionLoader(_descriptors(n_views), **loader_kwargs)
        cache = RegionProviderCache(loader, capacity)
        cache.load(make_catalog(n_views), progress=NullProgress())
        return cache, loader

    def test_load_is_lazy(self):
        """Test that registering views reads nothing."""
        cache, loader = self._cache(2)
        assert len(cache) == 0
        assert loader.total_calls == 0

    def test_capacity_bound(self):
        """Test that at most capacity entries stay resident."""
        cache, loader = self._cache(2)
        for view_id in range(4):
            cache.fetch(view_id)
            assert len(cache) <= 2
        assert cache.resident_ids() == [2, 3]
        assert loader.total_calls == 4

    def test_hit_does_not_evict(self):
        """Test that a hit refreshes recency without loading or evicting."""
        cache, loader = self._cache(2)
        cache.fetch(0)
        cache.fetch(1)
        region = cache.fetch(0)

        assert region.view_id == 0
        assert loader.total_calls == 2
        assert cache.resident_ids() == [1, 0]

    def test_least_recently_used_is_evicted(self):
        """Test eviction order after a refreshing hit."""
        cache, loader = self._cache(2)
        cache.fetch(0)
        cache.fetch(1)
        cache.fetch(0)
        cache.fetch(2)

        assert cache.resident_ids() == [0, 2]
        assert 1 not in cache
        cache.fetch(1)
        assert loader.calls[1] == 2

    def test_returns_loader_data(self):
        """Test that fetched data is what the loader produced."""
        cache, loader = self._cache(1)
        region = cache.fetch(3)
        assert isinstance(region, RegionSet)
        np.testing.assert_array_equal(region.descriptors, loader.descriptors[3])

    def test_unknown_view(self):
        """Test that a view outside the catalog is not found."""
        cache, loader = self._cache(2)
        with pytest.raises(RegionNotFoundError, match="unknown view"):
            cache.fetch(99)
        assert loader.total_calls == 0

    def test_failed_load_is_not_cached(self):
        """Test that a failing view is retried on the next fetch."""
        cache, loader = self._cache(2, failing={1})
        for _ in range(2):
            with pytest.raises(RegionNotFoundError):
                cache.fetch(1)
        assert loader.calls[1] == 2
        assert len(cache) == 0

    def test_unexpected_loader_error_is_wrapped(self):
        """Test that arbitrary loader errors surface as RegionNotFoundError."""

        class BrokenLoader:
            def load(self, view):
                raise OSError("disk on fire")

        cache = RegionProviderCache(BrokenLoader(), 2)
        cache.load(make_catalog(2))
        with pytest.raises(RegionNotFoundError, match="disk on fire"):
            cache.fetch(0)

    def test_invalid_capacity(self):
        """Test that the bounded cache needs a positive capacity."""
        with pytest.raises(ValueError, match="capacity"):
            RegionProviderCache(DictRegionLoader({}), 0)

    def test_concurrent_fetches_share_one_load(self):
        """Test that simultaneous misses on one view load it once."""
        cache, loader = self._cache(2, delay=0.2)
        n_threads = 8
        barrier = threading.Barrier(n_threads)
        results = [None] * n_threads
        errors = []

        def worker(slot):
            try:
                barrier.wait()
                results[slot] = cache.fetch(0)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(k,)) for k in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert loader.calls == {0: 1}
        assert all(r is results[0] for r in results)
        assert cache.load_count == 1

    def test_concurrent_failure_reaches_every_waiter(self):
        """Test that waiters on a failing load all see the failure."""
        cache, loader = self._cache(2, delay=0.2, failing={0})
        n_threads = 4
        barrier = threading.Barrier(n_threads)
        errors = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                cache.fetch(0)
            except RegionNotFoundError as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == n_threads
        assert len(cache) == 0

    def test_bound_holds_under_concurrency(self):
        """Test the capacity bound with many threads fetching many views."""
        cache, loader = self._cache(3, n_views=10)
        errors = []

        def worker(offset):
            try:
                for k in range(50):
                    cache.fetch((k + offset) % 10)
                    assert len(cache) <= 3
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(k,)) for k in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(cache) <= 3


class TestCreateRegionProvider:
    """Tests for create_region_provider()."""

    def test_unbounded(self):
        """Test that capacity 0 loads everything up front."""
        loader = DictRegionLoader(_descriptors(3))
        provider = create_region_provider(make_catalog(3), loader, capacity=0)
        assert isinstance(provider, RegionProvider)
        assert loader.total_calls == 3

    def test_bounded(self):
        """Test that a positive capacity yields a lazy cache."""
        loader = DictRegionLoader(_descriptors(3))
        progress = CountingProgress()
        provider = create_region_provider(
            make_catalog(3), loader, capacity=2, progress=progress
        )
        assert isinstance(provider, RegionProviderCache)
        assert provider.capacity == 2
        assert loader.total_calls == 0
        assert progress.total == 3
