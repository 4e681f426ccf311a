"""
Tests for the bounded LRU cache.
"""

import threading

import pytest

from hubspot_sync.cache import BoundedLRUCache


class TestBoundedLRUCache:
    def test_evicts_least_recently_used(self):
        cache = BoundedLRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert len(cache) == 2
        assert cache.get_stats()["evictions"] == 1

    def test_get_or_load_skips_none(self):
        cache = BoundedLRUCache()
        calls = []

        def loader():
            calls.append(1)
            return None

        assert cache.get_or_load("k", loader) is None
        assert cache.get_or_load("k", loader) is None
        assert len(calls) == 2
        assert len(cache) == 0

    def test_len_waits_for_lock(self):
        cache = BoundedLRUCache()
        cache.set("a", 1)
        sizes = []

        with cache._lock:
            reader = threading.Thread(target=lambda: sizes.append(len(cache)))
            reader.start()
            reader.join(timeout=0.1)
            assert reader.is_alive()

        reader.join(timeout=5)
        assert sizes == [1]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            BoundedLRUCache(max_size=0)
