"""
Result Cache Tests
==================
"""
import pytest

from design_extractor.cache import ResultCache, make_cache_key

from conftest import make_input_file


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestResultCache:

    def test_put_and_get(self):
        cache = ResultCache()
        cache.put("a", "result-a")
        assert cache.get("a") == "result-a"
        assert "a" in cache
        assert cache.get("missing") is None

    def test_eviction_is_fifo_not_lru(self):
        cache = ResultCache(max_size=2)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1  # hit does not refresh position
        cache.put("c", 3)

        assert "a" not in cache
        assert cache.get("b") == 2
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_overwrite_does_not_grow(self):
        cache = ResultCache(max_size=2)
        cache.put("a", 1)
        cache.put("a", 2)
        assert len(cache) == 1
        assert cache.get("a") == 2

    def test_size_never_exceeds_max(self):
        cache = ResultCache(max_size=10)
        for i in range(25):
            cache.put(f"key-{i}", i)
            assert len(cache) <= 10
        assert cache.stats()["keys"] == [f"key-{i}" for i in range(15, 25)]

    def test_expiry(self):
        clock = FakeClock()
        cache = ResultCache(expiration_seconds=3600, clock=clock)
        cache.put("a", 1)

        clock.now = 3600
        assert cache.get("a") == 1

        clock.now = 3600.5
        assert cache.get("a") is None
        assert "a" not in cache

    def test_stats_and_clear(self):
        cache = ResultCache(max_size=5, expiration_seconds=60)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.stats() == {"size": 2, "max_size": 5, "keys": ["a", "b"], "expiration_seconds": 60}

        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["keys"] == []

    @pytest.mark.parametrize("kwargs", [{"max_size": 0}, {"expiration_seconds": 0}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            ResultCache(**kwargs)


class TestCacheKey:

    def test_same_content_same_key(self):
        first = make_input_file(b"\x89PNG same bytes", name="a.png")
        second = make_input_file(b"\x89PNG same bytes", name="renamed.png")
        assert make_cache_key(first) == make_cache_key(second)

    def test_same_name_different_content(self):
        first = make_input_file(b"one", name="shirt.png")
        second = make_input_file(b"two", name="shirt.png")
        assert make_cache_key(first) != make_cache_key(second)

    def test_content_type_is_part_of_key(self):
        png = make_input_file(b"bytes", content_type="image/png")
        jpeg = make_input_file(b"bytes", content_type="image/jpeg")
        assert make_cache_key(png) != make_cache_key(jpeg)

    def test_unsupported_input(self):
        with pytest.raises(TypeError):
            make_cache_key("shirt.png")
