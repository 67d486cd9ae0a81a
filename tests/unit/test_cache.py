"""
Tests for the result cache.
"""

import asyncio

import numpy as np
import pytest

from pixelflow.core.cache import CacheKey, ResultCache, fingerprint
from pixelflow.core.data_types import ImageData


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _key(name="n", **parameters):
    return CacheKey.build(name, "op", parameters, {})


class TestFingerprint:

    def test_map_key_order_ignored(self):
        assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})

    def test_array_order_matters(self):
        assert fingerprint({"x": [1, 2]}) != fingerprint({"x": [2, 1]})

    def test_int_and_float_differ(self):
        assert fingerprint({"x": 1}) != fingerprint({"x": 1.0})

    def test_image_content(self):
        a = ImageData.empty(4, 4)
        b = ImageData.empty(4, 4)
        assert fingerprint({"image": a}) == fingerprint({"image": b})
        b.pixels[0, 0, 0] = 1.0
        assert fingerprint({"image": a}) != fingerprint({"image": b})


class TestResultCache:

    def test_hit_and_miss(self):
        cache = ResultCache()
        assert cache.get(_key()) is None
        cache.put(_key(), {"value": 1})
        assert cache.get(_key()) == {"value": 1}
        stats = cache.stats
        assert (stats.hits, stats.misses, stats.entries) == (1, 1, 1)

    def test_lru_eviction(self):
        cache = ResultCache(capacity=2)
        cache.put(_key("a"), {"v": 1})
        cache.put(_key("b"), {"v": 2})
        cache.get(_key("a"))
        cache.put(_key("c"), {"v": 3})

        assert _key("a") in cache
        assert _key("b") not in cache
        assert _key("c") in cache
        assert cache.stats.evictions == 1

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = ResultCache(ttl=10.0, clock=clock)
        cache.put(_key(), {"v": 1})

        clock.now = 5.0
        assert cache.get(_key()) == {"v": 1}
        clock.now = 11.0
        assert cache.get(_key()) is None
        assert len(cache) == 0

    def test_memory_bound(self):
        image = ImageData(pixels=np.zeros((16, 16, 4), dtype=np.float32))
        cache = ResultCache(max_memory=image.nbytes * 2 + 100)
        for name in "abc":
            cache.put(_key(name), {"image": image})

        assert len(cache) == 2
        assert cache.memory_usage <= cache.max_memory
        assert _key("a") not in cache

    def test_oversized_entry_not_stored(self):
        image = ImageData(pixels=np.zeros((16, 16, 4), dtype=np.float32))
        cache = ResultCache(max_memory=100)
        assert cache.put(_key(), {"image": image}) is False
        assert len(cache) == 0

    def test_invalidate_node(self):
        cache = ResultCache()
        cache.put(_key("a", x=1), {"v": 1})
        cache.put(_key("a", x=2), {"v": 2})
        cache.put(_key("b"), {"v": 3})
        assert cache.invalidate_node("a") == 2
        assert len(cache) == 1

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            ResultCache(capacity=0)

    def test_returned_outputs_are_copies(self):
        cache = ResultCache()
        cache.put(_key(), {"value": 1})
        cache.get(_key())["value"] = 99
        cache.get(_key()).pop("value")
        assert cache.get(_key()) == {"value": 1}

    def test_reset_stats_keeps_entries(self):
        cache = ResultCache()
        cache.put(_key(), {"v": 1})
        cache.get(_key())
        cache.get(_key("missing"))
        cache.reset_stats()

        stats = cache.stats
        assert (stats.hits, stats.misses, stats.evictions) == (0, 0, 0)
        assert stats.entries == 1
        assert cache.get(_key()) == {"v": 1}


class TestGetOrCompute:

    def test_computes_then_hits(self):
        cache = ResultCache()
        calls = []

        async def compute():
            calls.append(1)
            return {"v": 42}

        async def main():
            first = await cache.get_or_compute(_key(), compute)
            second = await cache.get_or_compute(_key(), compute)
            return first, second

        first, second = asyncio.run(main())
        assert first == ({"v": 42}, False)
        assert second == ({"v": 42}, True)
        assert len(calls) == 1

    def test_concurrent_lookups_compute_once(self):
        cache = ResultCache()
        calls = []

        async def compute():
            calls.append(1)
            await asyncio.sleep(0.01)
            return {"v": 1}

        async def main():
            return await asyncio.gather(*(cache.get_or_compute(_key(), compute) for _ in range(5)))

        results = asyncio.run(main())
        assert len(calls) == 1
        assert [hit for _, hit in results].count(False) == 1
        assert all(outputs == {"v": 1} for outputs, _ in results)

    def test_failure_lets_waiter_retry(self):
        cache = ResultCache()
        attempts = []

        async def compute():
            attempts.append(1)
            await asyncio.sleep(0.01)
            if len(attempts) == 1:
                raise RuntimeError("first attempt fails")
            return {"v": 2}

        async def main():
            return await asyncio.gather(
                cache.get_or_compute(_key(), compute),
                cache.get_or_compute(_key(), compute),
                return_exceptions=True,
            )

        first, second = asyncio.run(main())
        assert isinstance(first, RuntimeError)
        assert second == ({"v": 2}, False)
        assert len(attempts) == 2

    def test_unrelated_keys_do_not_wait(self):
        cache = ResultCache()
        started = []

        async def compute(name):
            started.append(name)
            await asyncio.sleep(0.01)
            return {"v": name}

        async def main():
            return await asyncio.gather(
                cache.get_or_compute(_key("a"), lambda: compute("a")),
                cache.get_or_compute(_key("b"), lambda: compute("b")),
            )

        results = asyncio.run(main())
        assert sorted(started) == ["a", "b"]
        assert [hit for _, hit in results] == [False, False]

    def test_waiters_share_result_too_large_to_store(self):
        image = ImageData(pixels=np.zeros((64, 64, 4), dtype=np.float32))
        cache = ResultCache(max_memory=1000)
        calls = []

        async def compute():
            calls.append(1)
            await asyncio.sleep(0.01)
            return {"image": image}

        async def main():
            return await asyncio.gather(*(cache.get_or_compute(_key(), compute) for _ in range(3)))

        results = asyncio.run(main())
        assert len(calls) == 1
        assert [hit for _, hit in results] == [False, True, True]
        assert all(outputs["image"] is image for outputs, _ in results)
        assert len(cache) == 0

    def test_computed_outputs_do_not_alias_entry(self):
        cache = ResultCache()

        async def compute():
            return {"v": 1}

        async def main():
            outputs, _ = await cache.get_or_compute(_key(), compute)
            outputs["v"] = 2
            hit, _ = await cache.get_or_compute(_key(), compute)
            hit["extra"] = 3
            return await cache.get_or_compute(_key(), compute)

        assert asyncio.run(main()) == ({"v": 1}, True)
