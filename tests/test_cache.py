import asyncio

from map_narrator.core.cache import MemoryCache, get_or_compute_json


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    async def run():
        await cache.set("k", "v", ttl_seconds=10)
        first = await cache.get("k")
        clock.now += 11
        return first, await cache.get("k")

    assert asyncio.run(run()) == ("v", None)
    assert len(cache) == 0


def test_get_or_compute_hits_after_miss():
    cache = MemoryCache()
    calls = []

    async def compute():
        calls.append(1)
        return {"answer": 42}

    async def run():
        first = await get_or_compute_json(cache, "k", 60, compute)
        second = await get_or_compute_json(cache, "k", 60, compute)
        return first, second

    first, second = asyncio.run(run())
    assert first == ({"answer": 42}, False)
    assert second == ({"answer": 42}, True)
    assert len(calls) == 1


def test_should_store_false_skips_write():
    cache = MemoryCache()

    async def compute():
        return {"partial": True}

    asyncio.run(get_or_compute_json(cache, "k", 60, compute, should_store=lambda v: False))
    assert len(cache) == 0


def test_corrupt_entry_is_a_miss():
    cache = MemoryCache()

    async def compute():
        return [1, 2]

    async def run():
        await cache.set("k", "{not json", 60)
        return await get_or_compute_json(cache, "k", 60, compute)

    assert asyncio.run(run()) == ([1, 2], False)
