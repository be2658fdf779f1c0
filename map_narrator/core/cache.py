# map_narrator/core/cache.py

import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from map_narrator.core.logging_config import logger


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


class MemoryCache:
    """
    In-process key/value store with per-entry TTL.

    Values for a given key are reproducible, so concurrent writers simply
    overwrite each other.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


async def get_or_compute_json(
    cache: CacheStore,
    key: str,
    ttl_seconds: int,
    compute: Callable[[], Awaitable[Any]],
    should_store: Optional[Callable[[Any], bool]] = None,
) -> Tuple[Any, bool]:
    """
    Check cache -> miss -> compute -> store -> return.

    `compute` must return something JSON-serialisable. Returns
    `(value, cache_hit)`. A cached entry that is not valid JSON counts
    as a miss.
    """
    raw = await cache.get(key)
    if raw is not None:
        try:
            return json.loads(raw), True
        except ValueError:
            logger.warning(f"Cache entry {key!r} is not valid JSON; recomputing")

    value = await compute()
    if should_store is None or should_store(value):
        await cache.set(key, json.dumps(value), ttl_seconds)
    return value, False
