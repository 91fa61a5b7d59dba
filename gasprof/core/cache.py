# /gasprof/core/cache.py
# Bounded in-memory TTL cache. One instance per owning engine; every cache in
# the package (estimates, overheads, paymaster profiles) uses this policy.
import hashlib
import json
import time
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from cachetools import TTLCache as _TTLCache

from gasprof.core.logger import CACHE_HITS

V = TypeVar("V")


def canonical_key(*parts: Any) -> str:
    """Stable hash over JSON-serializable parts (order matters, dict keys don't)."""
    payload = json.dumps(parts, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha3_256(payload.encode()).hexdigest()


class TTLCache(Generic[V]):
    """
    Named cachetools.TTLCache with hit metrics. When full, the least recently
    used entry is evicted. Not thread-safe: callers share it only within a
    single event loop.
    """
    def __init__(self, name: str, ttl_seconds: float, max_entries: int, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0 or max_entries <= 0:
            raise ValueError("cache TTL and size bound must be positive")
        self.name = name
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self._entries: _TTLCache = _TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)

    def get(self, key: str) -> Optional[V]:
        value = self._entries.get(key)
        if value is not None:
            CACHE_HITS.labels(self.name).inc()
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def stats(self) -> Dict[str, Any]:
        return {"name": self.name, "size": len(self), "ttl": self.ttl, "max_entries": self.max_entries}
