"""
TTL Cache

A small generic key/value cache whose entries expire a fixed time after
insertion. Used for two things:

- InvalidSymbolCache: negative cache of (exchange, symbol, market_type) keys
  that recently answered "symbol not found"
- The persistent store's in-memory read cache (one snapshot per market type)

Expired entries are treated as absent on lookup and dropped lazily.
None of the methods await, so within one event loop every call is atomic
with respect to other coroutines.

Example:
    >>> cache = TTLCache(ttl=10)
    >>> cache.set("spot", snapshot)
    >>> cache.get("spot")      # snapshot, until 10 seconds have passed
"""

import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from core.schemas import MarketType
from core.utils.time import current_utc_datetime


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Mapping with per-entry expiry.

    Args:
        ttl: Entry lifetime in seconds. A ttl of 0 disables caching (every entry
             is already expired on lookup).
        clock: Monotonic clock returning seconds; injectable for tests
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        if ttl < 0:
            raise ValueError(f"ttl cannot be negative: {ttl}")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[K, Tuple[V, float]] = {}

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (value, self._clock())

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, inserted_at = entry
        if self._clock() - inserted_at >= self.ttl:
            del self._entries[key]
            return default
        return value

    def age(self, key: K) -> Optional[float]:
        """Seconds since the entry was inserted, None if absent or expired."""
        if key not in self:
            return None
        return self._clock() - self._entries[key][1]

    def delete(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were dropped."""
        now = self._clock()
        expired = [k for k, (_, ts) in self._entries.items() if now - ts >= self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        if entry is None:
            return False
        if self._clock() - entry[1] >= self.ttl:
            del self._entries[key]  # type: ignore[arg-type]
            return False
        return True

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)


def _market_key(market_type) -> str:
    return MarketType(market_type).value


class InvalidSymbolCache:
    """
    Negative cache for instruments an exchange recently reported as missing.

    Presence of (exchange, symbol, market_type) suppresses the next fetch
    attempt until the entry is older than the TTL.
    """

    def __init__(self, ttl: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self._cache: TTLCache = TTLCache(ttl, clock=clock)

    def record(self, exchange: str, symbol: str, market_type: str) -> None:
        self._cache.set((exchange, symbol, _market_key(market_type)), current_utc_datetime())

    def is_invalid(self, exchange: str, symbol: str, market_type: str) -> bool:
        return (exchange, symbol, _market_key(market_type)) in self._cache

    def recorded_at(self, exchange: str, symbol: str, market_type: str):
        """UTC time of the NotFound answer, None if absent or expired."""
        return self._cache.get((exchange, symbol, _market_key(market_type)))

    def discard(self, exchange: str, symbol: str, market_type: str) -> None:
        self._cache.delete((exchange, symbol, _market_key(market_type)))

    def clear(self) -> None:
        self._cache.clear()

    def purge_expired(self) -> int:
        return self._cache.purge_expired()

    def __len__(self) -> int:
        return len(self._cache)
