"""
Unit Tests for TTLCache and InvalidSymbolCache

Run with:
    pytest tests/unit/test_ttl_cache.py -v
"""

import pytest

from core.schemas import MarketType
from core.ttl_cache import InvalidSymbolCache, TTLCache
from tests.conftest import FakeClock


class TestTTLCache:
    """Tests for TTLCache"""

    def test_entry_lives_until_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("spot", [1, 2])

        clock.advance(9)
        assert cache.get("spot") == [1, 2]
        assert "spot" in cache

        clock.advance(1)
        assert cache.get("spot") is None
        assert "spot" not in cache

    def test_default_for_missing_key(self):
        cache = TTLCache(ttl=10, clock=FakeClock())
        assert cache.get("missing", "fallback") == "fallback"

    def test_set_refreshes_age(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("k", 1)
        clock.advance(8)
        cache.set("k", 2)
        clock.advance(8)

        assert cache.get("k") == 2
        assert cache.age("k") == 8

    def test_zero_ttl_disables_caching(self):
        cache = TTLCache(ttl=0, clock=FakeClock())
        cache.set("k", 1)
        assert cache.get("k") is None

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            TTLCache(ttl=-1)

    def test_purge_expired_and_len(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("old", 1)
        clock.advance(5)
        cache.set("new", 2)
        clock.advance(6)

        assert cache.purge_expired() == 1
        assert len(cache) == 1
        assert cache.get("new") == 2

    def test_delete_and_clear(self):
        cache = TTLCache(ttl=10, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)

        cache.delete("a")
        cache.delete("never-set")
        assert "a" not in cache
        assert "b" in cache

        cache.clear()
        assert len(cache) == 0


class TestInvalidSymbolCache:
    """Tests for InvalidSymbolCache"""

    def test_record_and_expire(self):
        clock = FakeClock()
        cache = InvalidSymbolCache(ttl=3600, clock=clock)
        cache.record("okx", "FOOUSDT", MarketType.SPOT)

        assert cache.is_invalid("okx", "FOOUSDT", MarketType.SPOT)
        assert cache.recorded_at("okx", "FOOUSDT", MarketType.SPOT) is not None

        clock.advance(3600)
        assert not cache.is_invalid("okx", "FOOUSDT", MarketType.SPOT)

    def test_keys_include_exchange_and_market(self):
        cache = InvalidSymbolCache(ttl=3600, clock=FakeClock())
        cache.record("okx", "FOOUSDT", "spot")

        assert cache.is_invalid("okx", "FOOUSDT", MarketType.SPOT)
        assert not cache.is_invalid("binance", "FOOUSDT", MarketType.SPOT)
        assert not cache.is_invalid("okx", "FOOUSDT", MarketType.PERPETUAL)

    def test_discard(self):
        cache = InvalidSymbolCache(ttl=3600, clock=FakeClock())
        cache.record("bybit", "FOOUSDT", MarketType.PERPETUAL)
        cache.discard("bybit", "FOOUSDT", MarketType.PERPETUAL)

        assert not cache.is_invalid("bybit", "FOOUSDT", MarketType.PERPETUAL)
        assert len(cache) == 0

    def test_purge_expired(self):
        clock = FakeClock()
        cache = InvalidSymbolCache(ttl=60, clock=clock)
        cache.record("okx", "AUSDT", MarketType.SPOT)
        cache.record("okx", "BUSDT", MarketType.SPOT)
        clock.advance(61)

        assert cache.purge_expired() == 2
        assert len(cache) == 0
