"""
Unit Tests for MarketDataService

These tests verify the query and control surface used by the API:
- Sorting (missing values last), filtering and pagination of price records
- Symbol filters
- Fetch-flag updates and their effect on the negative cache
- Sync start/stop idempotence and wiring from settings

Run with:
    pytest tests/unit/test_market_data.py -v
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from core.config import Settings
from core.exchange_manager import ExchangeManager
from core.request_queue import RateLimitedRequestQueue, RequestQueue
from core.schemas import MarketType, PriceQuote, SymbolEntity
from core.ttl_cache import InvalidSymbolCache
from services.market_data import MarketDataService, build_queues
from services.sync_scheduler import SyncScheduler
from tests.conftest import FakeClock, FakeExchange, ManualTimers, make_queues, wait_until


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def spot_quote(exchange, symbol, price):
    return PriceQuote(
        exchange=exchange,
        symbol=symbol,
        market_type=MarketType.SPOT,
        last_price=Decimal(price),
        timestamp=NOW,
    )


@pytest_asyncio.fixture
async def service(store):
    adapters = [
        FakeExchange("binance", listings={MarketType.SPOT: ["BTCUSDT"]}, prices={"BTCUSDT": "50000"}),
        FakeExchange("okx", listings={MarketType.SPOT: ["BTC-USDT"]}, prices={"BTCUSDT": "50010"}),
    ]
    queues, _ = make_queues(["binance", "okx"])
    scheduler = SyncScheduler(
        store,
        ExchangeManager(adapters),
        queues=queues,
        invalid_cache=InvalidSymbolCache(ttl=3600, clock=FakeClock()),
        market_types=(MarketType.SPOT,),
        sleep=ManualTimers(),
    )
    svc = MarketDataService(store, scheduler.manager, scheduler)
    yield svc
    await svc.shutdown()


async def seed_prices(store):
    """
    AAAUSDT  binance 100, okx 101     spread 0.01
    BBBUSDT  binance 200, okx 200.2   spread 0.001
    CCCUSDT  binance 300              no spread, no okx price
    """
    for symbol, prices in {
        "AAAUSDT": {"binance": "100", "okx": "101"},
        "BBBUSDT": {"binance": "200", "okx": "200.2"},
        "CCCUSDT": {"binance": "300"},
    }.items():
        for exchange, price in prices.items():
            await store.upsert_price(symbol, MarketType.SPOT, exchange, spot_quote(exchange, symbol, price))


def symbols_of(page):
    return [r.canonical_symbol for r in page.records]


# ============================================
# Price Queries
# ============================================

class TestGetPrices:
    """Tests for get_prices"""

    @pytest.mark.asyncio
    async def test_default_sort_is_symbol_ascending(self, service, store):
        await seed_prices(store)

        page = await service.get_prices(MarketType.SPOT)

        assert symbols_of(page) == ["AAAUSDT", "BBBUSDT", "CCCUSDT"]
        assert (page.total, page.page, page.page_size, page.total_pages) == (3, 1, 50, 1)

    @pytest.mark.asyncio
    async def test_sort_by_spread_puts_missing_last(self, service, store):
        await seed_prices(store)

        descending = await service.get_prices(MarketType.SPOT, sort_by="spread", descending=True)
        ascending = await service.get_prices(MarketType.SPOT, sort_by="spread")

        assert symbols_of(descending) == ["AAAUSDT", "BBBUSDT", "CCCUSDT"]
        assert symbols_of(ascending) == ["BBBUSDT", "AAAUSDT", "CCCUSDT"]

    @pytest.mark.asyncio
    async def test_sort_by_exchange_price(self, service, store):
        await seed_prices(store)

        page = await service.get_prices(MarketType.SPOT, sort_by="price_okx", descending=True)

        assert symbols_of(page) == ["BBBUSDT", "AAAUSDT", "CCCUSDT"]

    @pytest.mark.asyncio
    async def test_pagination(self, service, store):
        await seed_prices(store)

        first = await service.get_prices(MarketType.SPOT, page=1, page_size=2)
        second = await service.get_prices(MarketType.SPOT, page=2, page_size=2)
        beyond = await service.get_prices(MarketType.SPOT, page=5, page_size=2)

        assert symbols_of(first) == ["AAAUSDT", "BBBUSDT"]
        assert symbols_of(second) == ["CCCUSDT"]
        assert first.total_pages == 2
        assert beyond.records == []
        assert beyond.total == 3

    @pytest.mark.asyncio
    async def test_empty_store(self, service):
        page = await service.get_prices(MarketType.SPOT)

        assert page.records == []
        assert page.total == 0
        assert page.total_pages == 0

    @pytest.mark.asyncio
    async def test_search_uses_canonical_form(self, service, store):
        await seed_prices(store)

        page = await service.get_prices(MarketType.SPOT, search="bbb-usdt")

        assert symbols_of(page) == ["BBBUSDT"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"page": 0},
        {"page_size": 0},
        {"page_size": 501},
        {"sort_by": "volume"},
    ])
    async def test_invalid_arguments(self, service, kwargs):
        with pytest.raises(ValueError):
            await service.get_prices(MarketType.SPOT, **kwargs)


# ============================================
# Symbol Queries & Controls
# ============================================

class TestSymbols:
    """Tests for get_symbols and set_fetch_enabled"""

    @pytest_asyncio.fixture
    async def seeded(self, store):
        await store.upsert_symbols(MarketType.SPOT, [
            SymbolEntity(canonical_symbol="BTCUSDT", base_asset="BTC", quote_asset="USDT", market_type=MarketType.SPOT, exchange_mask=3),
            SymbolEntity(canonical_symbol="ETHUSDT", base_asset="ETH", quote_asset="USDT", market_type=MarketType.SPOT, exchange_mask=1),
            SymbolEntity(canonical_symbol="ETHBTC", base_asset="ETH", quote_asset="BTC", market_type=MarketType.SPOT, exchange_mask=1),
        ])

    @pytest.mark.asyncio
    async def test_filters(self, service, seeded):
        by_search = await service.get_symbols(MarketType.SPOT, search="eth")
        by_base = await service.get_symbols(MarketType.SPOT, base_asset="eth")
        by_quote = await service.get_symbols(MarketType.SPOT, quote_asset="BTC")
        combined = await service.get_symbols(MarketType.SPOT, base_asset="ETH", quote_asset="USDT")

        assert [s.canonical_symbol for s in by_search] == ["ETHBTC", "ETHUSDT"]
        assert [s.canonical_symbol for s in by_base] == ["ETHBTC", "ETHUSDT"]
        assert [s.canonical_symbol for s in by_quote] == ["ETHBTC"]
        assert [s.canonical_symbol for s in combined] == ["ETHUSDT"]

    @pytest.mark.asyncio
    async def test_set_fetch_enabled_unknown_symbol(self, service, seeded):
        with pytest.raises(KeyError):
            await service.set_fetch_enabled("DOGEUSDT", MarketType.SPOT, False)

    @pytest.mark.asyncio
    async def test_set_fetch_enabled_normalizes_symbol(self, service, seeded):
        await service.set_fetch_enabled("btc-usdt", MarketType.SPOT, False)

        flags = {s.canonical_symbol: s.fetch_enabled for s in await service.get_symbols(MarketType.SPOT)}
        assert flags["BTCUSDT"] is False
        assert flags["ETHUSDT"] is True

    @pytest.mark.asyncio
    async def test_re_enabling_clears_negative_cache(self, service, seeded):
        invalid = service.scheduler.invalid_cache
        invalid.record("okx", "BTCUSDT", MarketType.SPOT)
        invalid.record("binance", "BTCUSDT", MarketType.SPOT)

        await service.set_fetch_enabled("BTCUSDT", MarketType.SPOT, False)
        assert invalid.is_invalid("okx", "BTCUSDT", MarketType.SPOT)

        await service.set_fetch_enabled("BTCUSDT", MarketType.SPOT, True)
        assert not invalid.is_invalid("okx", "BTCUSDT", MarketType.SPOT)
        assert not invalid.is_invalid("binance", "BTCUSDT", MarketType.SPOT)


# ============================================
# Sync Control & Wiring
# ============================================

class TestSyncControl:
    """Tests for start_sync / stop_sync / status"""

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, service):
        assert await service.start_sync() is True
        assert await service.start_sync() is False
        assert service.scheduler.is_running

        assert await service.stop_sync() is True
        assert await service.stop_sync() is False
        assert not service.scheduler.is_running

    @pytest.mark.asyncio
    async def test_start_populates_store(self, service, store):
        await service.start_sync()

        page = await service.get_prices(MarketType.SPOT)

        assert symbols_of(page) == ["BTCUSDT"]
        assert page.records[0].prices["okx"] == Decimal("50010")
        assert page.records[0].spread == Decimal("10") / Decimal("50000")

    @pytest.mark.asyncio
    async def test_status(self, service):
        await service.start_sync()
        await wait_until(lambda: service.scheduler.prices.runs == 1)

        status = service.status()

        assert status["running"] is True
        assert status["exchanges"] == ["binance", "okx"]
        assert status["queues"] == {"binance": 0, "okx": 0}
        assert status["passes"]["symbol-discovery"]["runs"] == 1


class TestWiring:
    """Tests for build_queues and from_settings"""

    def test_build_queues(self):
        config = Settings(_env_file=None, rate_limited_exchanges="okx", request_delay_ms=100, max_retries=4)

        queues = build_queues(config, ["binance", "okx"])

        assert type(queues["binance"]) is RequestQueue
        assert isinstance(queues["okx"], RateLimitedRequestQueue)
        assert queues["okx"].max_requests == 20
        assert queues["binance"].request_delay == 0.1
        assert queues["binance"].max_retries == 4

    @pytest.mark.asyncio
    async def test_from_settings(self):
        config = Settings(
            _env_file=None,
            database_url="sqlite+aiosqlite:///:memory:",
            enabled_exchanges="binance,bybit",
            not_found_policy="auto_disable",
            price_sync_interval=5,
        )

        svc = MarketDataService.from_settings(config)
        try:
            assert svc.manager.list_exchanges() == ["binance", "bybit"]
            assert set(svc.scheduler.queues) == {"binance", "bybit"}
            assert svc.scheduler.not_found_policy == "auto_disable"
            assert svc.scheduler.intervals["price-refresh"] == 5
            assert svc.scheduler.quote_assets == {"USDT"}
            assert svc.scheduler.discovery_timeout == 60.0
        finally:
            await svc.store.close()
