"""
Unit Tests for Data Schemas and the Exchange Registry

Run with:
    pytest tests/unit/test_schemas.py -v
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from core.exchange_registry import (
    ALL_EXCHANGES,
    EXCHANGE_REGISTRY,
    ExchangeFlag,
    exchange_flag,
    exchanges_in_mask,
    mask_for,
)
from core.schemas import MarketType, PriceQuote, PriceRecord, SymbolEntity, SymbolInfo


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def record(**prices):
    return PriceRecord(
        canonical_symbol="BTCUSDT",
        market_type=MarketType.SPOT,
        prices={ex: (Decimal(p) if p is not None else None) for ex, p in prices.items()},
        updated_at=NOW,
    )


class TestExchangeRegistry:
    """Tests for the bit-per-exchange registry"""

    def test_fixed_bits(self):
        assert exchange_flag("binance") == 1
        assert exchange_flag("okx") == 2
        assert exchange_flag("bybit") == 4
        assert ALL_EXCHANGES == 7

    def test_registry_order_matches_bits(self):
        for i, name in enumerate(EXCHANGE_REGISTRY):
            assert exchange_flag(name) == 1 << i

    def test_case_insensitive_lookup(self):
        assert exchange_flag("OKX") is ExchangeFlag.OKX

    def test_unknown_exchange(self):
        with pytest.raises(ValueError, match="not registered"):
            exchange_flag("kraken")

    def test_decode_mask(self):
        assert exchanges_in_mask(5) == ["binance", "bybit"]
        assert exchanges_in_mask(0) == []
        assert exchanges_in_mask(7) == ["binance", "okx", "bybit"]

    def test_mask_for_names(self):
        assert mask_for(["bybit", "okx"]) == 6
        assert mask_for([]) == 0


class TestSymbolInfo:
    """Tests for SymbolInfo validators"""

    def test_exchange_lowercased_and_assets_uppercased(self):
        info = SymbolInfo(exchange="OKX", symbol="BTC-USDT", base_asset="btc", quote_asset="usdt")

        assert info.exchange == "okx"
        assert info.base_asset == "BTC"
        assert info.quote_asset == "USDT"

    def test_missing_assets_become_empty(self):
        info = SymbolInfo(exchange="binance", symbol="BTCUSDT", base_asset=None)

        assert info.base_asset == ""
        assert info.quote_asset == ""


class TestSymbolEntity:
    """Tests for SymbolEntity"""

    def test_defaults(self):
        entity = SymbolEntity(canonical_symbol="BTCUSDT", market_type="spot")

        assert entity.market_type is MarketType.SPOT
        assert entity.exchange_mask == 0
        assert entity.fetch_enabled is True
        assert entity.exchanges == []

    def test_exchanges_from_mask(self):
        entity = SymbolEntity(canonical_symbol="BTCUSDT", market_type=MarketType.PERPETUAL, exchange_mask=6)
        assert entity.exchanges == ["okx", "bybit"]

    def test_negative_mask_rejected(self):
        with pytest.raises(ValidationError):
            SymbolEntity(canonical_symbol="BTCUSDT", market_type=MarketType.SPOT, exchange_mask=-1)

    def test_unknown_market_type_rejected(self):
        with pytest.raises(ValidationError):
            SymbolEntity(canonical_symbol="BTCUSDT", market_type="options")


class TestPriceQuote:
    """Tests for PriceQuote"""

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            PriceQuote(exchange="okx", symbol="BTCUSDT", market_type="spot", last_price="-1", timestamp=NOW)

    def test_string_price_parsed_exactly(self):
        quote = PriceQuote(exchange="okx", symbol="BTCUSDT", market_type="spot", last_price="50000.10", timestamp=NOW)
        assert quote.last_price == Decimal("50000.10")


class TestPriceRecordSpread:
    """Tests for PriceRecord.spread"""

    def test_spread_between_highest_and_lowest(self):
        spread = record(binance="50000", okx="50010", bybit="49995").spread
        assert spread == Decimal("15") / Decimal("49995")

    def test_spread_needs_two_prices(self):
        assert record(binance="50000", okx=None, bybit=None).spread is None
        assert record().spread is None

    def test_zero_prices_ignored(self):
        assert record(binance="0", okx="50000").spread is None

    def test_equal_prices_give_zero(self):
        assert record(binance="100", okx="100").spread == 0
