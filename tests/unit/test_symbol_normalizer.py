"""
Unit Tests for the Symbol Normalizer

These tests verify that:
- Every native spelling maps to one canonical symbol
- Normalization is idempotent
- Base/quote splitting follows the quote-asset priority
- Merging listings unions exchange bits and keeps the first known assets

Run with:
    pytest tests/unit/test_symbol_normalizer.py -v
"""

import pytest

from core.exchange_registry import ExchangeFlag
from core.schemas import MarketType, SymbolInfo
from core.symbol_normalizer import merge_symbol_lists, normalize, normalize_symbol_info, split_assets


class TestNormalize:
    """Tests for normalize()"""

    @pytest.mark.parametrize("native", [
        "BTCUSDT",
        "btcusdt",
        "BTC-USDT",
        "BTC-USDT-SWAP",
        "BTC_USDT",
        "BTC/USDT",
        "BTC/USDT:USDT",
        "BTCUSDT_PERP",
        " btc-usdt ",
    ])
    def test_native_spellings_map_to_one_symbol(self, native):
        assert normalize(native) == "BTCUSDT"

    def test_bare_perp_suffix(self):
        assert normalize("BTC-PERP") == "BTC"

    @pytest.mark.parametrize("native", ["ETH-BTC", "1000PEPE-USDT-SWAP", "XSWAPSWAP", "BTC/USDT:USDT", "PERP"])
    def test_idempotent(self, native):
        once = normalize(native)
        assert normalize(once) == once

    def test_suffix_alone_is_kept(self):
        """A symbol that is only a suffix is not stripped to nothing"""
        assert normalize("SWAP") == "SWAP"


class TestSplitAssets:
    """Tests for split_assets()"""

    @pytest.mark.parametrize("symbol,expected", [
        ("BTCUSDT", ("BTC", "USDT")),
        ("ETH-BTC", ("ETH", "BTC")),
        ("BTCBUSD", ("BTC", "BUSD")),
        ("BTCUSDC", ("BTC", "USDC")),
        ("BTCUSD", ("BTC", "USD")),
        ("ETHUSDT", ("ETH", "USDT")),
        ("BTC-USDT-SWAP", ("BTC", "USDT")),
    ])
    def test_known_quote_assets(self, symbol, expected):
        assert split_assets(symbol) == expected

    def test_unknown_quote_uses_last_four_characters(self):
        assert split_assets("ABCDEFGH") == ("ABCD", "EFGH")

    @pytest.mark.parametrize("symbol", ["BTC", "ABCD", "", "BTC-PERP"])
    def test_short_symbols_are_not_split(self, symbol):
        assert split_assets(symbol) == ("", "")


class TestNormalizeSymbolInfo:
    """Tests for normalize_symbol_info()"""

    def test_reported_assets_take_precedence(self):
        info = SymbolInfo(exchange="okx", symbol="BTC-USDT-SWAP", base_asset="btc", quote_asset="usdt")
        entity = normalize_symbol_info(info, MarketType.PERPETUAL, ExchangeFlag.OKX)

        assert entity.canonical_symbol == "BTCUSDT"
        assert entity.base_asset == "BTC"
        assert entity.quote_asset == "USDT"
        assert entity.market_type == MarketType.PERPETUAL
        assert entity.exchange_mask == 2
        assert entity.fetch_enabled is True

    def test_assets_derived_when_missing(self):
        entity = normalize_symbol_info(SymbolInfo(exchange="binance", symbol="ETHBTC"), MarketType.SPOT)
        assert (entity.base_asset, entity.quote_asset) == ("ETH", "BTC")

    def test_derivation_can_be_disabled(self):
        entity = normalize_symbol_info(
            SymbolInfo(exchange="binance", symbol="ETHBTC"), MarketType.SPOT, derive_assets=False
        )
        assert (entity.base_asset, entity.quote_asset) == ("", "")


class TestMergeSymbolLists:
    """Tests for merge_symbol_lists()"""

    def test_same_instrument_on_two_exchanges(self):
        merged = merge_symbol_lists([
            (ExchangeFlag.BINANCE, [SymbolInfo(exchange="binance", symbol="BTCUSDT")]),
            (ExchangeFlag.OKX, [SymbolInfo(exchange="okx", symbol="BTC-USDT")]),
        ], MarketType.SPOT)

        assert len(merged) == 1
        assert merged[0].canonical_symbol == "BTCUSDT"
        assert merged[0].exchange_mask == 3
        assert merged[0].exchanges == ["binance", "okx"]

    def test_three_exchanges_give_full_mask(self):
        merged = merge_symbol_lists([
            (ExchangeFlag.BINANCE, [SymbolInfo(exchange="binance", symbol="BTCUSDT")]),
            (ExchangeFlag.OKX, [SymbolInfo(exchange="okx", symbol="BTC-USDT-SWAP")]),
            (ExchangeFlag.BYBIT, [SymbolInfo(exchange="bybit", symbol="BTCUSDT")]),
        ], MarketType.PERPETUAL)

        assert [(e.canonical_symbol, e.exchange_mask) for e in merged] == [("BTCUSDT", 7)]

    def test_first_non_empty_assets_win(self):
        merged = merge_symbol_lists([
            (ExchangeFlag.BINANCE, [SymbolInfo(exchange="binance", symbol="XYZABCD", base_asset="XYZ", quote_asset="ABCD")]),
            (ExchangeFlag.OKX, [SymbolInfo(exchange="okx", symbol="XYZ-ABCD", base_asset="XY", quote_asset="ZABCD")]),
        ], MarketType.SPOT)

        assert (merged[0].base_asset, merged[0].quote_asset) == ("XYZ", "ABCD")

    def test_empty_values_never_overwrite_known_ones(self):
        merged = merge_symbol_lists([
            (ExchangeFlag.OKX, [SymbolInfo(exchange="okx", symbol="XYZ-ABCD", base_asset="XYZ", quote_asset="ABCD")]),
            (ExchangeFlag.BYBIT, [SymbolInfo(exchange="bybit", symbol="XYZABCD")]),
        ], MarketType.SPOT)

        assert merged[0].exchange_mask == 6
        assert (merged[0].base_asset, merged[0].quote_asset) == ("XYZ", "ABCD")

    def test_reported_assets_beat_an_earlier_derived_split(self):
        """Binance reports nothing, OKX reports the assets later in the same pass"""
        merged = merge_symbol_lists([
            (ExchangeFlag.BINANCE, [SymbolInfo(exchange="binance", symbol="XYZABCD")]),
            (ExchangeFlag.OKX, [SymbolInfo(exchange="okx", symbol="XYZ-ABCD", base_asset="XYZ", quote_asset="ABCD")]),
        ], MarketType.SPOT)

        assert (merged[0].base_asset, merged[0].quote_asset) == ("XYZ", "ABCD")

    def test_split_fallback_when_nobody_reports_assets(self):
        merged = merge_symbol_lists([
            (ExchangeFlag.BINANCE, [SymbolInfo(exchange="binance", symbol="SOLUSDT")]),
        ], MarketType.SPOT)

        assert (merged[0].base_asset, merged[0].quote_asset) == ("SOL", "USDT")

    def test_first_seen_order_is_kept(self):
        merged = merge_symbol_lists([
            (ExchangeFlag.BINANCE, [
                SymbolInfo(exchange="binance", symbol="SOLUSDT"),
                SymbolInfo(exchange="binance", symbol="BTCUSDT"),
            ]),
            (ExchangeFlag.BYBIT, [SymbolInfo(exchange="bybit", symbol="ETHUSDT")]),
        ], MarketType.SPOT)

        assert [e.canonical_symbol for e in merged] == ["SOLUSDT", "BTCUSDT", "ETHUSDT"]
