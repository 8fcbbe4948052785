"""
Symbol Normalizer

Maps every exchange's native symbol spelling to one canonical symbol and
merges per-exchange listings into SymbolEntity records.

Native spellings seen in the wild:
    Binance   BTCUSDT
    Bybit     BTCUSDT
    OKX       BTC-USDT, BTC-USDT-SWAP
    ccxt      BTC/USDT, BTC/USDT:USDT
    others    BTC_USDT, BTCUSDT_PERP, BTC-PERP

All of the above normalize to "BTCUSDT" (or "BTC" for the bare "-PERP" form).

Normalization is a pure string function: no network, deterministic, and
idempotent (normalize(normalize(s)) == normalize(s)).
"""

import re
from typing import Dict, Iterable, List, Tuple

from core.exchange_registry import ExchangeFlag
from core.schemas import MarketType, SymbolEntity, SymbolInfo


# Longer quotes first so that "BUSD" wins over "USD" and "USDC" over "USD"
QUOTE_ASSETS: Tuple[str, ...] = ("USDT", "USDC", "BUSD", "USD", "BTC", "ETH")

CONTRACT_SUFFIXES: Tuple[str, ...] = ("SWAP", "PERP", "SPOT")

# Shorter cleaned symbols are not split into base/quote
MIN_SPLIT_LENGTH = 5

_DELIMITERS = re.compile(r"[-_/\s]")


def _strip_settlement(symbol: str) -> str:
    # ccxt unified perpetuals carry the settlement asset after a colon
    return symbol.split(":", 1)[0]


def _strip_suffixes(symbol: str) -> str:
    # Repeat until stable so "XSWAPSWAP"-like input cannot break idempotence
    stripped = True
    while stripped:
        stripped = False
        for suffix in CONTRACT_SUFFIXES:
            if symbol.endswith(suffix) and len(symbol) > len(suffix):
                symbol = symbol[: -len(suffix)]
                stripped = True
    return symbol


def normalize(symbol: str) -> str:
    """
    Return the canonical spelling of a native exchange symbol.

    Steps:
        1. Uppercase and drop a ccxt settlement part (":USDT")
        2. Remove delimiters (hyphen, underscore, slash, whitespace)
        3. Strip contract-type suffixes (SWAP, PERP, SPOT)

    Examples:
        >>> normalize("btc-usdt-swap")
        'BTCUSDT'
        >>> normalize("BTC/USDT:USDT")
        'BTCUSDT'
        >>> normalize("BTCUSDT")
        'BTCUSDT'
    """
    cleaned = _strip_settlement(symbol.strip().upper())
    cleaned = _DELIMITERS.sub("", cleaned)
    return _strip_suffixes(cleaned)


def split_assets(symbol: str) -> Tuple[str, str]:
    """
    Split a symbol into (base_asset, quote_asset).

    The symbol is normalized first. Known quote assets are tried as suffixes in
    priority order; without a match the last four characters become the quote.
    Symbols shorter than MIN_SPLIT_LENGTH after cleaning are not split and
    return ("", "").

    Examples:
        >>> split_assets("ETH-BTC")
        ('ETH', 'BTC')
        >>> split_assets("BTCUSDT")
        ('BTC', 'USDT')
        >>> split_assets("ABCDEFGH")
        ('ABCD', 'EFGH')
        >>> split_assets("BTC")
        ('', '')
    """
    cleaned = normalize(symbol)
    if len(cleaned) < MIN_SPLIT_LENGTH:
        return "", ""

    for quote in QUOTE_ASSETS:
        if cleaned.endswith(quote) and len(cleaned) > len(quote):
            return cleaned[: -len(quote)], quote

    return cleaned[:-4], cleaned[-4:]


def normalize_symbol_info(
    info: SymbolInfo,
    market_type: MarketType,
    flag: int = 0,
    derive_assets: bool = True,
) -> SymbolEntity:
    """
    Turn one exchange listing into a SymbolEntity.

    Base/quote reported by the exchange take precedence over the derived split.
    With derive_assets=False missing values stay empty.
    """
    canonical = normalize(info.symbol)
    base, quote = split_assets(canonical) if derive_assets else ("", "")
    return SymbolEntity(
        canonical_symbol=canonical,
        base_asset=info.base_asset or base,
        quote_asset=info.quote_asset or quote,
        market_type=market_type,
        exchange_mask=int(flag),
    )


def merge_symbol_lists(
    listings: Iterable[Tuple[ExchangeFlag, Iterable[SymbolInfo]]],
    market_type: MarketType,
) -> List[SymbolEntity]:
    """
    Merge per-exchange listings into one entity per canonical symbol.

    Args:
        listings: (exchange bit, that exchange's SymbolInfo list) pairs
        market_type: Market the listings belong to

    Returns:
        Entities in first-seen order, with:
        - exchange_mask = union of the bits of every exchange listing the symbol
        - base/quote from the first exchange that supplied non-empty values
          (a later empty value never overwrites a known one; conflicting
          non-empty values are not reconciled, first write wins)

    Example:
        >>> merged = merge_symbol_lists([
        ...     (ExchangeFlag.BINANCE, [SymbolInfo(exchange="binance", symbol="BTCUSDT")]),
        ...     (ExchangeFlag.OKX, [SymbolInfo(exchange="okx", symbol="BTC-USDT")]),
        ... ], MarketType.SPOT)
        >>> merged[0].canonical_symbol, merged[0].exchange_mask
        ('BTCUSDT', 3)
    """
    merged: Dict[str, SymbolEntity] = {}

    for flag, symbols in listings:
        for info in symbols:
            entity = normalize_symbol_info(info, market_type, flag, derive_assets=False)
            existing = merged.get(entity.canonical_symbol)

            if existing is None:
                merged[entity.canonical_symbol] = entity
                continue

            existing.exchange_mask |= int(flag)
            if not existing.base_asset and entity.base_asset:
                existing.base_asset = entity.base_asset
            if not existing.quote_asset and entity.quote_asset:
                existing.quote_asset = entity.quote_asset

    # Exchanges that reported nothing fall back to the suffix split
    for entity in merged.values():
        if not entity.base_asset or not entity.quote_asset:
            base, quote = split_assets(entity.canonical_symbol)
            entity.base_asset = entity.base_asset or base
            entity.quote_asset = entity.quote_asset or quote

    return list(merged.values())
