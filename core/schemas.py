"""
Normalized Data Schemas

This module defines Pydantic models for all data flowing through the sync engine.
These schemas provide a unified, exchange-agnostic data format.

Key Principle:
    Each exchange spells symbols and returns prices in its own format
    ("BTC-USDT-SWAP", "BTCUSDT", strings vs numbers, seconds vs milliseconds).
    Adapters normalize their responses into these models, and the store only
    ever sees the canonical form.

Models:
    - MarketType: spot or perpetual
    - SymbolInfo: One instrument as listed by one exchange (native spelling)
    - PriceQuote: Last traded price reported by one exchange
    - FundingQuote: Current funding rate reported by one exchange (perpetual only)
    - SymbolEntity: Exchange-agnostic instrument with its exchange bitmask
    - PriceRecord: Latest known quote per canonical symbol, one slot per exchange
    - PricePage: One page of price records for the presentation layer
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from core.exchange_registry import exchanges_in_mask


# ============================================
# Market Type
# ============================================

class MarketType(str, Enum):
    """Market an instrument trades on."""

    SPOT = "spot"
    PERPETUAL = "perpetual"


# ============================================
# Exchange-level Models (adapter output)
# ============================================

class SymbolInfo(BaseModel):
    """
    One instrument as listed by one exchange.

    Attributes:
        exchange: Source exchange (lowercase)
        symbol: Native exchange spelling (e.g., "BTC-USDT-SWAP" on OKX)
        base_asset: Base asset if the exchange reports it, else empty
        quote_asset: Quote asset if the exchange reports it, else empty

    Example:
        >>> SymbolInfo(exchange="okx", symbol="BTC-USDT", base_asset="BTC", quote_asset="USDT")
    """

    exchange: str = Field(..., examples=["binance", "okx", "bybit"])
    symbol: str = Field(..., examples=["BTCUSDT", "BTC-USDT-SWAP"])
    base_asset: str = ""
    quote_asset: str = ""

    @field_validator('exchange')
    @classmethod
    def validate_exchange(cls, v: str) -> str:
        """Ensure exchange is lowercase"""
        return v.lower()

    @field_validator('base_asset', 'quote_asset', mode='before')
    @classmethod
    def validate_asset(cls, v: Optional[str]) -> str:
        """Ensure assets are uppercase, None becomes empty"""
        return (v or "").upper()


class PriceQuote(BaseModel):
    """
    Last traded price of one instrument on one exchange.

    Example:
        >>> PriceQuote(
        ...     exchange="binance",
        ...     symbol="BTCUSDT",
        ...     market_type=MarketType.SPOT,
        ...     last_price=Decimal("50000.10"),
        ...     timestamp=datetime.now(timezone.utc)
        ... )
    """

    exchange: str
    symbol: str
    market_type: MarketType
    last_price: Decimal = Field(..., ge=0)
    timestamp: datetime


class FundingQuote(BaseModel):
    """
    Current funding rate of a perpetual contract on one exchange.

    Attributes:
        funding_rate: Rate as decimal (0.0001 = 0.01%)
        next_funding_time: When the next funding is applied, if reported
    """

    exchange: str
    symbol: str
    funding_rate: Decimal
    next_funding_time: Optional[datetime] = None


# ============================================
# Store-level Models
# ============================================

class SymbolEntity(BaseModel):
    """
    Exchange-agnostic tradable instrument.

    Attributes:
        canonical_symbol: Normalized spelling (e.g., "BTCUSDT")
        base_asset: Base asset, may be empty when it could not be derived
        quote_asset: Quote asset, may be empty when it could not be derived
        market_type: spot or perpetual
        exchange_mask: Bitset of exchanges listing the instrument (see core.exchange_registry)
        fetch_enabled: Operator flag; False excludes the symbol from price polling
        updated_at: Last time discovery touched the symbol

    Invariants:
        - (canonical_symbol, market_type) is unique
        - exchange_mask is only replaced wholesale by symbol discovery
    """

    canonical_symbol: str
    base_asset: str = ""
    quote_asset: str = ""
    market_type: MarketType
    exchange_mask: int = Field(default=0, ge=0)
    fetch_enabled: bool = True
    updated_at: Optional[datetime] = None

    @property
    def exchanges(self) -> List[str]:
        """Names of the exchanges in exchange_mask, in registry order."""
        return exchanges_in_mask(self.exchange_mask)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "canonical_symbol": "BTCUSDT",
                "base_asset": "BTC",
                "quote_asset": "USDT",
                "market_type": "spot",
                "exchange_mask": 7,
                "fetch_enabled": True,
                "updated_at": "2024-01-01T12:00:00Z"
            }
        }
    )


class PriceRecord(BaseModel):
    """
    Latest known quote per (canonical_symbol, market_type).

    One slot per exchange instead of one row per exchange. A slot is written
    only by its own exchange's fetch result; slots of exchanges that did not
    answer keep their previous value.

    Attributes:
        prices: exchange -> last price (None if never received)
        funding_rates: exchange -> funding rate (perpetual only)
        next_funding_times: exchange -> next funding time (perpetual only)
        updated_at: Last successful write from any exchange
    """

    canonical_symbol: str
    market_type: MarketType
    prices: Dict[str, Optional[Decimal]] = Field(default_factory=dict)
    funding_rates: Dict[str, Optional[Decimal]] = Field(default_factory=dict)
    next_funding_times: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    updated_at: datetime

    @property
    def spread(self) -> Optional[Decimal]:
        """
        Relative spread between the highest and lowest exchange price.

        Returns None when fewer than two exchanges have a price.

        Example:
            prices 50010 and 49995 -> (50010 - 49995) / 49995
        """
        values = [p for p in self.prices.values() if p is not None and p > 0]
        if len(values) < 2:
            return None
        low = min(values)
        return (max(values) - low) / low

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "canonical_symbol": "BTCUSDT",
                "market_type": "perpetual",
                "prices": {"binance": "50000", "okx": "50010", "bybit": "49995"},
                "funding_rates": {"binance": "0.0001", "okx": "0.00012", "bybit": None},
                "next_funding_times": {"binance": "2024-01-01T16:00:00Z"},
                "updated_at": "2024-01-01T12:00:00Z"
            }
        }
    )


class PricePage(BaseModel):
    """One page of price records."""

    records: List[PriceRecord]
    total: int
    page: int
    page_size: int
    total_pages: int
