"""
Binance Exchange Adapter

Implements ExchangeInterface for Binance spot and USD-M perpetual futures.

Endpoints Used:
    - GET /api/v3/exchangeInfo, /fapi/v1/exchangeInfo - Symbol discovery
    - GET /api/v3/ticker/price, /fapi/v1/ticker/price - Last price
    - GET /fapi/v1/premiumIndex                       - Funding rate

Native symbols are already canonical on Binance ("BTCUSDT"), for both
spot and perpetual.

Structure:
    exchanges/binance/
    ├── __init__.py          # This file (BinanceExchange adapter)
    └── api_client.py        # REST API client with aiohttp
"""

from typing import List, Optional

from core.exchange_interface import ExchangeInterface
from core.exchange_registry import ExchangeFlag
from core.logging import logger
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from core.symbol_normalizer import normalize
from .api_client import BinanceAPIClient


class BinanceExchange(ExchangeInterface):
    """
    Binance Exchange Adapter

    Example:
        >>> exchange = BinanceExchange()
        >>> await exchange.initialize()
        >>> quote = await exchange.fetch_ticker("BTCUSDT", MarketType.SPOT)
        >>> await exchange.shutdown()
    """

    # ============================================
    # Class Attributes
    # ============================================

    name = "binance"
    flag = ExchangeFlag.BINANCE

    capabilities = {
        "spot": True,
        "perpetual": True,
        "funding_rate": True,
    }

    # ============================================
    # Initialization
    # ============================================

    def __init__(self, client: Optional[BinanceAPIClient] = None):
        """
        Args:
            client: Pre-built API client (tests); built from settings otherwise
        """
        super().__init__()
        if client is None:
            # Import settings here to avoid circular imports
            from core.config import settings

            client = BinanceAPIClient(
                spot_url=settings.binance_spot_url,
                futures_url=settings.binance_futures_url,
                timeout=settings.request_timeout,
            )
        self.client = client
        logger.debug(f"BinanceExchange created (spot={client.spot_url}, futures={client.futures_url})")

    async def initialize(self) -> None:
        if self.client.session is None:
            await self.client.__aenter__()
        logger.info("✓ Binance exchange adapter initialized")

    async def shutdown(self) -> None:
        try:
            await self.client.close()
        except Exception as e:
            logger.error(f"Error closing Binance client: {e}")
        logger.info("✓ Binance exchange adapter shut down")

    async def health_check(self) -> bool:
        """Lightweight call to /api/v3/ping."""
        try:
            return await self.client.ping()
        except Exception as e:
            logger.error(f"Binance health check failed: {e}")
            return False

    # ============================================
    # REST API Methods
    # ============================================

    async def list_symbols(self, market_type: MarketType) -> List[SymbolInfo]:
        symbols = await self.client.get_symbols(market_type)
        self.remember_native_symbols(symbols, market_type)
        return symbols

    async def fetch_ticker(self, symbol: str, market_type: MarketType) -> PriceQuote:
        quote = await self.client.get_ticker(self.to_native(symbol, market_type), market_type)
        return quote.model_copy(update={"symbol": normalize(symbol)})

    async def fetch_funding_rate(self, symbol: str) -> FundingQuote:
        funding = await self.client.get_funding_rate(self.to_native(symbol, MarketType.PERPETUAL))
        return funding.model_copy(update={"symbol": normalize(symbol)})

    def native_symbol_from_assets(self, base: str, quote: str, market_type: MarketType) -> str:
        return f"{base}{quote}"
