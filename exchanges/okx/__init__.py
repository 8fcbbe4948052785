"""
OKX Exchange Adapter

Implements ExchangeInterface for OKX spot and USDT-margined perpetual swaps.

Native spellings:
    Spot       BTC-USDT
    Perpetual  BTC-USDT-SWAP

Both normalize to "BTCUSDT". Before the first discovery pass the native name
is rebuilt from the base/quote split.
"""

from typing import List, Optional

from core.exchange_interface import ExchangeInterface
from core.exchange_registry import ExchangeFlag
from core.logging import logger
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from core.symbol_normalizer import normalize
from .api_client import OKXAPIClient


class OKXExchange(ExchangeInterface):
    """
    OKX Exchange Adapter

    Example:
        >>> exchange = OKXExchange()
        >>> await exchange.initialize()
        >>> quote = await exchange.fetch_ticker("BTCUSDT", MarketType.PERPETUAL)  # BTC-USDT-SWAP
    """

    name = "okx"
    flag = ExchangeFlag.OKX

    capabilities = {
        "spot": True,
        "perpetual": True,
        "funding_rate": True,
    }

    def __init__(self, client: Optional[OKXAPIClient] = None):
        super().__init__()
        if client is None:
            from core.config import settings

            client = OKXAPIClient(base_url=settings.okx_base_url, timeout=settings.request_timeout)
        self.client = client
        logger.debug(f"OKXExchange created (base_url={client.base_url})")

    async def initialize(self) -> None:
        if self.client.session is None:
            await self.client.__aenter__()
        logger.info("✓ OKX exchange adapter initialized")

    async def shutdown(self) -> None:
        try:
            await self.client.close()
        except Exception as e:
            logger.error(f"Error closing OKX client: {e}")
        logger.info("✓ OKX exchange adapter shut down")

    async def health_check(self) -> bool:
        try:
            return await self.client.ping()
        except Exception as e:
            logger.error(f"OKX health check failed: {e}")
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
        """
        Examples:
            >>> OKXExchange().native_symbol_from_assets("BTC", "USDT", MarketType.SPOT)
            'BTC-USDT'
            >>> OKXExchange().native_symbol_from_assets("BTC", "USDT", MarketType.PERPETUAL)
            'BTC-USDT-SWAP'
        """
        if MarketType(market_type) == MarketType.PERPETUAL:
            return f"{base}-{quote}-SWAP"
        return f"{base}-{quote}"
