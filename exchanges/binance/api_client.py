"""
Binance REST API Client

Async HTTP client for the public Binance market-data endpoints.
Spot and USD-M futures live on different hosts, so every call picks its base
URL from the market type.

API Documentation:
    Spot:    https://binance-docs.github.io/apidocs/spot/en/
    Futures: https://binance-docs.github.io/apidocs/futures/en/

Endpoints Used:
    Spot (api.binance.com):
        - GET /api/v3/exchangeInfo - Instrument list
        - GET /api/v3/ticker/price - Last price
        - GET /api/v3/ping         - Health check
    Futures (fapi.binance.com):
        - GET /fapi/v1/exchangeInfo  - Contract list
        - GET /fapi/v1/ticker/price  - Last price
        - GET /fapi/v1/premiumIndex  - Funding rate and next funding time

Errors:
    Unknown symbols come back as HTTP 400 with {"code": -1121, "msg": "Invalid symbol."}
    and are raised as SymbolNotFoundError.

Usage:
    async with BinanceAPIClient() as client:
        symbols = await client.get_symbols(MarketType.SPOT)
        quote = await client.get_ticker("BTCUSDT", MarketType.PERPETUAL)
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from core.exceptions import ExchangeAPIError, SymbolNotFoundError
from core.http_client import BaseAPIClient
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from core.utils.time import current_utc_datetime, parse_exchange_timestamp


INVALID_SYMBOL_CODE = -1121


class BinanceAPIClient(BaseAPIClient):
    """
    Async HTTP client for Binance spot and futures REST APIs.

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     funding = await client.get_funding_rate("BTCUSDT")
        ...     print(funding.funding_rate)
    """

    exchange = "binance"

    SPOT_URL = "https://api.binance.com"
    FUTURES_URL = "https://fapi.binance.com"

    def __init__(
        self,
        spot_url: str = SPOT_URL,
        futures_url: str = FUTURES_URL,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(spot_url, timeout=timeout, session=session)
        self.spot_url = spot_url.rstrip("/")
        self.futures_url = futures_url.rstrip("/")

    def _base_url(self, market_type: MarketType) -> str:
        if MarketType(market_type) == MarketType.PERPETUAL:
            return self.futures_url
        return self.spot_url

    @staticmethod
    def _prefix(market_type: MarketType) -> str:
        return "/fapi/v1" if MarketType(market_type) == MarketType.PERPETUAL else "/api/v3"

    def _check_response(self, status, payload, path, params, market_type) -> None:
        if isinstance(payload, dict) and payload.get("code") == INVALID_SYMBOL_CODE:
            raise SymbolNotFoundError(
                self.exchange,
                params.get("symbol", ""),
                market_type,
                details={"msg": payload.get("msg")},
            )

    # ============================================
    # API Methods
    # ============================================

    async def get_symbols(self, market_type: MarketType) -> List[SymbolInfo]:
        """
        Fetch tradable instruments.

        Spot keeps symbols with status TRADING and spot trading allowed.
        Futures keeps PERPETUAL contracts with status TRADING (quarterly
        delivery contracts are dropped).
        """
        market_type = MarketType(market_type)
        data = await self._get(
            f"{self._prefix(market_type)}/exchangeInfo",
            base_url=self._base_url(market_type),
            market_type=market_type.value,
        )

        symbols = []
        for item in data.get("symbols", []):
            if item.get("status") != "TRADING":
                continue
            if market_type == MarketType.SPOT and not item.get("isSpotTradingAllowed", True):
                continue
            if market_type == MarketType.PERPETUAL and item.get("contractType") != "PERPETUAL":
                continue
            symbols.append(
                SymbolInfo(
                    exchange=self.exchange,
                    symbol=item["symbol"],
                    base_asset=item.get("baseAsset", ""),
                    quote_asset=item.get("quoteAsset", ""),
                )
            )

        self.logger.debug(f"Binance {market_type.value}: {len(symbols)} tradable symbols")
        return symbols

    async def get_ticker(self, symbol: str, market_type: MarketType) -> PriceQuote:
        """
        Fetch the last traded price.

        Response format:
            {"symbol": "BTCUSDT", "price": "50000.10", "time": 1704110400000}
            ("time" only on futures)
        """
        market_type = MarketType(market_type)
        data = await self._get(
            f"{self._prefix(market_type)}/ticker/price",
            {"symbol": symbol},
            base_url=self._base_url(market_type),
            market_type=market_type.value,
        )

        return PriceQuote(
            exchange=self.exchange,
            symbol=data.get("symbol", symbol),
            market_type=market_type,
            last_price=_decimal(data, "price"),
            timestamp=parse_exchange_timestamp(data.get("time")) or current_utc_datetime(),
        )

    async def get_funding_rate(self, symbol: str) -> FundingQuote:
        """
        Fetch current funding rate from the premium index.

        Response format:
            {
                "symbol": "BTCUSDT",
                "markPrice": "50000.00",
                "lastFundingRate": "0.00010000",
                "nextFundingTime": 1704124800000,
                "time": 1704110400000
            }
        """
        data = await self._get(
            "/fapi/v1/premiumIndex",
            {"symbol": symbol},
            base_url=self.futures_url,
            market_type=MarketType.PERPETUAL.value,
        )

        return FundingQuote(
            exchange=self.exchange,
            symbol=data.get("symbol", symbol),
            funding_rate=_decimal(data, "lastFundingRate"),
            next_funding_time=parse_exchange_timestamp(data.get("nextFundingTime")),
        )

    async def ping(self) -> bool:
        await self._get("/api/v3/ping", base_url=self.spot_url)
        return True


def _decimal(data: Dict[str, Any], field: str) -> Decimal:
    try:
        return Decimal(str(data[field]))
    except (KeyError, InvalidOperation) as e:
        raise ExchangeAPIError(
            f"[binance] Missing or invalid '{field}' in response",
            details={"body": data},
        ) from e
