"""
Bybit REST API Client (v5)

Async HTTP client for the public Bybit v5 market endpoints.

API Documentation:
    https://bybit-exchange.github.io/docs/v5/intro

Endpoints Used:
    - GET /v5/market/instruments-info - Instrument list (category=spot | linear), cursor-paginated
    - GET /v5/market/tickers          - Last price; linear tickers also carry funding
    - GET /v5/market/time             - Health check

Response Envelope:
    {"retCode": 0, "retMsg": "OK", "result": {...}, "time": 1704110400000}

    retCode 10001 on a ticker request ("params error: symbol invalid") and an
    empty ticker list both mean the symbol does not exist.

Usage:
    async with BybitAPIClient() as client:
        symbols = await client.get_symbols(MarketType.SPOT)
        funding = await client.get_funding_rate("BTCUSDT")
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from core.exceptions import ExchangeAPIError, SymbolNotFoundError, TransientExchangeError
from core.http_client import BaseAPIClient
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from core.utils.time import current_utc_datetime, parse_exchange_timestamp


INVALID_PARAM_CODE = 10001

# Rate limited, server busy
RETRYABLE_CODES = (10006, 10016)

CATEGORIES = {
    MarketType.SPOT: "spot",
    MarketType.PERPETUAL: "linear",
}

PAGE_LIMIT = 1000


class BybitAPIClient(BaseAPIClient):
    """
    Async HTTP client for Bybit v5 REST API.

    Example:
        >>> async with BybitAPIClient() as client:
        ...     quote = await client.get_ticker("BTCUSDT", MarketType.PERPETUAL)
    """

    exchange = "bybit"

    BASE_URL = "https://api.bybit.com"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)

    def _check_response(self, status, payload, path, params, market_type) -> None:
        if not isinstance(payload, dict) or "retCode" not in payload:
            return

        code = payload.get("retCode")
        if code == 0:
            return

        if code == INVALID_PARAM_CODE and "symbol" in params:
            raise SymbolNotFoundError(
                self.exchange,
                params["symbol"],
                market_type,
                details={"retMsg": payload.get("retMsg")},
            )
        if code in RETRYABLE_CODES:
            raise TransientExchangeError(
                f"[bybit] Busy (retCode {code}) on {path}",
                status_code=status,
                details={"retMsg": payload.get("retMsg")},
            )
        raise ExchangeAPIError(
            f"[bybit] API error retCode {code} on {path}: {payload.get('retMsg')}",
            status_code=status,
            details={"retCode": code},
        )

    async def _get_result(self, path: str, params: Dict[str, Any], market_type: str = "") -> Dict[str, Any]:
        payload = await self._get(path, params, market_type=market_type)
        return payload.get("result") or {}

    # ============================================
    # API Methods
    # ============================================

    async def get_symbols(self, market_type: MarketType) -> List[SymbolInfo]:
        """
        Fetch instruments with status "Trading", following nextPageCursor.

        Linear futures with a delivery date are skipped; only LinearPerpetual
        contracts count as perpetual.
        """
        market_type = MarketType(market_type)
        params: Dict[str, Any] = {"category": CATEGORIES[market_type], "limit": PAGE_LIMIT}

        symbols = []
        while True:
            result = await self._get_result(
                "/v5/market/instruments-info", dict(params), market_type=market_type.value
            )
            for item in result.get("list", []):
                if item.get("status") != "Trading":
                    continue
                contract_type = item.get("contractType")
                if market_type == MarketType.PERPETUAL and contract_type not in (None, "LinearPerpetual"):
                    continue
                symbols.append(
                    SymbolInfo(
                        exchange=self.exchange,
                        symbol=item["symbol"],
                        base_asset=item.get("baseCoin", ""),
                        quote_asset=item.get("quoteCoin", ""),
                    )
                )

            cursor = result.get("nextPageCursor")
            if not cursor:
                break
            params["cursor"] = cursor

        self.logger.debug(f"Bybit {market_type.value}: {len(symbols)} trading instruments")
        return symbols

    async def _get_ticker_item(self, symbol: str, market_type: MarketType) -> Dict[str, Any]:
        result = await self._get_result(
            "/v5/market/tickers",
            {"category": CATEGORIES[market_type], "symbol": symbol},
            market_type=market_type.value,
        )
        items = result.get("list") or []
        if not items:
            raise SymbolNotFoundError(self.exchange, symbol, market_type.value)
        return items[0]

    async def get_ticker(self, symbol: str, market_type: MarketType) -> PriceQuote:
        """
        Fetch last traded price.

        Response item:
            {"symbol": "BTCUSDT", "lastPrice": "49995.5", ...}
        """
        market_type = MarketType(market_type)
        item = await self._get_ticker_item(symbol, market_type)
        return PriceQuote(
            exchange=self.exchange,
            symbol=item.get("symbol", symbol),
            market_type=market_type,
            last_price=_decimal(item, "lastPrice"),
            timestamp=current_utc_datetime(),
        )

    async def get_funding_rate(self, symbol: str) -> FundingQuote:
        """
        Fetch current funding rate from the linear ticker.

        Response item:
            {"symbol": "BTCUSDT", "fundingRate": "0.0001", "nextFundingTime": "1704124800000", ...}
        """
        item = await self._get_ticker_item(symbol, MarketType.PERPETUAL)
        return FundingQuote(
            exchange=self.exchange,
            symbol=item.get("symbol", symbol),
            funding_rate=_decimal(item, "fundingRate"),
            next_funding_time=parse_exchange_timestamp(item.get("nextFundingTime")),
        )

    async def ping(self) -> bool:
        await self._get("/v5/market/time")
        return True


def _decimal(data: Dict[str, Any], field: str) -> Decimal:
    try:
        return Decimal(str(data[field]))
    except (KeyError, InvalidOperation) as e:
        raise ExchangeAPIError(
            f"[bybit] Missing or invalid '{field}' in response",
            details={"body": data},
        ) from e
