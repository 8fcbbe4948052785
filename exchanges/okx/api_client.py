"""
OKX REST API Client (v5)

Async HTTP client for the public OKX v5 market-data endpoints.

API Documentation:
    https://www.okx.com/docs-v5/en/

Endpoints Used:
    - GET /api/v5/public/instruments  - Instrument list (instType=SPOT | SWAP)
    - GET /api/v5/market/ticker       - Last price of one instrument
    - GET /api/v5/public/funding-rate - Funding rate of one SWAP contract
    - GET /api/v5/public/time         - Health check

Response Envelope:
    {"code": "0", "msg": "", "data": [...]}

    A non-"0" code is an error even when the HTTP status is 200.
    Code 51001 ("Instrument ID does not exist") is raised as SymbolNotFoundError.

Rate Limits:
    20 requests / 2 s per endpoint for public data. The sync engine routes OKX
    through a RateLimitedRequestQueue.

Usage:
    async with OKXAPIClient() as client:
        symbols = await client.get_symbols(MarketType.PERPETUAL)
        quote = await client.get_ticker("BTC-USDT-SWAP", MarketType.PERPETUAL)
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from core.exceptions import ExchangeAPIError, SymbolNotFoundError, TransientExchangeError
from core.http_client import BaseAPIClient
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from core.utils.time import current_utc_datetime, parse_exchange_timestamp


INSTRUMENT_NOT_FOUND_CODES = ("51001",)

# "Too many requests" and "system busy"
RETRYABLE_CODES = ("50011", "50013", "50026")

INST_TYPES = {
    MarketType.SPOT: "SPOT",
    MarketType.PERPETUAL: "SWAP",
}


class OKXAPIClient(BaseAPIClient):
    """
    Async HTTP client for OKX v5 REST API.

    Example:
        >>> async with OKXAPIClient() as client:
        ...     funding = await client.get_funding_rate("BTC-USDT-SWAP")
    """

    exchange = "okx"

    BASE_URL = "https://www.okx.com"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)

    def _check_response(self, status, payload, path, params, market_type) -> None:
        if not isinstance(payload, dict):
            return

        code = str(payload.get("code", "0"))
        if code == "0":
            return

        if code in INSTRUMENT_NOT_FOUND_CODES:
            raise SymbolNotFoundError(
                self.exchange,
                params.get("instId", ""),
                market_type,
                details={"code": code, "msg": payload.get("msg")},
            )
        if code in RETRYABLE_CODES:
            raise TransientExchangeError(
                f"[okx] Busy (code {code}) on {path}",
                status_code=status,
                details={"msg": payload.get("msg")},
            )
        raise ExchangeAPIError(
            f"[okx] API error code {code} on {path}: {payload.get('msg')}",
            status_code=status,
            details={"code": code},
        )

    async def _get_data(self, path: str, params: Optional[Dict[str, Any]] = None, market_type: str = "") -> List[dict]:
        payload = await self._get(path, params, market_type=market_type)
        return payload.get("data") or []

    # ============================================
    # API Methods
    # ============================================

    async def get_symbols(self, market_type: MarketType) -> List[SymbolInfo]:
        """
        Fetch live instruments.

        SPOT items carry baseCcy/quoteCcy. SWAP items leave those empty and
        carry the underlying instead ("uly": "BTC-USDT"), which is split here.

        Response item (SWAP):
            {"instId": "BTC-USDT-SWAP", "uly": "BTC-USDT", "baseCcy": "",
             "quoteCcy": "", "settleCcy": "USDT", "state": "live", ...}
        """
        market_type = MarketType(market_type)
        items = await self._get_data(
            "/api/v5/public/instruments",
            {"instType": INST_TYPES[market_type]},
            market_type=market_type.value,
        )

        symbols = []
        for item in items:
            if item.get("state") != "live":
                continue

            base, quote = item.get("baseCcy", ""), item.get("quoteCcy", "")
            if not base and item.get("uly"):
                base, _, quote = item["uly"].partition("-")

            symbols.append(
                SymbolInfo(
                    exchange=self.exchange,
                    symbol=item["instId"],
                    base_asset=base,
                    quote_asset=quote,
                )
            )

        self.logger.debug(f"OKX {market_type.value}: {len(symbols)} live instruments")
        return symbols

    async def get_ticker(self, inst_id: str, market_type: MarketType) -> PriceQuote:
        """
        Fetch last traded price.

        Response item:
            {"instId": "BTC-USDT", "last": "50010.1", "ts": "1704110400000", ...}
        """
        market_type = MarketType(market_type)
        items = await self._get_data(
            "/api/v5/market/ticker", {"instId": inst_id}, market_type=market_type.value
        )
        if not items:
            raise SymbolNotFoundError(self.exchange, inst_id, market_type.value)

        item = items[0]
        return PriceQuote(
            exchange=self.exchange,
            symbol=item.get("instId", inst_id),
            market_type=market_type,
            last_price=_decimal(item, "last"),
            timestamp=parse_exchange_timestamp(item.get("ts")) or current_utc_datetime(),
        )

    async def get_funding_rate(self, inst_id: str) -> FundingQuote:
        """
        Fetch current funding rate of a SWAP contract.

        Response item:
            {"instId": "BTC-USDT-SWAP", "fundingRate": "0.00012",
             "fundingTime": "1704124800000", "nextFundingTime": "1704153600000"}

        "fundingTime" is the settlement of the current period, i.e. the next
        funding to be applied.
        """
        items = await self._get_data(
            "/api/v5/public/funding-rate",
            {"instId": inst_id},
            market_type=MarketType.PERPETUAL.value,
        )
        if not items:
            raise SymbolNotFoundError(self.exchange, inst_id, MarketType.PERPETUAL.value)

        item = items[0]
        return FundingQuote(
            exchange=self.exchange,
            symbol=item.get("instId", inst_id),
            funding_rate=_decimal(item, "fundingRate"),
            next_funding_time=parse_exchange_timestamp(item.get("fundingTime")),
        )

    async def ping(self) -> bool:
        await self._get("/api/v5/public/time")
        return True


def _decimal(data: Dict[str, Any], field: str) -> Decimal:
    try:
        return Decimal(str(data[field]))
    except (KeyError, InvalidOperation) as e:
        raise ExchangeAPIError(
            f"[okx] Missing or invalid '{field}' in response",
            details={"body": data},
        ) from e
