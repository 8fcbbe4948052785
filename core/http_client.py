"""
Base REST API Client

Shared aiohttp plumbing for the exchange API clients:
- Session lifecycle via async context manager
- A single-attempt GET that classifies failures into exchange exceptions
- Request/response logging

Retries are NOT done here. Every call from the sync engine goes through the
exchange's RequestQueue, which retries TransientExchangeError with backoff.
Retrying in both places would multiply the attempts.

Error Classification:
    - Timeout, connection error          -> TransientExchangeError
    - HTTP 429 / 418 (rate limited)      -> TransientExchangeError
    - HTTP 5xx                           -> TransientExchangeError
    - Exchange-specific "unknown symbol" -> SymbolNotFoundError (see _check_response)
    - Any other non-200                  -> ExchangeAPIError

Usage:
    class OKXAPIClient(BaseAPIClient):
        exchange = "okx"

    async with OKXAPIClient("https://www.okx.com") as client:
        data = await client._get("/api/v5/market/ticker", {"instId": "BTC-USDT"})
"""

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp

from core.exceptions import ExchangeAPIError, TransientExchangeError
from core.logging import get_logger, log_api_request, log_api_response


RETRYABLE_STATUSES = (418, 429)


class BaseAPIClient:
    """
    Async HTTP client base for exchange REST APIs.

    Attributes:
        exchange: Exchange name used in logs and exceptions (set by subclasses)
        base_url: Default base URL for requests
        timeout: Total request timeout in seconds
        session: aiohttp ClientSession, created in __aenter__

    Notes:
        - Subclasses override _check_response to recognize their own
          "symbol does not exist" answers
        - A session can also be passed in (tests use this)
    """

    exchange: str = "unknown"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self.logger = get_logger(__name__)

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
            self.logger.debug(f"{self.__class__.__name__} session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.logger.debug(f"{self.__class__.__name__} session closed")
        self.session = None

    # ============================================
    # HTTP Request Handler
    # ============================================

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        base_url: Optional[str] = None,
        market_type: Optional[str] = None,
    ) -> Any:
        """
        Make one GET request and return the decoded JSON body.

        Args:
            path: Endpoint path (e.g., "/api/v3/ticker/price")
            params: Optional query parameters
            base_url: Override the default base URL (Binance spot vs futures)
            market_type: Market the request is about, for SymbolNotFoundError

        Raises:
            RuntimeError: If the session was not opened
            TransientExchangeError: Timeouts, connection errors, 5xx, 429, 418
            ExchangeAPIError: Other non-200 answers or an undecodable body
            SymbolNotFoundError: Raised by _check_response overrides
        """
        if self.session is None:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        url = f"{(base_url or self.base_url).rstrip('/')}{path}"
        log_api_request(self.exchange, path, params)
        started = time.monotonic()

        try:
            async with self.session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                status = resp.status
                try:
                    payload = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    payload = None
                    text = await resp.text()
                    if status == 200:
                        raise ExchangeAPIError(
                            f"[{self.exchange}] Undecodable response on {path}",
                            status_code=status,
                            details={"body": text[:200]},
                        )

        except asyncio.TimeoutError as e:
            self.logger.warning(f"[{self.exchange}] Timeout on {path}")
            raise TransientExchangeError(f"[{self.exchange}] Timeout on {path}") from e

        except aiohttp.ClientError as e:
            self.logger.warning(f"[{self.exchange}] Request failed on {path}: {e}")
            raise TransientExchangeError(f"[{self.exchange}] Request failed on {path}: {e}") from e

        log_api_response(self.exchange, path, status, time.monotonic() - started)

        if status in RETRYABLE_STATUSES or status >= 500:
            raise TransientExchangeError(
                f"[{self.exchange}] HTTP {status} on {path}",
                status_code=status,
                details={"body": payload},
            )

        self._check_response(status, payload, path, params or {}, market_type or "")

        if status != 200:
            raise ExchangeAPIError(
                f"[{self.exchange}] HTTP {status} on {path}",
                status_code=status,
                details={"body": payload},
            )

        return payload

    def _check_response(
        self,
        status: int,
        payload: Any,
        path: str,
        params: Dict[str, Any],
        market_type: str,
    ) -> None:
        """
        Inspect a non-retryable answer before the generic status check.

        Overridden per exchange to raise SymbolNotFoundError (and to flag
        error codes carried in a 200 body).
        """
        return None
