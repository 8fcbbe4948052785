"""
Exchange and Storage Exceptions

Errors raised by exchange adapters, the request queues and the persistent store.

The split matters to the request queue: only TransientExchangeError is retried.
A SymbolNotFoundError is a domain answer ("this instrument does not exist here")
and goes straight to the caller, which records it in the invalid-symbol cache.
"""

from typing import Optional


class ExchangeError(Exception):
    """Base class for every exchange-side failure."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class TransientExchangeError(ExchangeError):
    """
    Retryable failure.

    - Timeouts and connection errors
    - HTTP 5xx
    - HTTP 429 / 418 (rate limited)
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: dict = None):
        self.status_code = status_code
        super().__init__(message, details)


class ExchangeAPIError(ExchangeError):
    """
    Non-retryable API failure (4xx, unexpected payload).
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: dict = None):
        self.status_code = status_code
        super().__init__(message, details)


class SymbolNotFoundError(ExchangeError):
    """The exchange reports that the instrument does not exist or is not tradable."""

    def __init__(self, exchange: str, symbol: str, market_type: str, details: dict = None):
        self.exchange = exchange
        self.symbol = symbol
        self.market_type = market_type
        super().__init__(f"[{exchange}] Symbol not found: {symbol} ({market_type})", details)


class StoreError(Exception):
    """Backing-store failure (I/O error, constraint violation)."""
