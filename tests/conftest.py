"""
Shared fixtures and fakes for the test suite.

- FakeExchange: in-memory adapter with call counters
- FakeClock / FakeWallClock: controllable monotonic and UTC clocks
- RecordingSleep: sleep replacement that records delays and returns at once
- ManualTimers: scheduler sleep released by the test
- store: PriceStore on a fresh in-memory SQLite database
"""

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest
import pytest_asyncio

from core.exceptions import SymbolNotFoundError, TransientExchangeError
from core.exchange_interface import ExchangeInterface
from core.exchange_registry import exchange_flag
from core.request_queue import RequestQueue
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from storage.database import create_engine_from_url
from storage.store import PriceStore


# ============================================
# Clocks and Sleep
# ============================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """UTC wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """
    asyncio.sleep stand-in: records every delay, yields once, returns.

    When a FakeClock is given, the clock advances by the slept time.
    """

    def __init__(self, clock: Optional[FakeClock] = None):
        self.delays: List[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


class ManualTimers:
    """Scheduler sleep whose waits only end when fired by the test."""

    def __init__(self):
        self.waiting: List[Tuple[float, asyncio.Future]] = []

    async def __call__(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self.waiting.append((delay, future))
        await future

    def fire(self, delay: float) -> int:
        """Release every pending wait of the given length; returns how many."""
        fired = [f for d, f in self.waiting if d == delay and not f.done()]
        self.waiting = [(d, f) for d, f in self.waiting if d != delay]
        for future in fired:
            future.set_result(None)
        return len(fired)


# ============================================
# Fake Exchange Adapter
# ============================================

class FakeExchange(ExchangeInterface):
    """
    Adapter backed by dictionaries.

    Args:
        name: Registry name ("binance", "okx", "bybit")
        listings: market type -> native symbols (or SymbolInfo objects)
        prices: canonical symbol -> last price (same for every market type)
        funding: canonical symbol -> funding rate
        not_found: canonical symbols answered with SymbolNotFoundError
        failing: canonical symbols answered with TransientExchangeError
        list_error: exception raised by list_symbols
    """

    capabilities = {"spot": True, "perpetual": True, "funding_rate": True}

    def __init__(
        self,
        name: str,
        listings: Optional[Dict[MarketType, Iterable]] = None,
        prices: Optional[Dict[str, str]] = None,
        funding: Optional[Dict[str, str]] = None,
        not_found: Iterable[str] = (),
        failing: Iterable[str] = (),
        list_error: Optional[Exception] = None,
    ):
        super().__init__()
        self.name = name
        self.flag = exchange_flag(name)
        self.listings = {MarketType(k): list(v) for k, v in (listings or {}).items()}
        self.prices = dict(prices or {})
        self.funding = dict(funding or {})
        self.not_found: Set[str] = set(not_found)
        self.failing: Set[str] = set(failing)
        self.list_error = list_error
        self.gate: Optional[asyncio.Event] = None

        self.list_calls = 0
        self.ticker_calls: Counter = Counter()
        self.funding_calls: Counter = Counter()
        self.initialized = False
        self.healthy = True

    async def initialize(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.initialized = False

    async def health_check(self) -> bool:
        return self.healthy

    async def list_symbols(self, market_type: MarketType) -> List[SymbolInfo]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        symbols = [
            item if isinstance(item, SymbolInfo) else SymbolInfo(exchange=self.name, symbol=item)
            for item in self.listings.get(MarketType(market_type), [])
        ]
        self.remember_native_symbols(symbols, market_type)
        return symbols

    def _check(self, symbol: str, market_type: MarketType) -> None:
        if symbol in self.not_found:
            raise SymbolNotFoundError(self.name, symbol, MarketType(market_type).value)
        if symbol in self.failing:
            raise TransientExchangeError(f"[{self.name}] boom on {symbol}", status_code=503)

    async def fetch_ticker(self, symbol: str, market_type: MarketType) -> PriceQuote:
        self.ticker_calls[symbol] += 1
        if self.gate is not None:
            await self.gate.wait()
        self._check(symbol, market_type)
        return PriceQuote(
            exchange=self.name,
            symbol=symbol,
            market_type=market_type,
            last_price=Decimal(self.prices[symbol]),
            timestamp=datetime.now(timezone.utc),
        )

    async def fetch_funding_rate(self, symbol: str) -> FundingQuote:
        self.funding_calls[symbol] += 1
        self._check(symbol, MarketType.PERPETUAL)
        return FundingQuote(
            exchange=self.name,
            symbol=symbol,
            funding_rate=Decimal(self.funding.get(symbol, "0.0001")),
            next_funding_time=datetime(2024, 1, 1, 16, 0, tzinfo=timezone.utc),
        )

    def native_symbol_from_assets(self, base: str, quote: str, market_type: MarketType) -> str:
        return f"{base}{quote}"


def make_queues(names: Iterable[str], max_retries: int = 3) -> Tuple[Dict[str, RequestQueue], RecordingSleep]:
    """Zero-delay queues sharing one recording sleep."""
    sleep = RecordingSleep()
    queues = {
        name: RequestQueue(name, request_delay=0, max_retries=max_retries, timeout=5.0, sleep=sleep)
        for name in names
    }
    return queues, sleep


async def wait_until(predicate, timeout: float = 5.0, step: float = 0.005) -> None:
    """Poll predicate() until it holds, letting other tasks (and aiosqlite's thread) progress."""
    for _ in range(int(timeout / step)):
        if predicate():
            return
        await asyncio.sleep(step)
    raise AssertionError("condition not reached")


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def wall_clock():
    return FakeWallClock()


@pytest.fixture
def mono_clock():
    return FakeClock()


@pytest_asyncio.fixture
async def store(wall_clock, mono_clock):
    """PriceStore on a fresh in-memory database with controllable clocks."""
    engine = create_engine_from_url("sqlite+aiosqlite:///:memory:")
    price_store = PriceStore(engine, cache_ttl=10.0, clock=wall_clock, monotonic=mono_clock)
    await price_store.initialize()
    yield price_store
    await engine.dispose()
