"""
Sync Scheduler

Drives the three repeating passes of the sync engine:

    symbol-discovery  (default every 24 h)  list instruments on every exchange,
                                            normalize, merge, upsert
    price-refresh     (default every 10 s)  fetch ticker (+ funding for
                                            perpetuals) for every enabled symbol
    cleanup           (default every 1 h)   purge stale price records

Each pass type has its own PassRunner with an Idle/Running state. A trigger
while the pass is Running is skipped and logged, never queued. Timers tick at
a fixed rate, so a slow price pass makes the next tick a no-op instead of
stacking passes.

Startup runs one discovery pass and one price pass before any timer is
scheduled. Stop cancels the timers and any in-flight pass; no pass starts
after stop.

Failures are isolated:
    - One exchange failing symbol listing keeps its stored bits (preserve_mask)
      while the others are reconciled
    - One symbol/exchange failing a fetch is logged and skipped
    - A NotFound answer goes to the invalid-symbol cache (and, with the
      "auto_disable" policy, may disable fetching)
    - A store error on one upsert is logged and the pass continues

Usage:
    scheduler = SyncScheduler(store, manager, queues, InvalidSymbolCache())
    await scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
import time
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from core.config import NOT_FOUND_POLICIES
from core.exceptions import StoreError, SymbolNotFoundError
from core.exchange_interface import ExchangeInterface
from core.exchange_manager import ExchangeManager
from core.logging import get_logger
from core.request_queue import RequestQueue
from core.schemas import MarketType, SymbolEntity, SymbolInfo
from core.symbol_normalizer import merge_symbol_lists, split_assets
from core.ttl_cache import InvalidSymbolCache
from storage.store import PriceStore


logger = get_logger(__name__)


class PassState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class PassRunner:
    """
    Runs one pass type with mutual exclusion.

    The Running check and the lock acquisition happen without an await in
    between, so two triggers on the same event loop can never both start.

    Attributes:
        runs: Completed runs (successful or failed)
        skipped: Triggers ignored because a run was in progress
        last_duration: Seconds taken by the last run
        last_error: repr of the exception of the last run, None on success
        last_result: Return value of the last successful run
    """

    def __init__(self, name: str, func: Callable[[], Awaitable[Any]]):
        self.name = name
        self._func = func
        self._lock = asyncio.Lock()
        self.enabled = True
        self.runs = 0
        self.skipped = 0
        self.last_duration: Optional[float] = None
        self.last_error: Optional[str] = None
        self.last_result: Any = None

    @property
    def state(self) -> PassState:
        return PassState.RUNNING if self._lock.locked() else PassState.IDLE

    async def trigger(self) -> bool:
        """
        Run the pass unless it is disabled or already running.

        Returns:
            True if a run happened, False if the trigger was skipped
        """
        if not self.enabled:
            logger.debug(f"{self.name} pass disabled, trigger ignored")
            return False

        if self._lock.locked():
            self.skipped += 1
            logger.info(f"{self.name} pass still running, skipping this trigger")
            return False

        async with self._lock:
            started = time.monotonic()
            logger.info(f"{self.name} pass started")
            try:
                self.last_result = await self._func()
                self.last_error = None
            except Exception as e:
                self.last_error = repr(e)
                logger.error(f"{self.name} pass failed: {e!r}")
            finally:
                self.runs += 1
                self.last_duration = time.monotonic() - started

        if self.last_error is None:
            logger.info(
                f"{self.name} pass finished in {self.last_duration:.2f}s: {self.last_result}"
            )
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "runs": self.runs,
            "skipped": self.skipped,
            "last_duration": self.last_duration,
            "last_error": self.last_error,
        }


class SyncScheduler:
    """
    Orchestrates symbol discovery, price refresh and cleanup.

    Args:
        store: Persistent store
        manager: Exchange adapters
        queues: Request queue per exchange name (missing ones get a default queue)
        invalid_cache: Negative cache for NotFound answers
        price_interval / symbol_interval / cleanup_interval: Timer periods in seconds
        retention_seconds: Age after which price records are purged
        not_found_policy: "negative_cache" or "auto_disable"
        quote_assets: Discovery keeps only these quote assets (empty keeps all)
        discovery_timeout: Per-attempt timeout of one symbol listing; paginated
            listings make several HTTP calls inside one attempt
        market_types: Markets to synchronize
        sleep: Sleep coroutine for the timers; injectable for tests
    """

    def __init__(
        self,
        store: PriceStore,
        manager: ExchangeManager,
        queues: Optional[Dict[str, RequestQueue]] = None,
        invalid_cache: Optional[InvalidSymbolCache] = None,
        price_interval: float = 10.0,
        symbol_interval: float = 86400.0,
        cleanup_interval: float = 3600.0,
        retention_seconds: float = 3600.0,
        not_found_policy: str = "negative_cache",
        quote_assets: Optional[Iterable[str]] = None,
        discovery_timeout: Optional[float] = 60.0,
        market_types: Iterable[MarketType] = (MarketType.SPOT, MarketType.PERPETUAL),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not_found_policy not in NOT_FOUND_POLICIES:
            raise ValueError(
                f"Invalid not_found_policy '{not_found_policy}'. "
                f"Must be one of: {', '.join(NOT_FOUND_POLICIES)}"
            )

        self.store = store
        self.manager = manager
        self.queues: Dict[str, RequestQueue] = dict(queues or {})
        self.invalid_cache = invalid_cache or InvalidSymbolCache()
        self.intervals = {
            "symbol-discovery": symbol_interval,
            "price-refresh": price_interval,
            "cleanup": cleanup_interval,
        }
        self.retention_seconds = retention_seconds
        self.not_found_policy = not_found_policy
        self.quote_assets: Set[str] = {q.upper() for q in (quote_assets or [])}
        self.discovery_timeout = discovery_timeout
        self.market_types = [MarketType(m) for m in market_types]
        self._sleep = sleep

        self.discovery = PassRunner("symbol-discovery", self.run_symbol_discovery)
        self.prices = PassRunner("price-refresh", self.run_price_refresh)
        self.cleanup = PassRunner("cleanup", self.run_cleanup)
        self.runners: Dict[str, PassRunner] = {
            runner.name: runner for runner in (self.discovery, self.prices, self.cleanup)
        }

        self._running = False
        self._timers: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Task] = set()

    # ============================================
    # Lifecycle
    # ============================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Run the startup passes, then schedule the timers. No-op if running.
        """
        if self._running:
            logger.debug("Sync scheduler already running")
            return

        self._running = True
        for runner in self.runners.values():
            runner.enabled = True

        logger.info("Starting sync scheduler: initial symbol discovery and price refresh")
        await self.discovery.trigger()
        await self.prices.trigger()

        if not self._running:
            # stop() was called during the startup passes
            return

        self._timers = [
            asyncio.create_task(self._timer(runner), name=f"sync_timer_{name}")
            for name, runner in self.runners.items()
        ]
        logger.info(
            "Sync timers scheduled: "
            + ", ".join(f"{name}={interval}s" for name, interval in self.intervals.items())
        )

    async def stop(self) -> None:
        """Cancel timers and in-flight passes. No-op if stopped."""
        if not self._running:
            return

        logger.info("Stopping sync scheduler...")
        self._running = False
        for runner in self.runners.values():
            runner.enabled = False

        tasks = self._timers + list(self._in_flight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._timers = []
        self._in_flight.clear()
        logger.info("Sync scheduler stopped")

    async def _timer(self, runner: PassRunner) -> None:
        interval = self.intervals[runner.name]
        while self._running:
            await self._sleep(interval)
            if not self._running:
                break
            # Fixed-rate tick: a run still in progress makes this tick a skip
            task = asyncio.create_task(runner.trigger(), name=f"sync_pass_{runner.name}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "not_found_policy": self.not_found_policy,
            "invalid_symbols": len(self.invalid_cache),
            "passes": {name: runner.snapshot() for name, runner in self.runners.items()},
        }

    def _queue(self, exchange: str) -> RequestQueue:
        queue = self.queues.get(exchange)
        if queue is None:
            queue = self.queues[exchange] = RequestQueue(exchange)
        return queue

    # ============================================
    # Symbol Discovery
    # ============================================

    async def run_symbol_discovery(self) -> Dict[str, int]:
        """Discover and reconcile symbols for every market type."""
        counts = {}
        for market_type in self.market_types:
            counts[market_type.value] = await self._discover_market(market_type)
        return counts

    def _quote_allowed(self, info: SymbolInfo) -> bool:
        if not self.quote_assets:
            return True
        quote = info.quote_asset or split_assets(info.symbol)[1]
        return quote in self.quote_assets

    async def _discover_market(self, market_type: MarketType) -> int:
        adapters = [a for a in self.manager.exchanges.values() if a.supports(market_type)]
        if not adapters:
            return 0

        results = await asyncio.gather(
            *(
                self._queue(a.name).submit(partial(a.list_symbols, market_type), timeout=self.discovery_timeout)
                for a in adapters
            ),
            return_exceptions=True,
        )

        listings = []
        preserve_mask = 0
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                preserve_mask |= adapter.flag
                logger.warning(
                    f"[{adapter.name}] {market_type.value} symbol listing failed, "
                    f"keeping stored membership: {result!r}"
                )
                continue
            kept = [info for info in result if self._quote_allowed(info)]
            logger.debug(f"[{adapter.name}] {market_type.value}: {len(kept)}/{len(result)} symbols kept")
            listings.append((adapter.flag, kept))

        if not listings:
            logger.error(f"Every exchange failed {market_type.value} symbol listing, nothing stored")
            return 0

        entities = merge_symbol_lists(listings, market_type)
        await self.store.upsert_symbols(market_type, entities, preserve_mask=preserve_mask)
        return len(entities)

    # ============================================
    # Price Refresh
    # ============================================

    async def run_price_refresh(self) -> Dict[str, int]:
        """
        Fetch prices (and funding for perpetuals) for every enabled symbol.

        Fetches are enqueued on each exchange's queue: serialized within an
        exchange, parallel across exchanges. The pass ends when every fetch
        has resolved.
        """
        stats = {"updated": 0, "failed": 0, "not_found": 0, "suppressed": 0}
        jobs = []

        for market_type in self.market_types:
            symbols = await self.store.get_symbols(market_type)
            by_exchange: Dict[str, List[SymbolEntity]] = {}
            for entity in symbols:
                if not entity.fetch_enabled:
                    continue
                for name in entity.exchanges:
                    adapter = self.manager.exchanges.get(name)
                    if adapter is None or not adapter.supports(market_type):
                        continue
                    if self.invalid_cache.is_invalid(name, entity.canonical_symbol, market_type):
                        stats["suppressed"] += 1
                        logger.debug(
                            f"[{name}] {entity.canonical_symbol} ({market_type.value}) "
                            f"recently not found, skipped"
                        )
                        continue
                    by_exchange.setdefault(name, []).append(entity)

            for name, entities in by_exchange.items():
                adapter = self.manager.exchanges[name]
                logger.debug(f"[{name}] Refreshing {len(entities)} {market_type.value} symbols")
                for entity in entities:
                    jobs.append(self._refresh_symbol(adapter, entity, market_type, stats))

        await asyncio.gather(*jobs)
        return stats

    async def _refresh_symbol(
        self,
        adapter: ExchangeInterface,
        entity: SymbolEntity,
        market_type: MarketType,
        stats: Dict[str, int],
    ) -> None:
        symbol = entity.canonical_symbol
        queue = self._queue(adapter.name)

        quote = funding = None
        try:
            quote = await queue.submit(partial(adapter.fetch_ticker, symbol, market_type))
        except SymbolNotFoundError:
            # No funding request either: the instrument does not exist there
            stats["not_found"] += 1
            await self._handle_not_found(adapter.name, entity, market_type)
            return
        except Exception as e:
            stats["failed"] += 1
            logger.warning(f"[{adapter.name}] Ticker failed for {symbol} ({market_type.value}): {e!r}")

        if market_type == MarketType.PERPETUAL and adapter.supports("funding_rate"):
            try:
                funding = await queue.submit(partial(adapter.fetch_funding_rate, symbol))
            except SymbolNotFoundError:
                # Listed for spot-style tickers but no funding contract
                logger.debug(f"[{adapter.name}] No funding rate for {symbol}")
            except Exception as e:
                stats["failed"] += 1
                logger.warning(f"[{adapter.name}] Funding rate failed for {symbol}: {e!r}")

        if quote is None and funding is None:
            return

        try:
            await self.store.upsert_price(symbol, market_type, adapter.name, quote=quote, funding=funding)
            stats["updated"] += 1
        except StoreError as e:
            stats["failed"] += 1
            logger.error(f"[{adapter.name}] Could not store price for {symbol}: {e}")

    async def _handle_not_found(self, exchange: str, entity: SymbolEntity, market_type: MarketType) -> None:
        symbol = entity.canonical_symbol
        self.invalid_cache.record(exchange, symbol, market_type)
        logger.info(f"[{exchange}] {symbol} ({market_type.value}) not found, suppressing further fetches")

        if self.not_found_policy != "auto_disable":
            return

        listed_on = [ex for ex in entity.exchanges if ex in self.manager.exchanges]
        if not all(self.invalid_cache.is_invalid(ex, symbol, market_type) for ex in listed_on):
            return

        try:
            await self.store.update_fetch_flag(symbol, market_type, False)
            logger.warning(f"{symbol} ({market_type.value}) not found on any exchange, fetch disabled")
        except StoreError as e:
            logger.error(f"Could not disable fetch for {symbol}: {e}")

    # ============================================
    # Cleanup
    # ============================================

    async def run_cleanup(self) -> Dict[str, int]:
        deleted = await self.store.clean_old_data(self.retention_seconds)
        expired = self.invalid_cache.purge_expired()
        return {"deleted_prices": deleted, "expired_invalid_symbols": expired}

