"""
Market Data Service

Facade between the sync engine and the presentation layer (FastAPI routes,
CLI). Owns the explicitly wired components:

    engine -> PriceStore
    ExchangeManager (adapters) -> one RequestQueue per exchange
    InvalidSymbolCache
    SyncScheduler(store, manager, queues, invalid_cache)

Nothing here is a process-wide singleton: build one service with
MarketDataService.from_settings() at process start (or wire fakes in tests)
and pass it to whoever needs it.

Usage:
    service = MarketDataService.from_settings(settings)
    await service.initialize()
    await service.start_sync()

    page = await service.get_prices(MarketType.SPOT, sort_by="spread", descending=True)

    await service.shutdown()
"""

import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.config import Settings, settings as default_settings
from core.exchange_manager import ExchangeManager
from core.exchange_registry import EXCHANGE_REGISTRY
from core.logging import get_logger
from core.request_queue import RateLimitedRequestQueue, RequestQueue
from core.schemas import MarketType, PricePage, PriceRecord, SymbolEntity
from core.symbol_normalizer import normalize
from core.ttl_cache import InvalidSymbolCache
from services.sync_scheduler import SyncScheduler
from storage.database import create_engine_from_url
from storage.store import PriceStore


logger = get_logger(__name__)

MAX_PAGE_SIZE = 500

SORT_KEYS = ("symbol", "updated_at", "spread") + tuple(f"price_{ex}" for ex in EXCHANGE_REGISTRY)


def build_queues(config: Settings, exchanges: List[str]) -> Dict[str, RequestQueue]:
    """
    One request queue per exchange.

    Exchanges listed in rate_limited_exchanges get the rolling-window variant.
    """
    common = {
        "request_delay": config.request_delay,
        "max_retries": config.max_retries,
        "backoff_base": config.backoff_base,
        "timeout": config.request_timeout,
    }
    queues: Dict[str, RequestQueue] = {}
    for name in exchanges:
        if name in config.rate_limited_exchanges_list:
            queues[name] = RateLimitedRequestQueue(
                name,
                max_requests=config.rate_limit_max_requests,
                time_window=config.rate_limit_window,
                **common,
            )
        else:
            queues[name] = RequestQueue(name, **common)
    return queues


def _sort_value(sort_by: str) -> Callable[[PriceRecord], Optional[Any]]:
    if sort_by == "symbol":
        return lambda r: r.canonical_symbol
    if sort_by == "updated_at":
        return lambda r: r.updated_at
    if sort_by == "spread":
        return lambda r: r.spread
    exchange = sort_by[len("price_"):]
    return lambda r: r.prices.get(exchange)


class MarketDataService:
    """
    Query and control surface of the sync engine.

    Args:
        store: Persistent store
        manager: Exchange adapters
        scheduler: Sync scheduler wired to the same store and manager
    """

    def __init__(self, store: PriceStore, manager: ExchangeManager, scheduler: SyncScheduler):
        self.store = store
        self.manager = manager
        self.scheduler = scheduler

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "MarketDataService":
        """Wire every component from configuration."""
        engine = create_engine_from_url(config.database_url, echo=config.database_echo)
        store = PriceStore(engine, cache_ttl=config.read_cache_ttl)
        manager = ExchangeManager.from_names(config.enabled_exchanges_list)
        scheduler = SyncScheduler(
            store,
            manager,
            queues=build_queues(config, manager.list_exchanges()),
            invalid_cache=InvalidSymbolCache(ttl=config.invalid_symbol_ttl),
            price_interval=config.price_sync_interval,
            symbol_interval=config.symbol_sync_interval,
            cleanup_interval=config.cleanup_interval,
            retention_seconds=config.price_retention_seconds,
            not_found_policy=config.not_found_policy,
            quote_assets=config.quote_assets_list,
            discovery_timeout=config.discovery_timeout,
        )
        return cls(store, manager, scheduler)

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        """Create tables and open adapter sessions."""
        await self.store.initialize()
        await self.manager.initialize_all()

    async def shutdown(self) -> None:
        """Stop sync, then close queues, adapters and the database engine."""
        await self.stop_sync()
        for queue in self.scheduler.queues.values():
            await queue.close()
        await self.manager.shutdown_all()
        await self.store.close()

    async def start_sync(self) -> bool:
        """
        Start the scheduler (runs the startup passes first).

        Returns:
            False if sync was already running
        """
        if self.scheduler.is_running:
            logger.info("start_sync ignored, sync already running")
            return False
        await self.scheduler.start()
        return True

    async def stop_sync(self) -> bool:
        """
        Returns:
            False if sync was not running
        """
        if not self.scheduler.is_running:
            logger.info("stop_sync ignored, sync not running")
            return False
        await self.scheduler.stop()
        return True

    def status(self) -> Dict[str, Any]:
        status = self.scheduler.status()
        status["exchanges"] = self.manager.list_exchanges()
        status["queues"] = {name: queue.pending for name, queue in self.scheduler.queues.items()}
        return status

    # ============================================
    # Queries
    # ============================================

    async def get_symbols(
        self,
        market_type: MarketType,
        search: Optional[str] = None,
        base_asset: Optional[str] = None,
        quote_asset: Optional[str] = None,
    ) -> List[SymbolEntity]:
        """
        Symbols of a market type, optionally filtered.

        Args:
            search: Case-insensitive substring of the canonical symbol
            base_asset / quote_asset: Exact asset match (case-insensitive)
        """
        symbols = await self.store.get_symbols(market_type)

        if search:
            needle = normalize(search)
            symbols = [s for s in symbols if needle in s.canonical_symbol]
        if base_asset:
            symbols = [s for s in symbols if s.base_asset == base_asset.upper()]
        if quote_asset:
            symbols = [s for s in symbols if s.quote_asset == quote_asset.upper()]
        return symbols

    async def get_prices(
        self,
        market_type: MarketType,
        page: int = 1,
        page_size: int = 50,
        sort_by: str = "symbol",
        descending: bool = False,
        search: Optional[str] = None,
    ) -> PricePage:
        """
        One page of price records.

        Records without a value for the sort key (no spread, no price on that
        exchange) always come last, whatever the direction.

        Raises:
            ValueError: Invalid page, page_size or sort key
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Invalid sort key '{sort_by}'. Must be one of: {', '.join(SORT_KEYS)}")

        records = await self.store.get_prices(market_type)
        if search:
            needle = normalize(search)
            records = [r for r in records if needle in r.canonical_symbol]

        key = _sort_value(sort_by)
        present: List[Tuple[Any, PriceRecord]] = []
        missing: List[PriceRecord] = []
        for record in records:
            value = key(record)
            if value is None:
                missing.append(record)
            else:
                present.append((value, record))

        present.sort(key=lambda item: (item[0], item[1].canonical_symbol), reverse=descending)
        ordered = [record for _, record in present] + missing

        total = len(ordered)
        start = (page - 1) * page_size
        return PricePage(
            records=ordered[start:start + page_size],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    # ============================================
    # Operator Controls
    # ============================================

    async def set_fetch_enabled(self, symbol: str, market_type: MarketType, enabled: bool) -> None:
        """
        Enable or disable price polling for one symbol.

        Re-enabling also forgets recent NotFound answers for it, so the next
        price pass tries every exchange again.

        Raises:
            KeyError: If the symbol is unknown for that market type
        """
        canonical = normalize(symbol)
        market_type = MarketType(market_type)
        if not await self.store.update_fetch_flag(canonical, market_type, enabled):
            raise KeyError(f"Unknown symbol {canonical} ({market_type.value})")

        if enabled:
            for exchange in EXCHANGE_REGISTRY:
                self.scheduler.invalid_cache.discard(exchange, canonical, market_type)

