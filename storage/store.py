"""
Persistent Store

Durable storage for SymbolEntity and PriceRecord with a TTL-bounded
in-memory read cache.

Write path:
    upsert_symbols / upsert_price / update_fetch_flag / clean_old_data go to
    the database first. The in-memory cache is touched only after the
    database call succeeded, so a failed write never leaves the cache ahead
    of the database.

Read path:
    get_symbols / get_prices return the cached snapshot of a market type. The
    snapshot is rebuilt from the database when it is older than the cache TTL
    (default 10 s). Concurrent readers share one rebuild.

Cache maintenance per write:
    - upsert_symbols:    symbol snapshot of that market type is dropped
    - upsert_price:      the record is patched in the price snapshot
    - update_fetch_flag: the entity is patched in the symbol snapshot
    - clean_old_data:    price snapshots of affected market types are dropped

Every write also bumps a per-market generation counter; a rebuild that
started before the write does not publish its (older) snapshot.

Errors:
    Any SQLAlchemy failure is raised as StoreError.

Example:
    store = PriceStore(create_engine_from_url("sqlite+aiosqlite:///:memory:"))
    await store.initialize()
    await store.upsert_symbols(MarketType.SPOT, entities)
    await store.upsert_price("BTCUSDT", MarketType.SPOT, "binance", quote)
    records = await store.get_prices(MarketType.SPOT)
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from core.exceptions import StoreError
from core.exchange_registry import EXCHANGE_REGISTRY
from core.logging import get_logger
from core.schemas import FundingQuote, MarketType, PriceQuote, PriceRecord, SymbolEntity
from core.ttl_cache import TTLCache
from core.utils.time import current_utc_datetime, datetime_to_timestamp
from storage.database import (
    create_tables,
    funding_rate_column,
    next_funding_time_column,
    price_column,
    prices_table,
    symbols_table,
)


logger = get_logger(__name__)

_DIALECT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _to_ms(dt: Optional[datetime]) -> Optional[int]:
    if dt is None:
        return None
    return datetime_to_timestamp(dt, milliseconds=True)


def _from_ms(ms: Optional[int]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def _market(market_type) -> str:
    return MarketType(market_type).value


class PriceStore:
    """
    Cache-backed store for symbols and latest prices.

    Args:
        engine: SQLAlchemy async engine (any dialect; upserts are native on
                SQLite and PostgreSQL, emulated elsewhere)
        cache_ttl: Read-cache lifetime in seconds (0 disables caching)
        clock: Wall clock returning an aware UTC datetime (record timestamps)
        monotonic: Monotonic clock for cache ages
    """

    def __init__(
        self,
        engine: AsyncEngine,
        cache_ttl: float = 10.0,
        clock: Callable[[], datetime] = current_utc_datetime,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self._clock = clock
        self._symbol_cache: TTLCache = TTLCache(cache_ttl, clock=monotonic)
        self._price_cache: TTLCache = TTLCache(cache_ttl, clock=monotonic)
        self._symbol_lock = asyncio.Lock()
        self._price_lock = asyncio.Lock()
        self._generations: Dict[str, int] = {}

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        try:
            await create_tables(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create tables: {e}") from e
        logger.info("Price store initialized")

    async def close(self) -> None:
        await self.engine.dispose()
        self.invalidate_cache()
        logger.info("Price store closed")

    def invalidate_cache(self, market_type: Optional[MarketType] = None) -> None:
        """Drop cached snapshots for one market type, or for all."""
        markets = [_market(market_type)] if market_type is not None else [m.value for m in MarketType]
        for market in markets:
            self._symbol_cache.delete(market)
            self._price_cache.delete(market)
            self._bump(market)

    # ============================================
    # Internal Helpers
    # ============================================

    def _now_ms(self) -> int:
        return _to_ms(self._clock())

    def _bump(self, market: str) -> None:
        self._generations[market] = self._generations.get(market, 0) + 1

    @asynccontextmanager
    async def _transaction(self, operation: str):
        try:
            async with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise StoreError(f"{operation} failed: {e}") from e

    @asynccontextmanager
    async def _connection(self, operation: str):
        try:
            async with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error(f"Store read '{operation}' failed: {e}")
            raise StoreError(f"{operation} failed: {e}") from e

    @staticmethod
    async def _upsert(
        conn: AsyncConnection,
        table,
        keys: Dict[str, object],
        values: Dict[str, object],
        update_columns: Iterable[str],
    ) -> None:
        """INSERT ... ON CONFLICT (keys) DO UPDATE SET update_columns."""
        update_columns = list(update_columns)
        dialect_insert = _DIALECT_INSERTS.get(conn.dialect.name)

        if dialect_insert is not None:
            stmt = dialect_insert(table).values(**keys, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(keys),
                set_={column: stmt.excluded[column] for column in update_columns},
            )
            await conn.execute(stmt)
            return

        # Other dialects: update first, insert when nothing matched
        condition = and_(*[table.c[k] == v for k, v in keys.items()])
        result = await conn.execute(
            update(table).where(condition).values({c: values[c] for c in update_columns})
        )
        if result.rowcount == 0:
            await conn.execute(insert(table).values(**keys, **values))

    @staticmethod
    def _row_to_entity(row) -> SymbolEntity:
        return SymbolEntity(
            canonical_symbol=row.canonical_symbol,
            base_asset=row.base_asset,
            quote_asset=row.quote_asset,
            market_type=MarketType(row.market_type),
            exchange_mask=row.exchange_mask,
            fetch_enabled=row.fetch_enabled,
            updated_at=_from_ms(row.updated_at),
        )

    @staticmethod
    def _row_to_record(row) -> PriceRecord:
        data = row._mapping
        return PriceRecord(
            canonical_symbol=data["canonical_symbol"],
            market_type=MarketType(data["market_type"]),
            prices={ex: data[price_column(ex)] for ex in EXCHANGE_REGISTRY},
            funding_rates={ex: data[funding_rate_column(ex)] for ex in EXCHANGE_REGISTRY},
            next_funding_times={
                ex: _from_ms(data[next_funding_time_column(ex)]) for ex in EXCHANGE_REGISTRY
            },
            updated_at=_from_ms(data["updated_at"]),
        )

    # ============================================
    # Symbols
    # ============================================

    async def upsert_symbols(
        self,
        market_type: MarketType,
        entities: Iterable[SymbolEntity],
        preserve_mask: int = 0,
    ) -> int:
        """
        Reconcile the stored symbol set of a market type with a discovery result.

        All-or-nothing: runs in a single transaction.

        Args:
            market_type: Market the entities belong to
            entities: Freshly merged entities (one per canonical symbol)
            preserve_mask: Bits of exchanges whose listing failed this pass.
                These bits are carried over from the stored mask instead of
                being recomputed.

        Rules:
            - Listed symbols: mask = new mask | (stored mask & preserve_mask)
            - Stored symbols not listed: mask = stored mask & preserve_mask
            - fetch_enabled of existing symbols is never changed here
            - Known base/quote is not replaced by an empty value
            - Nothing is deleted

        Returns:
            Number of listed symbols written
        """
        market = _market(market_type)
        now_ms = self._now_ms()
        preserve_mask = int(preserve_mask)
        written = set()

        async with self._transaction("upsert_symbols") as conn:
            result = await conn.execute(
                select(symbols_table).where(symbols_table.c.market_type == market)
            )
            stored = {row.canonical_symbol: row for row in result}

            for entity in entities:
                symbol = entity.canonical_symbol
                if symbol in written:
                    continue
                written.add(symbol)

                mask = int(entity.exchange_mask)
                base, quote = entity.base_asset, entity.quote_asset
                previous = stored.get(symbol)
                if previous is not None:
                    mask |= previous.exchange_mask & preserve_mask
                    base = base or previous.base_asset
                    quote = quote or previous.quote_asset

                await self._upsert(
                    conn,
                    symbols_table,
                    {"canonical_symbol": symbol, "market_type": market},
                    {
                        "base_asset": base,
                        "quote_asset": quote,
                        "exchange_mask": mask,
                        "fetch_enabled": entity.fetch_enabled,
                        "updated_at": now_ms,
                    },
                    update_columns=("base_asset", "quote_asset", "exchange_mask", "updated_at"),
                )

            dropped = 0
            for symbol, row in stored.items():
                if symbol in written:
                    continue
                kept = row.exchange_mask & preserve_mask
                if kept == row.exchange_mask:
                    continue
                dropped += 1
                await conn.execute(
                    update(symbols_table)
                    .where(and_(
                        symbols_table.c.canonical_symbol == symbol,
                        symbols_table.c.market_type == market,
                    ))
                    .values(exchange_mask=kept, updated_at=now_ms)
                )

        self._symbol_cache.delete(market)
        self._bump(market)
        logger.info(
            f"Upserted {len(written)} {market} symbols"
            + (f", {dropped} no longer listed" if dropped else "")
        )
        return len(written)

    async def get_symbols(self, market_type: MarketType) -> List[SymbolEntity]:
        """All symbols of a market type, sorted by canonical symbol (cached)."""
        market = _market(market_type)
        cached = self._symbol_cache.get(market)
        if cached is not None:
            return list(cached)

        async with self._symbol_lock:
            cached = self._symbol_cache.get(market)
            if cached is not None:
                return list(cached)

            generation = self._generations.get(market, 0)
            async with self._connection("get_symbols") as conn:
                result = await conn.execute(
                    select(symbols_table)
                    .where(symbols_table.c.market_type == market)
                    .order_by(symbols_table.c.canonical_symbol)
                )
                entities = [self._row_to_entity(row) for row in result]

            if self._generations.get(market, 0) == generation:
                self._symbol_cache.set(market, entities)
            return list(entities)

    async def update_fetch_flag(self, symbol: str, market_type: MarketType, enabled: bool) -> bool:
        """
        Point update of fetch_enabled.

        Returns:
            False if the symbol does not exist
        """
        market = _market(market_type)
        async with self._transaction("update_fetch_flag") as conn:
            result = await conn.execute(
                update(symbols_table)
                .where(and_(
                    symbols_table.c.canonical_symbol == symbol,
                    symbols_table.c.market_type == market,
                ))
                .values(fetch_enabled=enabled)
            )
            found = result.rowcount > 0

        if not found:
            return False

        self._bump(market)
        snapshot = self._symbol_cache.get(market)
        if snapshot is not None:
            for i, entity in enumerate(snapshot):
                if entity.canonical_symbol == symbol:
                    snapshot[i] = entity.model_copy(update={"fetch_enabled": enabled})
                    break

        logger.info(f"Fetch {'enabled' if enabled else 'disabled'} for {symbol} ({market})")
        return True

    # ============================================
    # Prices
    # ============================================

    async def upsert_price(
        self,
        symbol: str,
        market_type: MarketType,
        exchange: str,
        quote: Optional[PriceQuote] = None,
        funding: Optional[FundingQuote] = None,
    ) -> None:
        """
        Merge one exchange's quote into the price record of a symbol.

        Only the given exchange's slots are written; other exchanges' slots
        keep their values. The record is created when absent. Calling twice
        with the same input leaves one record with the same values.

        Raises:
            ValueError: Unknown exchange, or neither quote nor funding given
            StoreError: Database failure (cache left untouched)
        """
        if exchange not in EXCHANGE_REGISTRY:
            raise ValueError(f"Exchange '{exchange}' is not registered")
        if quote is None and funding is None:
            raise ValueError("upsert_price needs a quote, a funding rate, or both")

        market = _market(market_type)
        now_ms = self._now_ms()

        values: Dict[str, object] = {}
        if quote is not None:
            values[price_column(exchange)] = quote.last_price
        if funding is not None:
            values[funding_rate_column(exchange)] = funding.funding_rate
            values[next_funding_time_column(exchange)] = _to_ms(funding.next_funding_time)
        values["updated_at"] = now_ms

        async with self._transaction("upsert_price") as conn:
            await self._upsert(
                conn,
                prices_table,
                {"canonical_symbol": symbol, "market_type": market},
                values,
                update_columns=list(values),
            )

        self._bump(market)
        self._patch_price(market, symbol, exchange, quote, funding, _from_ms(now_ms))

    def _patch_price(
        self,
        market: str,
        symbol: str,
        exchange: str,
        quote: Optional[PriceQuote],
        funding: Optional[FundingQuote],
        updated_at: datetime,
    ) -> None:
        snapshot = self._price_cache.get(market)
        if snapshot is None:
            return

        current = snapshot.get(symbol)
        if current is None:
            record = PriceRecord(
                canonical_symbol=symbol,
                market_type=MarketType(market),
                prices={ex: None for ex in EXCHANGE_REGISTRY},
                funding_rates={ex: None for ex in EXCHANGE_REGISTRY},
                next_funding_times={ex: None for ex in EXCHANGE_REGISTRY},
                updated_at=updated_at,
            )
        else:
            # Copy so records already handed out to readers stay unchanged
            record = current.model_copy(deep=True)
            record.updated_at = updated_at

        if quote is not None:
            record.prices[exchange] = quote.last_price
        if funding is not None:
            record.funding_rates[exchange] = funding.funding_rate
            record.next_funding_times[exchange] = funding.next_funding_time

        snapshot[symbol] = record

    async def get_prices(self, market_type: MarketType) -> List[PriceRecord]:
        """All price records of a market type, sorted by canonical symbol (cached)."""
        market = _market(market_type)
        cached = self._price_cache.get(market)
        if cached is not None:
            return sorted(cached.values(), key=lambda r: r.canonical_symbol)

        async with self._price_lock:
            cached = self._price_cache.get(market)
            if cached is not None:
                return sorted(cached.values(), key=lambda r: r.canonical_symbol)

            generation = self._generations.get(market, 0)
            async with self._connection("get_prices") as conn:
                result = await conn.execute(
                    select(prices_table)
                    .where(prices_table.c.market_type == market)
                    .order_by(prices_table.c.canonical_symbol)
                )
                records = {r.canonical_symbol: r for r in (self._row_to_record(row) for row in result)}

            if self._generations.get(market, 0) == generation:
                self._price_cache.set(market, records)
            return list(records.values())

    async def clean_old_data(self, retention_seconds: float) -> int:
        """
        Delete price records whose updated_at is older than the horizon.

        A record exactly at the horizon survives.

        Returns:
            Number of deleted records
        """
        cutoff_ms = _to_ms(self._clock() - timedelta(seconds=retention_seconds))
        stale = prices_table.c.updated_at < cutoff_ms

        async with self._transaction("clean_old_data") as conn:
            result = await conn.execute(select(prices_table.c.market_type).where(stale).distinct())
            affected = [row.market_type for row in result]
            if not affected:
                return 0
            deleted = (await conn.execute(delete(prices_table).where(stale))).rowcount

        for market in affected:
            self._price_cache.delete(market)
            self._bump(market)

        logger.info(f"Cleaned {deleted} price record(s) older than {retention_seconds:.0f}s")
        return deleted
