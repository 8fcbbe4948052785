"""
Database Engine and Tables

SQLAlchemy 2.0 async engine factory plus the two tables of the store:

    symbols(canonical_symbol, market_type, base_asset, quote_asset,
            exchange_mask, fetch_enabled, updated_at)
        PRIMARY KEY (canonical_symbol, market_type)

    prices(canonical_symbol, market_type,
           price_<exchange>..., funding_rate_<exchange>...,
           next_funding_time_<exchange>..., updated_at)
        PRIMARY KEY (canonical_symbol, market_type)

Per-exchange columns are generated from the exchange registry, so adding an
exchange adds its three slot columns.

Storage formats:
    - Decimals are stored as text to keep exact values on every backend
    - Timestamps are stored as epoch milliseconds (BIGINT), UTC

Usage:
    engine = create_engine_from_url("sqlite+aiosqlite:///./data/prices.db")
    await create_tables(engine)
"""

from decimal import Decimal
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from core.exchange_registry import EXCHANGE_REGISTRY
from core.logging import logger


class DecimalText(TypeDecorator):
    """Decimal stored as its exact string form."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


# ============================================
# Column Naming
# ============================================

def price_column(exchange: str) -> str:
    return f"price_{exchange}"


def funding_rate_column(exchange: str) -> str:
    return f"funding_rate_{exchange}"


def next_funding_time_column(exchange: str) -> str:
    return f"next_funding_time_{exchange}"


# ============================================
# Tables
# ============================================

metadata = MetaData()

symbols_table = Table(
    "symbols",
    metadata,
    Column("canonical_symbol", String(64), primary_key=True),
    Column("market_type", String(16), primary_key=True),
    Column("base_asset", String(32), nullable=False, default=""),
    Column("quote_asset", String(32), nullable=False, default=""),
    Column("exchange_mask", Integer, nullable=False, default=0),
    Column("fetch_enabled", Boolean, nullable=False, default=True),
    Column("updated_at", BigInteger, nullable=False),
)

_slot_columns = []
for _exchange in EXCHANGE_REGISTRY:
    _slot_columns.extend([
        Column(price_column(_exchange), DecimalText, nullable=True),
        Column(funding_rate_column(_exchange), DecimalText, nullable=True),
        Column(next_funding_time_column(_exchange), BigInteger, nullable=True),
    ])

prices_table = Table(
    "prices",
    metadata,
    Column("canonical_symbol", String(64), primary_key=True),
    Column("market_type", String(16), primary_key=True),
    *_slot_columns,
    Column("updated_at", BigInteger, nullable=False, index=True),
)


# ============================================
# Engine
# ============================================

def create_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given SQLAlchemy URL.

    In-memory SQLite shares one connection (StaticPool) so every session sees
    the same database. File-based SQLite gets its parent directory created.

    Example:
        >>> engine = create_engine_from_url("sqlite+aiosqlite:///:memory:")
    """
    parsed = make_url(url)
    kwargs = {"echo": echo}

    if parsed.get_backend_name() == "sqlite":
        database: Optional[str] = parsed.database
        if not database or database == ":memory:":
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_recycle"] = 3600

    engine = create_async_engine(url, **kwargs)
    logger.info(f"✅ Database engine created: {parsed.render_as_string(hide_password=True)}")
    return engine


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
