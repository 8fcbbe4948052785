"""
Storage Package

Persistent store for symbols and latest prices:
- database.py: SQLAlchemy async engine and table definitions
- store.py: PriceStore (upserts, cached reads, cleanup)

Any SQLAlchemy async URL works; SQLite (aiosqlite) is the default.
"""

from storage.store import PriceStore
from storage.database import create_engine_from_url, metadata

__all__ = ["PriceStore", "create_engine_from_url", "metadata"]
