"""
Core Package

Exchange-agnostic building blocks of the sync engine:
- ExchangeInterface / ExchangeManager: Adapter contract and registry
- RequestQueue: Per-exchange serial queue with delay, retry and rate limit
- Symbol normalizer: Canonical symbols and cross-exchange merge
- Schemas: Pydantic models for symbols, quotes and price records
- Config, logging and exceptions
"""
