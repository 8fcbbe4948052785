"""
Exchange Adapters Package

One subfolder per exchange:
- __init__.py: Adapter class implementing ExchangeInterface
- api_client.py: REST API client (aiohttp)

Adding an exchange: write the adapter, give it a bit in core.exchange_registry,
and register its class in core.exchange_manager.ADAPTER_CLASSES.
"""
