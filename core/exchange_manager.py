"""
Exchange Manager - Registry of Exchange Adapters

Holds the adapters the sync engine works with, keyed by registry name, and
manages their lifecycle (initialize/shutdown/health).

Adapters are injected. Without an explicit list the manager builds one
adapter per enabled exchange from settings:

    # Production
    manager = ExchangeManager.from_names(settings.enabled_exchanges_list)

    # Tests
    manager = ExchangeManager([FakeExchange("binance"), FakeExchange("okx")])

Adding a new exchange:
    1. Create the adapter (e.g., exchanges/kraken/__init__.py)
    2. Give it a bit in core.exchange_registry
    3. Register its import path in ADAPTER_CLASSES below
"""

from importlib import import_module
from typing import Dict, Iterable, List, Optional

from core.exchange_interface import ExchangeInterface
from core.exchange_registry import EXCHANGE_REGISTRY, mask_for
from core.logging import logger


# name -> "module:ClassName"; imported lazily since adapters import core
ADAPTER_CLASSES: Dict[str, str] = {
    "binance": "exchanges.binance:BinanceExchange",
    "okx": "exchanges.okx:OKXExchange",
    "bybit": "exchanges.bybit:BybitExchange",
}


def build_adapter(name: str) -> ExchangeInterface:
    """
    Instantiate the adapter registered for an exchange name.

    Raises:
        ValueError: If no adapter is registered under that name
    """
    path = ADAPTER_CLASSES.get(name.lower())
    if path is None:
        raise ValueError(
            f"Exchange '{name}' is not supported. Available exchanges: {', '.join(ADAPTER_CLASSES)}"
        )
    module_name, class_name = path.split(":")
    adapter_cls = getattr(import_module(module_name), class_name)
    return adapter_cls()


class ExchangeManager:
    """
    Central Manager for Exchange Adapters

    Attributes:
        exchanges: Mapping of exchange name to adapter, in registry order

    Example:
        >>> manager = ExchangeManager.from_names(["binance", "okx"])
        >>> await manager.initialize_all()
        >>> okx = manager.get_exchange("okx")
        >>> manager.enabled_mask
        3
        >>> await manager.shutdown_all()
    """

    def __init__(self, adapters: Optional[Iterable[ExchangeInterface]] = None):
        """
        Args:
            adapters: Adapters to manage. Defaults to one per enabled exchange in settings.

        Raises:
            ValueError: If two adapters share a name or a name is not in the registry
        """
        if adapters is None:
            from core.config import settings

            adapters = [build_adapter(name) for name in settings.enabled_exchanges_list]

        registered: Dict[str, ExchangeInterface] = {}
        for adapter in adapters:
            if adapter.name not in EXCHANGE_REGISTRY:
                raise ValueError(f"Exchange '{adapter.name}' has no bit in the exchange registry")
            if adapter.name in registered:
                raise ValueError(f"Duplicate adapter for exchange '{adapter.name}'")
            registered[adapter.name] = adapter

        # Registry order keeps gather/log output stable
        self.exchanges: Dict[str, ExchangeInterface] = {
            name: registered[name] for name in EXCHANGE_REGISTRY if name in registered
        }

        logger.info(
            f"ExchangeManager initialized with {len(self.exchanges)} exchange(s): "
            f"{', '.join(self.exchanges.keys())}"
        )

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "ExchangeManager":
        return cls([build_adapter(name) for name in names])

    # ============================================
    # Exchange Retrieval Methods
    # ============================================

    def get_exchange(self, name: str) -> ExchangeInterface:
        """
        Get an adapter by name (case-insensitive).

        Raises:
            ValueError: If the exchange is not managed
        """
        name = name.lower()

        if name not in self.exchanges:
            available = ", ".join(self.exchanges.keys())
            logger.error(f"Exchange '{name}' not found. Available: {available}")
            raise ValueError(
                f"Exchange '{name}' is not supported. "
                f"Available exchanges: {available}"
            )

        return self.exchanges[name]

    def has_exchange(self, name: str) -> bool:
        return name.lower() in self.exchanges

    def list_exchanges(self) -> List[str]:
        return list(self.exchanges.keys())

    @property
    def enabled_mask(self) -> int:
        """Bitmask of all managed exchanges."""
        return mask_for(self.exchanges.keys())

    def get_exchanges_with_feature(self, feature: str) -> List[str]:
        """Names of managed exchanges supporting a market type or feature."""
        return [name for name, exchange in self.exchanges.items() if exchange.supports(feature)]

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """
        Initialize every adapter.

        A failing adapter is logged and skipped; its requests will fail later
        and be isolated by the scheduler like any other exchange failure.
        """
        logger.info("Initializing all exchanges...")

        for name, exchange in self.exchanges.items():
            try:
                await exchange.initialize()
            except Exception as e:
                logger.error(f"✗ Failed to initialize {name}: {e}")

        logger.info("All exchanges initialized")

    async def shutdown_all(self) -> None:
        logger.info("Shutting down all exchanges...")

        for name, exchange in self.exchanges.items():
            try:
                await exchange.shutdown()
            except Exception as e:
                logger.error(f"✗ Error shutting down {name}: {e}")

        logger.info("All exchanges shut down")

    # ============================================
    # Health Check Methods
    # ============================================

    async def health_check_all(self) -> Dict[str, bool]:
        """
        Check health status of all exchanges.

        Example:
            >>> await manager.health_check_all()
            {'binance': True, 'okx': True, 'bybit': False}
        """
        health_status = {}
        for name, exchange in self.exchanges.items():
            try:
                health_status[name] = await exchange.health_check()
            except Exception as e:
                logger.error(f"Health check failed for {name}: {e}")
                health_status[name] = False

        return health_status

    # ============================================
    # Utility Methods
    # ============================================

    def __repr__(self) -> str:
        return f"<ExchangeManager(exchanges={list(self.exchanges.keys())})>"

    def __len__(self) -> int:
        return len(self.exchanges)
