"""
Exchange Interface - Abstract Contract for Exchange Adapters

Every exchange the sync engine talks to is wrapped in an adapter implementing
this interface. The scheduler only ever calls these methods, so adding an
exchange means writing one adapter and registering its bit in
core.exchange_registry.

Adapters take and return CANONICAL symbols ("BTCUSDT"). Mapping to the native
spelling ("BTC-USDT-SWAP" on OKX) happens inside the adapter: the native name
seen during the last list_symbols() call is remembered; before any discovery
the adapter derives it from the base/quote split.

Example:
    class OKXExchange(ExchangeInterface):
        name = "okx"
        flag = ExchangeFlag.OKX

        async def list_symbols(self, market_type):
            ...

    adapter = manager.get_exchange("okx")
    quote = await adapter.fetch_ticker("BTCUSDT", MarketType.PERPETUAL)

Error Contract:
    - SymbolNotFoundError: the exchange says the instrument does not exist
    - TransientExchangeError: retryable (network, 5xx, rate limit)
    - ExchangeAPIError: anything else the exchange rejected
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from core.exchange_registry import ExchangeFlag
from core.schemas import FundingQuote, MarketType, PriceQuote, SymbolInfo
from core.symbol_normalizer import normalize, split_assets


class ExchangeInterface(ABC):
    """
    Abstract Base Class for Exchange Adapters

    Class Attributes:
        name: Unique identifier for the exchange (lowercase, registry name)
        flag: The exchange's bit in SymbolEntity.exchange_mask
        capabilities: Which market types / data the exchange serves

    Abstract Methods:
        - list_symbols: Tradable instruments of one market type
        - fetch_ticker: Last price of one instrument
        - fetch_funding_rate: Current funding rate of one perpetual contract
        - native_symbol_from_assets: Native spelling built from base/quote

    Optional Methods (can be overridden):
        - initialize / shutdown: Session lifecycle
        - health_check: Cheap reachability check
    """

    # ============================================
    # Class Attributes (must be set by subclasses)
    # ============================================

    name: str
    flag: ExchangeFlag

    capabilities: Dict[str, bool] = {
        "spot": False,
        "perpetual": False,
        "funding_rate": False,
    }

    def __init__(self):
        # (canonical, market_type) -> native spelling, refreshed by list_symbols
        self._native_symbols: Dict[Tuple[str, str], str] = {}

    # ============================================
    # REST API Methods
    # ============================================

    @abstractmethod
    async def list_symbols(self, market_type: MarketType) -> List[SymbolInfo]:
        """
        Fetch the tradable instruments of one market type.

        Implementations should call remember_native_symbols() with the result
        so later fetches can use the exact native spelling.

        Returns:
            SymbolInfo list in native spelling. Base/quote filled when the
            exchange reports them.
        """

    @abstractmethod
    async def fetch_ticker(self, symbol: str, market_type: MarketType) -> PriceQuote:
        """
        Fetch the last traded price of a canonical symbol.

        Raises:
            SymbolNotFoundError: If the exchange does not list the instrument
        """

    @abstractmethod
    async def fetch_funding_rate(self, symbol: str) -> FundingQuote:
        """
        Fetch the current funding rate of a canonical perpetual symbol.

        Raises:
            SymbolNotFoundError: If the exchange does not list the contract
        """

    @abstractmethod
    def native_symbol_from_assets(self, base: str, quote: str, market_type: MarketType) -> str:
        """Native spelling for a base/quote pair (e.g., "BTC-USDT-SWAP")."""

    # ============================================
    # Native Symbol Mapping
    # ============================================

    def remember_native_symbols(self, symbols: List[SymbolInfo], market_type: MarketType) -> None:
        """Record the native spelling of each listed symbol."""
        market = MarketType(market_type).value
        for info in symbols:
            self._native_symbols[(normalize(info.symbol), market)] = info.symbol

    def to_native(self, symbol: str, market_type: MarketType) -> str:
        """
        Map a canonical symbol to this exchange's spelling.

        Example:
            >>> okx.to_native("BTCUSDT", MarketType.PERPETUAL)
            'BTC-USDT-SWAP'
        """
        canonical = normalize(symbol)
        native = self._native_symbols.get((canonical, MarketType(market_type).value))
        if native is not None:
            return native

        base, quote = split_assets(canonical)
        if not base:
            return canonical
        return self.native_symbol_from_assets(base, quote, market_type)

    # ============================================
    # Optional Lifecycle Methods
    # ============================================

    async def initialize(self) -> None:
        """Open network resources. Default does nothing; must be idempotent."""
        pass

    async def shutdown(self) -> None:
        """Release network resources. Must not raise."""
        pass

    async def health_check(self) -> bool:
        """
        Check if the exchange API is reachable.

        Default returns True. Implementations make a lightweight call and
        return False on errors instead of raising.
        """
        return True

    # ============================================
    # Helper Methods
    # ============================================

    def supports(self, feature: str) -> bool:
        """
        Check if this exchange supports a market type or feature.

        Example:
            >>> if adapter.supports("perpetual"):
            ...     await adapter.fetch_funding_rate("BTCUSDT")
        """
        key = feature.value if isinstance(feature, MarketType) else feature
        return self.capabilities.get(key, False)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"

