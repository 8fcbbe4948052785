"""
Exchange Registry

Fixed bit-per-exchange mapping used by SymbolEntity.exchange_mask.

The registry is an ordered tuple: the position of an exchange in
EXCHANGE_REGISTRY is the bit it owns in the mask. Adding an exchange means
appending it here and adding a member to ExchangeFlag; existing bits never move.

Example:
    >>> mask = ExchangeFlag.BINANCE | ExchangeFlag.BYBIT
    >>> exchanges_in_mask(mask)
    ['binance', 'bybit']
    >>> exchange_flag("okx")
    <ExchangeFlag.OKX: 2>
"""

from enum import IntFlag
from typing import List


class ExchangeFlag(IntFlag):
    """One bit per supported exchange."""

    BINANCE = 1  # 0001
    OKX = 2      # 0010
    BYBIT = 4    # 0100


EXCHANGE_REGISTRY = ("binance", "okx", "bybit")

ALL_EXCHANGES = ExchangeFlag.BINANCE | ExchangeFlag.OKX | ExchangeFlag.BYBIT


def exchange_flag(name: str) -> ExchangeFlag:
    """
    Return the mask bit owned by an exchange.

    Raises:
        ValueError: If the exchange is not registered
    """
    name = name.lower()
    if name not in EXCHANGE_REGISTRY:
        raise ValueError(
            f"Exchange '{name}' is not registered. "
            f"Available exchanges: {', '.join(EXCHANGE_REGISTRY)}"
        )
    return ExchangeFlag(1 << EXCHANGE_REGISTRY.index(name))


def exchanges_in_mask(mask: int) -> List[str]:
    """Decode a mask into exchange names, in registry order."""
    return [name for i, name in enumerate(EXCHANGE_REGISTRY) if mask & (1 << i)]


def mask_for(names) -> ExchangeFlag:
    """Union of the bits of the given exchange names."""
    mask = ExchangeFlag(0)
    for name in names:
        mask |= exchange_flag(name)
    return mask
