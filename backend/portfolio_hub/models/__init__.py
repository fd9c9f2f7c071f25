"""Database model exports."""

from .cache import CACHE_KEYS, PortfolioCacheEntry
from .connection import ConnectionStatus, ProviderConnection, ProviderName

__all__ = [
    "CACHE_KEYS",
    "ConnectionStatus",
    "PortfolioCacheEntry",
    "ProviderConnection",
    "ProviderName",
]
