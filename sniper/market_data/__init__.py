"""
Market data package: providers, rate governance, cache and aggregation.
"""

from .base_provider import (
    BaseProvider, ProviderError, TransientProviderError, RateLimitError,
    PermanentProviderError, QueueSaturationError, MarketDataUnavailableError,
)
from .cache import CacheKind, CacheEntry, MarketDataCache
from .rate_limiter import RateLimiter, RateWindow
from .aggregator import MarketDataAggregator

__all__ = [
    "BaseProvider", "ProviderError", "TransientProviderError", "RateLimitError",
    "PermanentProviderError", "QueueSaturationError", "MarketDataUnavailableError",
    "CacheKind", "CacheEntry", "MarketDataCache",
    "RateLimiter", "RateWindow",
    "MarketDataAggregator",
]
