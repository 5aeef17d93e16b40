"""
Persistent discovery cache: key policy, TTL policies, store and read-through helper.
"""
from .core import CacheEntryInfo, CacheEnvelope, CachedResult, count_results
from .keys import KEY_DIMENSIONS, build_key, dimensions_from_key
from .ttl_policies import (
    ENDPOINT_VOLATILITY,
    REFRESH_TTL,
    ContentType,
    Volatility,
    build_refresh_ttl_table,
    get_refresh_ttl,
    ttl_for_content_type,
    volatility_for_endpoint,
)
from .coalescer import FetchCoalescer
from .store import CacheStore, utcnow
from .wrapper import with_cache

__all__ = [
    # Core types
    "CacheEntryInfo",
    "CacheEnvelope",
    "CachedResult",
    "count_results",
    # Keys
    "KEY_DIMENSIONS",
    "build_key",
    "dimensions_from_key",
    # TTL policies
    "ENDPOINT_VOLATILITY",
    "REFRESH_TTL",
    "ContentType",
    "Volatility",
    "build_refresh_ttl_table",
    "get_refresh_ttl",
    "ttl_for_content_type",
    "volatility_for_endpoint",
    # Store
    "CacheStore",
    "FetchCoalescer",
    "utcnow",
    "with_cache",
]
