"""
Read-through helper for the synchronous request path.
"""
import logging
from typing import Any, Callable, Dict, Optional

from .coalescer import FetchCoalescer
from .core import CachedResult
from .keys import build_key
from .store import CacheStore

logger = logging.getLogger("cache.wrapper")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def with_cache(
    store: CacheStore,
    provider: str,
    endpoint: str,
    fetch_fn: Callable[[], Any],
    dimensions: Optional[Dict[str, Any]] = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    coalescer: Optional[FetchCoalescer] = None,
) -> CachedResult:
    """
    Serve from the cache store, or fetch live and store the result.

    Args:
        store: Cache store (may be disabled; then every call fetches live)
        provider: Provider name (part of the key)
        endpoint: Endpoint name (part of the key)
        fetch_fn: Live fetch, called on miss; its errors propagate
        dimensions: Optional key dimensions (category, period, type, filter, day)
        ttl_seconds: TTL for the stored result
        coalescer: Shares one live fetch among concurrent misses of a key

    Returns:
        CachedResult(data, from_cache, cache_key)
    """
    cache_key = build_key(provider, endpoint, dimensions)

    cached = store.get(cache_key)
    if cached is not None:
        return CachedResult(data=cached, from_cache=True, cache_key=cache_key)

    logger.debug(f"Fetching from upstream: {provider}/{endpoint}")
    if coalescer is not None:
        data = coalescer.run(cache_key, fetch_fn)
    else:
        data = fetch_fn()

    if not store.upsert(cache_key, provider, endpoint, dimensions, data, ttl_seconds):
        logger.debug(f"Result for {cache_key} not cached (store unavailable)")

    return CachedResult(data=data, from_cache=False, cache_key=cache_key)
