"""
Re-fetches stored cache entries through the fetcher registry.

Only used by refresh sweeps, never on the request path.
"""
import logging
import threading
import time
from typing import Any, Dict, Optional

from discovery_cache.cache.core import CacheEntryInfo, count_results
from discovery_cache.cache.keys import dimensions_from_key
from discovery_cache.cache.store import CacheStore
from discovery_cache.cache.ttl_policies import Volatility, get_refresh_ttl
from discovery_cache.errors import NoFetcherRegistered
from .registry import FetcherRegistry

logger = logging.getLogger("cache.refresher")


class CacheRefresher:
    """
    Refreshes one cache entry at a time:
    1. resolve the fetch function for (provider, endpoint)
    2. rebuild call options from the entry's columns and key
    3. call the fetcher
    4. write the result back with the TTL of the endpoint's volatility class

    refresh_entry() reports failure as False and never raises.
    """

    def __init__(
        self,
        store: CacheStore,
        registry: FetcherRegistry,
        ttl_table: Optional[Dict[Volatility, int]] = None,
    ):
        self._store = store
        self._registry = registry
        self._ttl_table = ttl_table
        self._counts = {"success": 0, "failed": 0, "no_fetcher": 0}
        self._lock = threading.Lock()

    @property
    def registry(self) -> FetcherRegistry:
        return self._registry

    def refresh_entry(self, entry: CacheEntryInfo) -> bool:
        """
        Refresh one stored entry.

        Returns:
            True if new data was fetched and written back
        """
        cache_key = entry.cache_key

        try:
            spec = self._registry.resolve(entry.provider, entry.endpoint)
        except NoFetcherRegistered as e:
            logger.warning(f"{e}, skipping {cache_key}")
            self._count("no_fetcher")
            self._count("failed")
            return False

        try:
            options = dimensions_from_key(
                cache_key,
                category=entry.category,
                period=entry.period,
                extra_dimensions=spec.key_dimensions,
            )
            logger.debug(f"Refreshing cache: {cache_key} {options}")

            started = time.monotonic()
            data = spec.fetch(options)
            duration_ms = (time.monotonic() - started) * 1000
        except Exception as e:
            logger.error(f"Failed to refresh {cache_key}: {e}")
            self._count("failed")
            return False

        ttl = get_refresh_ttl(spec.volatility, self._ttl_table)
        if not self._store.upsert(cache_key, entry.provider, entry.endpoint, options, data, ttl):
            logger.warning(f"Refreshed {cache_key} but could not store the result")
            self._count("failed")
            return False

        logger.info(
            f"Cache refreshed: {cache_key} ({duration_ms:.0f}ms, results={count_results(data)})"
        )
        self._count("success")
        return True

    def _count(self, name: str) -> None:
        with self._lock:
            self._counts[name] += 1

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._counts, fetchers=len(self._registry))
