"""
Wiring of the cache subsystem: store, fetch clients, registry, refresher, scheduler.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from discovery_cache.cache.coalescer import FetchCoalescer
from discovery_cache.cache.core import CachedResult
from discovery_cache.cache.store import CacheStore
from discovery_cache.cache.ttl_policies import (
    ContentType,
    build_refresh_ttl_table,
    ttl_for_content_type,
)
from discovery_cache.cache.wrapper import with_cache
from discovery_cache.fetch_client import ResilientClient
from discovery_cache.providers import build_clients, build_registry
from discovery_cache.refresh.refresher import CacheRefresher
from discovery_cache.refresh.registry import FetcherRegistry
from discovery_cache.refresh.scheduler import RefreshScheduler

logger = logging.getLogger("services")


@dataclass
class CacheServices:
    """Long-lived components shared by the API and the scheduler."""
    store: CacheStore
    refresher: CacheRefresher
    scheduler: RefreshScheduler
    clients: Dict[str, ResilientClient] = field(default_factory=dict)
    coalescer: FetchCoalescer = field(default_factory=FetchCoalescer)
    ttl_by_type: Dict[str, int] = field(default_factory=dict)
    default_ttl: int = 300

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        for client in self.clients.values():
            client.close()
        self.store.close()

    def cached(
        self,
        provider: str,
        endpoint: str,
        fetch_fn: Callable[[], Any],
        content_type: ContentType,
        dimensions: Optional[Dict[str, Any]] = None,
    ) -> CachedResult:
        """
        Read-through call with the configured TTL of the content type.

        Concurrent misses on one key share a single upstream call.
        """
        ttl = ttl_for_content_type(content_type, self.ttl_by_type, self.default_ttl)
        return with_cache(
            self.store,
            provider,
            endpoint,
            fetch_fn,
            dimensions=dimensions,
            ttl_seconds=ttl,
            coalescer=self.coalescer,
        )


def build_services(settings, registry: Optional[FetcherRegistry] = None) -> CacheServices:
    """
    Build every component from settings.

    Args:
        settings: Application settings
        registry: Extra fetchers (e.g. provider adapters) to refresh alongside
            the configured upstreams
    """
    store = CacheStore.from_settings(settings)
    clients = build_clients(settings)
    registry = build_registry(settings, clients=clients, registry=registry)

    refresher = CacheRefresher(
        store,
        registry,
        ttl_table=build_refresh_ttl_table(
            settings.refresh_ttl_volatile_seconds,
            settings.refresh_ttl_stable_seconds,
        ),
    )
    scheduler = RefreshScheduler.from_settings(store, refresher, settings)
    return CacheServices(
        store=store,
        refresher=refresher,
        scheduler=scheduler,
        clients=clients,
        ttl_by_type=dict(settings.cache_ttl_by_type),
        default_ttl=settings.cache_default_ttl_seconds,
    )
