"""
Generic JSON upstreams configured in settings.upstreams.

Each provider gets its own ResilientClient; each configured endpoint becomes
a fetch function registered in the FetcherRegistry. Provider-specific
response mapping lives outside this package.
"""
import logging
import string
from typing import Any, Dict, Optional

from discovery_cache.fetch_client import ResilientClient
from discovery_cache.refresh.registry import FetchFunction, FetcherRegistry

logger = logging.getLogger("providers")

_formatter = string.Formatter()


def make_http_fetcher(
    client: ResilientClient,
    path: str,
    params: Optional[Dict[str, Any]] = None,
) -> FetchFunction:
    """
    Fetch function calling `path` on the provider's client.

    `path` may reference options as format fields, e.g.
    "trending/{category}/{period}". Options not used by the path are sent
    as query parameters, after the static `params`.
    """
    path_fields = {name for _, name, _, _ in _formatter.parse(path) if name}

    def fetch(options: Dict[str, Any]) -> Any:
        missing = path_fields - set(options)
        if missing:
            raise ValueError(f"Missing options {sorted(missing)} for path '{path}'")

        target = path.format(**{name: options[name] for name in path_fields})
        query = dict(params or {})
        query.update({k: v for k, v in options.items() if k not in path_fields})
        return client.get(target, params=query)

    return fetch


def build_clients(settings) -> Dict[str, ResilientClient]:
    """One resilient client per configured upstream."""
    clients = {}
    for provider, upstream in settings.upstreams.items():
        headers = {"User-Agent": settings.http_user_agent, **upstream.get("headers", {})}
        clients[provider] = ResilientClient(
            provider,
            base_url=upstream.get("base_url"),
            default_headers=headers,
            timeout=upstream.get("timeout", settings.http_timeout_seconds),
            retries=upstream.get("retries", settings.http_retries),
            retry_delay=upstream.get("retry_delay", settings.http_retry_delay_seconds),
        )
    return clients


def build_registry(
    settings,
    clients: Optional[Dict[str, ResilientClient]] = None,
    registry: Optional[FetcherRegistry] = None,
) -> FetcherRegistry:
    """
    Register a fetch function for every configured upstream endpoint.

    Args:
        settings: Application settings (uses settings.upstreams)
        clients: Prebuilt clients by provider; built from settings if omitted
        registry: Registry to extend; a new one if omitted
    """
    registry = registry if registry is not None else FetcherRegistry()
    clients = clients if clients is not None else build_clients(settings)

    for provider, upstream in settings.upstreams.items():
        client = clients[provider]
        for endpoint, config in upstream.get("endpoints", {}).items():
            registry.register(
                provider,
                endpoint,
                make_http_fetcher(client, config.get("path", endpoint), config.get("params")),
                volatility=config.get("volatility"),
                key_dimensions=config.get("key_dimensions", ()),
            )
            logger.debug(f"Registered fetcher {provider}/{endpoint}")

    if len(registry):
        logger.info(f"Fetcher registry: {len(registry)} endpoints across {len(registry.providers())} providers")
    return registry
