"""
Registry of provider/endpoint -> fetch function.

Built once at startup and handed to the refresher, so tests can register
fake fetchers without touching module state.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from discovery_cache.cache.keys import KEY_DIMENSIONS
from discovery_cache.cache.ttl_policies import Volatility, volatility_for_endpoint
from discovery_cache.errors import NoFetcherRegistered

logger = logging.getLogger("cache.registry")

# fetch(options) -> payload; options carries category, period and key dimensions
FetchFunction = Callable[[Dict[str, Any]], Any]

# Dimensions stored in their own columns; never declared as key extras
_COLUMN_DIMENSIONS = ("category", "period")


@dataclass(frozen=True)
class FetcherSpec:
    """One registered fetch function and how to refresh its entries."""
    provider: str
    endpoint: str
    fetch: FetchFunction
    volatility: Volatility
    key_dimensions: Tuple[str, ...] = ()


class FetcherRegistry:
    """
    Maps (provider, endpoint) to a FetcherSpec.

    Usage:
        registry = FetcherRegistry()

        @registry.fetcher("jikan", "schedule", key_dimensions=("day",))
        def jikan_schedule(options):
            return jikan.get_schedule(options.get("day"))
    """

    def __init__(self):
        self._fetchers: Dict[Tuple[str, str], FetcherSpec] = {}

    def register(
        self,
        provider: str,
        endpoint: str,
        fetch: FetchFunction,
        volatility: Optional[Union[Volatility, str]] = None,
        key_dimensions: Sequence[str] = (),
    ) -> FetcherSpec:
        """
        Register a fetch function.

        Args:
            provider: Provider name as used in cache keys
            endpoint: Endpoint name as used in cache keys
            fetch: Function called with the reconstructed options
            volatility: Volatility class; looked up from ENDPOINT_VOLATILITY if omitted
            key_dimensions: Dimensions (beyond category/period) embedded in the key,
                in key order

        Raises:
            UnknownVolatility: no volatility given and the endpoint is not known
            ValueError: an unknown key dimension was declared
        """
        if volatility is None:
            volatility = volatility_for_endpoint(endpoint)
        elif isinstance(volatility, str):
            volatility = Volatility(volatility)

        for name in key_dimensions:
            if name not in KEY_DIMENSIONS or name in _COLUMN_DIMENSIONS:
                raise ValueError(f"Invalid key dimension '{name}' for {provider}/{endpoint}")

        spec = FetcherSpec(
            provider=provider,
            endpoint=endpoint,
            fetch=fetch,
            volatility=volatility,
            key_dimensions=tuple(key_dimensions),
        )
        if (provider, endpoint) in self._fetchers:
            logger.warning(f"Replacing fetcher for {provider}/{endpoint}")
        self._fetchers[(provider, endpoint)] = spec
        return spec

    def fetcher(
        self,
        provider: str,
        endpoint: str,
        volatility: Optional[Union[Volatility, str]] = None,
        key_dimensions: Sequence[str] = (),
    ) -> Callable[[FetchFunction], FetchFunction]:
        """Decorator form of register()."""
        def decorator(fn: FetchFunction) -> FetchFunction:
            self.register(provider, endpoint, fn, volatility, key_dimensions)
            return fn
        return decorator

    def resolve(self, provider: str, endpoint: str) -> FetcherSpec:
        """
        Raises:
            NoFetcherRegistered: nothing registered for the pair
        """
        spec = self._fetchers.get((provider, endpoint))
        if spec is None:
            raise NoFetcherRegistered(provider, endpoint)
        return spec

    def providers(self) -> List[str]:
        return sorted({provider for provider, _ in self._fetchers})

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._fetchers

    def __iter__(self) -> Iterator[FetcherSpec]:
        return iter(self._fetchers.values())

    def __len__(self) -> int:
        return len(self._fetchers)
