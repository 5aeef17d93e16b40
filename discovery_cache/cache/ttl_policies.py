"""
TTL configuration: endpoint volatility classes and content-type TTLs.
"""
from enum import Enum
from typing import Dict, Optional

from discovery_cache.errors import UnknownVolatility


class Volatility(Enum):
    """How quickly an endpoint's data goes out of date."""
    VOLATILE = "volatile"     # release calendars, airing schedules
    STABLE = "stable"         # trending/popular/charts lists


class ContentType(Enum):
    """Content classes for the synchronous read-through path."""
    SEARCH = "search"
    DETAIL = "detail"
    PRICE = "price"
    STATIC = "static"


# TTL written by the refresher, per volatility class (seconds)
REFRESH_TTL: Dict[Volatility, int] = {
    Volatility.VOLATILE: 6 * 60 * 60,     # 6 hours
    Volatility.STABLE: 24 * 60 * 60,      # 24 hours
}

# Known discovery endpoints. Endpoints missing here must declare their
# volatility when their fetcher is registered.
ENDPOINT_VOLATILITY: Dict[str, Volatility] = {
    "upcoming": Volatility.VOLATILE,
    "schedule": Volatility.VOLATILE,
    "airing-today": Volatility.VOLATILE,
    "on-the-air": Volatility.VOLATILE,
    "trending": Volatility.STABLE,
    "popular": Volatility.STABLE,
    "top-rated": Volatility.STABLE,
    "top": Volatility.STABLE,
    "charts": Volatility.STABLE,
}

# Default TTL per content type (seconds)
CONTENT_TYPE_TTL: Dict[ContentType, int] = {
    ContentType.SEARCH: 300,
    ContentType.DETAIL: 3600,
    ContentType.PRICE: 600,
    ContentType.STATIC: 86400,
}


def volatility_for_endpoint(endpoint: str) -> Volatility:
    """
    Look up the volatility class of a known endpoint.

    Raises:
        UnknownVolatility: endpoint is not in ENDPOINT_VOLATILITY
    """
    try:
        return ENDPOINT_VOLATILITY[endpoint]
    except KeyError:
        raise UnknownVolatility(endpoint) from None


def build_refresh_ttl_table(volatile_seconds: int, stable_seconds: int) -> Dict[Volatility, int]:
    """Refresh TTL table from configuration; covers every Volatility member."""
    table = {
        Volatility.VOLATILE: volatile_seconds,
        Volatility.STABLE: stable_seconds,
    }
    missing = set(Volatility) - set(table)
    if missing:
        raise ValueError(f"Refresh TTL table is missing {sorted(v.value for v in missing)}")
    return table


def get_refresh_ttl(
    volatility: Volatility,
    table: Optional[Dict[Volatility, int]] = None,
) -> int:
    """TTL (seconds) the refresher writes for a volatility class."""
    return (table or REFRESH_TTL)[volatility]


def ttl_for_content_type(
    content_type: ContentType,
    ttl_by_type: Optional[Dict[str, int]] = None,
    default_ttl: int = 300,
) -> int:
    """
    TTL (seconds) for a content type on the synchronous path.

    Args:
        content_type: Content class of the cached result
        ttl_by_type: Configured overrides keyed by content type value
        default_ttl: Used when neither table has the type
    """
    if ttl_by_type and content_type.value in ttl_by_type:
        return int(ttl_by_type[content_type.value])
    return CONTENT_TYPE_TTL.get(content_type, default_ttl)
