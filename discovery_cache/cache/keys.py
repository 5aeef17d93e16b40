"""
Cache key construction.

A key is provider:endpoint followed by the present dimensions, in the fixed
order of KEY_DIMENSIONS. Values are appended verbatim, so an omitted
dimension and an empty one give different keys.
"""
from typing import Any, Dict, List, Optional, Sequence

KEY_SEPARATOR = ":"

# Fixed order; only these dimensions ever reach the key
KEY_DIMENSIONS = ("category", "period", "type", "filter", "day")


def build_key(
    provider: str,
    endpoint: str,
    dimensions: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Build the cache key for a provider/endpoint/dimensions combination.

    Example:
        build_key("tmdb", "trending", {"category": "movie", "period": "week"})
        -> "tmdb:trending:movie:week"
    """
    dimensions = dimensions or {}
    parts = [provider, endpoint]
    for name in KEY_DIMENSIONS:
        value = dimensions.get(name)
        if value is not None:
            parts.append(str(value))
    return KEY_SEPARATOR.join(parts)


def split_key(cache_key: str) -> List[str]:
    return cache_key.split(KEY_SEPARATOR)


def dimensions_from_key(
    cache_key: str,
    category: Optional[str] = None,
    period: Optional[str] = None,
    extra_dimensions: Sequence[str] = (),
) -> Dict[str, str]:
    """
    Recover call options from a stored key.

    category and period come from their own columns; they occupy the first
    dimension slots when present. The remaining key parts are assigned, in
    order, to the extra dimensions declared for the endpoint.

    Example:
        dimensions_from_key("jikan:schedule:monday", extra_dimensions=("day",))
        -> {"day": "monday"}
    """
    options: Dict[str, str] = {}
    remaining = split_key(cache_key)[2:]

    if category is not None:
        options["category"] = category
        remaining = remaining[1:]
    if period is not None:
        options["period"] = period
        remaining = remaining[1:]

    for name, value in zip(extra_dimensions, remaining):
        options[name] = value

    return options
