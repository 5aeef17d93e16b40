"""
Error taxonomy for the fetch client, cache store and refresher.
"""
from typing import Optional


class DiscoveryCacheError(Exception):
    """Base class for every error raised by this package."""
    pass


# =============================================================================
# Fetch errors
# =============================================================================

class FetchError(DiscoveryCacheError):
    """
    An outbound call failed.

    `retryable` tells the fetch client whether another attempt may succeed.
    Any exception carrying `retryable = False` is treated as terminal.
    """

    retryable = True

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class UpstreamTimeout(FetchError):
    """The upstream did not answer before the per-attempt deadline."""
    retryable = True


class UpstreamConnectionError(FetchError):
    """The upstream could not be reached (DNS, refused, reset...)."""
    retryable = True


class UpstreamError(FetchError):
    """The upstream answered with an HTTP error status."""

    def __init__(self, status_code: int, body: str = "", message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(
            message or f"HTTP {status_code}",
            retryable=is_retryable_status(status_code),
        )


class NotFound(UpstreamError):
    """The upstream answered 404."""

    def __init__(self, body: str = "", message: Optional[str] = None):
        super().__init__(404, body, message or "HTTP 404 Not Found")


def is_retryable_status(status_code: int) -> bool:
    """5xx and 429 are transient; every other 4xx is terminal."""
    if status_code == 429:
        return True
    return status_code >= 500


def is_retryable(error: BaseException) -> bool:
    """Classify an exception raised during one fetch attempt."""
    return bool(getattr(error, "retryable", False))


# =============================================================================
# Store / refresh errors
# =============================================================================

class StoreUnavailable(DiscoveryCacheError):
    """The cache store is disabled or cannot be reached."""
    pass


class NoFetcherRegistered(DiscoveryCacheError):
    """No fetch function is registered for a provider/endpoint pair."""

    def __init__(self, provider: str, endpoint: str):
        self.provider = provider
        self.endpoint = endpoint
        super().__init__(f"No fetcher registered for {provider}/{endpoint}")


class UnknownVolatility(DiscoveryCacheError, ValueError):
    """An endpoint was registered without a declared volatility class."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(
            f"No volatility class declared for endpoint '{endpoint}'"
        )
