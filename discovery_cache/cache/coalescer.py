"""
In-process coalescing of concurrent cache misses.

When several threads miss on the same key at once, only the first one calls
the upstream; the others block until it finishes and share its outcome.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class _PendingFetch:
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None
    waiters: int = 0


class FetchCoalescer:
    """
    Share one upstream call among concurrent callers of the same key.

    Usage:
        coalescer = FetchCoalescer()
        data = coalescer.run("tmdb:trending:movie", lambda: fetch_trending("movie"))
    """

    def __init__(self, wait_timeout: float = 60.0):
        """
        Args:
            wait_timeout: Max seconds a follower waits for the leader's call
        """
        self._pending: Dict[str, _PendingFetch] = {}
        self._lock = threading.Lock()
        self._wait_timeout = wait_timeout

    def run(self, cache_key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Call fetch_fn, or join the call already running for cache_key.

        Raises:
            TimeoutError: a follower waited longer than wait_timeout
            Exception: whatever fetch_fn raised, for leader and followers alike
        """
        with self._lock:
            pending = self._pending.get(cache_key)
            leader = pending is None
            if leader:
                pending = _PendingFetch()
                self._pending[cache_key] = pending
            else:
                pending.waiters += 1

        if leader:
            try:
                pending.result = fetch_fn()
            except Exception as e:
                pending.error = e
            finally:
                with self._lock:
                    self._pending.pop(cache_key, None)
                pending.done.set()
        else:
            logger.debug(f"Joining in-flight fetch for {cache_key} (waiters: {pending.waiters})")
            if not pending.done.wait(timeout=self._wait_timeout):
                raise TimeoutError(
                    f"Fetch for {cache_key} still running after {self._wait_timeout}s"
                )

        if pending.error is not None:
            raise pending.error
        return pending.result

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._pending)
