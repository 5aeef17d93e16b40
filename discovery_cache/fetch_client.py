"""
Resilient HTTP client for upstream providers.

Every outbound call goes through `ResilientClient.call`, which adds:
- a per-attempt wall-clock timeout
- bounded retries with exponential backoff (base_delay * 2^attempt)
- classification of failures into retryable vs terminal errors
- per-target call/error counters for health reporting
"""
import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from discovery_cache.errors import (
    FetchError,
    NotFound,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamTimeout,
    is_retryable,
)

logger = logging.getLogger("fetch.client")

_CHUNK_SIZE = 8192


@dataclass
class CallOptions:
    """Options for a single logical call."""
    method: str = "GET"
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    body: Any = None                      # dict/list sent as JSON, str/bytes sent raw
    timeout: Optional[float] = None       # seconds per attempt
    retries: Optional[int] = None         # additional attempts after the first
    retry_delay: Optional[float] = None   # base backoff delay in seconds


@dataclass
class TargetStats:
    """Counters for one call target."""
    calls: int = 0
    attempts: int = 0
    errors: int = 0
    failures: int = 0
    last_call_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "attempts": self.attempts,
            "errors": self.errors,
            "failures": self.failures,
            "lastCallAt": self.last_call_at.isoformat() if self.last_call_at else None,
        }


@dataclass
class _Response:
    """Fully read response of one attempt."""
    status_code: int
    headers: Any
    content: bytes
    encoding: Optional[str] = None

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")


class ResilientClient:
    """
    HTTP client with timeout, retry and error classification.

    Usage:
        client = ResilientClient("tmdb", base_url="https://api.themoviedb.org/3")
        data = client.get("trending/movie/week", params={"page": 1})
    """

    def __init__(
        self,
        name: str,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        retries: int = 2,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            name: Provider name, used in logs and error messages
            base_url: Prefix for relative targets
            default_headers: Headers sent with every call
            timeout: Default per-attempt timeout in seconds
            retries: Default number of retries after the first attempt
            retry_delay: Default base backoff delay in seconds
            session: requests session (injectable for tests)
            sleep: Sleep function used between retries
        """
        if not name:
            raise ValueError("ResilientClient requires a name")

        self.name = name
        self.base_url = base_url.rstrip("/") if base_url else None
        self.default_headers = {
            "Accept": "application/json",
            **(default_headers or {}),
        }
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._session = session or requests.Session()
        self._sleep = sleep

        self._targets: Dict[str, TargetStats] = {}
        self._lock = threading.Lock()

    # ===== URL BUILDING =====

    def build_url(self, target: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build the fully-qualified URL for a target.

        Absolute targets are used as-is, relative ones are joined to base_url.
        Query parameters with a None value are skipped.
        """
        if target.startswith(("http://", "https://")):
            url = target
        else:
            if not self.base_url:
                raise ValueError(f"No base_url configured for provider {self.name}")
            url = f"{self.base_url}/{target.lstrip('/')}"

        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        if not clean_params:
            return url

        prepared = requests.Request("GET", url, params=clean_params).prepare()
        return prepared.url

    # ===== CALLS =====

    def call(self, target: str, options: Optional[CallOptions] = None, **overrides) -> Any:
        """
        Perform one logical call with retries.

        Args:
            target: Absolute URL or path relative to base_url
            options: Call options; keyword overrides are applied on top

        Returns:
            Parsed JSON body, or the text body for non-JSON responses

        Raises:
            UpstreamTimeout, UpstreamConnectionError, NotFound, UpstreamError
        """
        opts = options or CallOptions()
        if overrides:
            opts = replace(opts, **overrides)

        url = self.build_url(target, opts.params)
        headers = {**self.default_headers, **(opts.headers or {})}
        timeout = opts.timeout if opts.timeout is not None else self.timeout
        retries = opts.retries if opts.retries is not None else self.retries
        retry_delay = opts.retry_delay if opts.retry_delay is not None else self.retry_delay

        stats = self._stats_for(target)
        with self._lock:
            stats.calls += 1
            stats.last_call_at = datetime.now(timezone.utc)

        retrying = Retrying(
            stop=stop_after_attempt(max(retries, 0) + 1),
            wait=wait_exponential(multiplier=retry_delay, exp_base=2),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            return retrying(self._attempt, opts.method.upper(), url, headers, opts.body, timeout, stats)
        except Exception:
            with self._lock:
                stats.failures += 1
            raise

    def get(self, target: str, params: Optional[Dict[str, Any]] = None, **overrides) -> Any:
        """GET request."""
        return self.call(target, CallOptions(method="GET", params=params), **overrides)

    def post(
        self,
        target: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        **overrides,
    ) -> Any:
        """POST request with a JSON (or raw) body."""
        return self.call(target, CallOptions(method="POST", params=params, body=body), **overrides)

    def _attempt(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
        timeout: float,
        stats: TargetStats,
    ) -> Any:
        """Single attempt; raises a classified FetchError on failure."""
        with self._lock:
            stats.attempts += 1

        kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout, "stream": True}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["data"] = body

        started = time.monotonic()
        try:
            try:
                response = self._send(method, url, kwargs, timeout)
            except requests.Timeout as e:
                raise UpstreamTimeout(
                    f"Timeout after {timeout}s calling {self.name}: {url}"
                ) from e
            except requests.ConnectionError as e:
                raise UpstreamConnectionError(
                    f"Connection error calling {self.name}: {e}"
                ) from e
            except requests.RequestException as e:
                raise FetchError(f"Request to {self.name} failed: {e}", retryable=False) from e

            if response.status_code >= 400:
                body_text = response.text
                if response.status_code == 404:
                    raise NotFound(body_text, f"Resource not found on {self.name}: {url}")
                raise UpstreamError(
                    response.status_code,
                    body_text,
                    f"HTTP {response.status_code} from {self.name}",
                )
        except Exception:
            with self._lock:
                stats.errors += 1
            raise

        duration_ms = (time.monotonic() - started) * 1000
        logger.debug(f"[{self.name}] {method} {url} - {response.status_code} ({duration_ms:.0f}ms)")
        return self._parse(response)

    def _send(self, method: str, url: str, kwargs: Dict[str, Any], timeout: float) -> _Response:
        """
        Run the request on a worker thread and wait at most `timeout` seconds.

        requests only bounds the connect and each socket read, so a body that
        trickles in could otherwise hold the attempt open indefinitely. A worker
        left behind stops reading at its next chunk once the deadline has passed.
        """
        deadline = time.monotonic() + timeout
        outcome: Dict[str, Any] = {}

        def run():
            try:
                outcome["response"] = self._fetch(method, url, kwargs, deadline)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=run, name=f"fetch-{self.name}", daemon=True)
        worker.start()
        worker.join(max(deadline - time.monotonic(), 0))

        if worker.is_alive():
            raise requests.Timeout(f"No complete response within {timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def _fetch(self, method: str, url: str, kwargs: Dict[str, Any], deadline: float) -> _Response:
        response = self._session.request(method, url, **kwargs)
        try:
            chunks = []
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise requests.Timeout("Response body still arriving at the deadline")
                chunks.append(chunk)
        finally:
            response.close()

        return _Response(
            status_code=response.status_code,
            headers=response.headers,
            content=b"".join(chunks),
            encoding=response.encoding,
        )

    def _parse(self, response: _Response) -> Any:
        content_type = response.headers.get("content-type", "") or ""
        if "application/json" in content_type:
            try:
                return json.loads(response.content)
            except ValueError as e:
                raise FetchError(f"Invalid JSON from {self.name}: {e}", retryable=False) from e
        return response.text

    def _log_retry(self, retry_state) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"[{self.name}] Attempt {retry_state.attempt_number} failed ({error}), "
            f"retrying in {delay:.1f}s"
        )

    # ===== STATS =====

    def _stats_for(self, target: str) -> TargetStats:
        key = target.split("?", 1)[0]
        with self._lock:
            stats = self._targets.get(key)
            if stats is None:
                stats = TargetStats()
                self._targets[key] = stats
            return stats

    def stats(self) -> Dict[str, Any]:
        """Counters per target plus totals, for health reporting."""
        with self._lock:
            targets = {k: v.to_dict() for k, v in self._targets.items()}
            calls = sum(s.calls for s in self._targets.values())
            failures = sum(s.failures for s in self._targets.values())
            errors = sum(s.errors for s in self._targets.values())
            last = max(
                (s.last_call_at for s in self._targets.values() if s.last_call_at),
                default=None,
            )

        return {
            "name": self.name,
            "calls": calls,
            "errors": errors,
            "failures": failures,
            "errorRate": f"{(failures / calls * 100):.2f}%" if calls else "0%",
            "lastCallAt": last.isoformat() if last else None,
            "targets": targets,
        }

    def reset_stats(self) -> None:
        with self._lock:
            self._targets = {}

    def close(self) -> None:
        self._session.close()
