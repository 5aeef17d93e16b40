"""
Resilient fetch client tests: retries, backoff, error classification, stats.
"""
import json
import time

import pytest
import requests

from discovery_cache.errors import (
    FetchError,
    NotFound,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamTimeout,
)
from discovery_cache.fetch_client import CallOptions, ResilientClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, content_type="application/json",
                 chunk_delay=0.0):
        self.status_code = status_code
        self.headers = {"content-type": content_type}
        self.encoding = None
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.chunk_delay = chunk_delay
        self.closed = False

    def iter_content(self, chunk_size=1):
        body = self.text.encode("utf-8")
        if not self.chunk_delay:
            yield body
            return
        # trickle the body out one byte at a time
        for index in range(len(body)):
            time.sleep(self.chunk_delay)
            yield body[index:index + 1]

    def close(self):
        self.closed = True


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


def make_client(*outcomes, **kwargs):
    delays = []
    session = FakeSession(*outcomes)
    client = ResilientClient(
        "tmdb",
        base_url="https://api.example.test/3/",
        session=session,
        sleep=delays.append,
        **kwargs,
    )
    return client, session, delays


# =============================================================================
# Retries
# =============================================================================

def test_success_on_first_attempt():
    client, session, delays = make_client(FakeResponse(payload={"results": [1, 2]}))

    assert client.get("trending/movie/week") == {"results": [1, 2]}
    assert len(session.requests) == 1
    assert delays == []


def test_retries_until_success_on_last_attempt():
    """Two 503s then a 200 with retries=2 is three attempts and a success"""
    client, session, delays = make_client(
        FakeResponse(503, text="busy"),
        FakeResponse(503, text="busy"),
        FakeResponse(payload={"ok": True}),
        retries=2,
        retry_delay=1.0,
    )

    assert client.get("popular") == {"ok": True}
    assert len(session.requests) == 3
    assert delays == [1.0, 2.0]


def test_gives_up_after_retries_exhausted():
    client, session, delays = make_client(
        FakeResponse(500),
        FakeResponse(502),
        FakeResponse(503, text="still down"),
        retries=2,
        retry_delay=0.5,
    )

    with pytest.raises(UpstreamError) as exc_info:
        client.get("popular")

    assert exc_info.value.status_code == 503
    assert exc_info.value.body == "still down"
    assert len(session.requests) == 3
    assert delays == [0.5, 1.0]


def test_not_found_is_not_retried():
    client, session, delays = make_client(FakeResponse(404, text="nope"), retries=3)

    with pytest.raises(NotFound) as exc_info:
        client.get("movie/0")

    assert exc_info.value.status_code == 404
    assert len(session.requests) == 1
    assert delays == []


@pytest.mark.parametrize("status", [400, 401, 403, 422])
def test_client_errors_are_not_retried(status):
    client, session, _ = make_client(FakeResponse(status), retries=3)

    with pytest.raises(UpstreamError) as exc_info:
        client.get("search")

    assert exc_info.value.status_code == status
    assert not exc_info.value.retryable
    assert len(session.requests) == 1


def test_rate_limit_is_retried():
    client, session, _ = make_client(FakeResponse(429), FakeResponse(payload=[1]), retries=1)

    assert client.get("charts") == [1]
    assert len(session.requests) == 2


def test_zero_retries_means_one_attempt():
    client, session, _ = make_client(FakeResponse(503), retries=0)

    with pytest.raises(UpstreamError):
        client.get("popular")
    assert len(session.requests) == 1


def test_per_call_overrides_take_precedence():
    client, session, delays = make_client(
        FakeResponse(503),
        FakeResponse(payload={}),
        retries=0,
        timeout=30,
    )

    assert client.get("popular", retries=1, retry_delay=0.25, timeout=5) == {}
    assert delays == [0.25]
    assert session.requests[-1][2]["timeout"] == 5


# =============================================================================
# Error classification
# =============================================================================

def test_timeout_is_classified_and_retried():
    client, session, _ = make_client(
        requests.Timeout("read timed out"),
        requests.Timeout("read timed out"),
        retries=1,
        timeout=2,
    )

    with pytest.raises(UpstreamTimeout) as exc_info:
        client.get("slow")

    assert "2" in str(exc_info.value)
    assert exc_info.value.retryable
    assert len(session.requests) == 2


def test_trickling_body_is_cut_off_at_the_attempt_deadline():
    """A body that keeps arriving past the timeout fails the attempt on time"""
    slow = FakeResponse(text="x" * 12, content_type="text/plain", chunk_delay=0.25)
    client, session, _ = make_client(slow, retries=0, timeout=0.5)

    started = time.monotonic()
    with pytest.raises(UpstreamTimeout):
        client.get("slow")
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert session.requests[0][2]["stream"] is True
    assert client.stats()["targets"]["slow"]["errors"] == 1


def test_trickling_body_is_retried_then_succeeds():
    client, session, delays = make_client(
        FakeResponse(text="x" * 12, content_type="text/plain", chunk_delay=0.25),
        FakeResponse(text="fast", content_type="text/plain"),
        retries=1,
        timeout=0.5,
    )

    assert client.get("slow") == "fast"
    assert len(session.requests) == 2
    assert len(delays) == 1


def test_connection_error_is_classified_and_retried():
    client, session, _ = make_client(
        requests.ConnectionError("refused"),
        FakeResponse(payload={"data": []}),
        retries=1,
    )

    assert client.get("popular") == {"data": []}
    assert len(session.requests) == 2

    client, _, _ = make_client(requests.ConnectionError("refused"), retries=0)
    with pytest.raises(UpstreamConnectionError):
        client.get("popular")


def test_invalid_json_is_terminal():
    client, session, _ = make_client(FakeResponse(text="{not json"), retries=2)

    with pytest.raises(FetchError) as exc_info:
        client.get("popular")

    assert not exc_info.value.retryable
    assert len(session.requests) == 1


def test_non_json_response_returns_text():
    client, _, _ = make_client(FakeResponse(text="<rss/>", content_type="application/rss+xml"))
    assert client.get("feed") == "<rss/>"


# =============================================================================
# Requests
# =============================================================================

def test_build_url_joins_base_and_skips_none_params():
    client, _, _ = make_client()

    url = client.build_url("/trending/movie/week", {"page": 2, "language": None})
    assert url == "https://api.example.test/3/trending/movie/week?page=2"


def test_build_url_keeps_absolute_targets():
    client, _, _ = make_client()
    assert client.build_url("https://other.test/x") == "https://other.test/x"


def test_build_url_without_base_url_rejects_relative_targets():
    client = ResilientClient("raw", session=FakeSession())
    with pytest.raises(ValueError):
        client.build_url("popular")


def test_headers_and_json_body_are_sent():
    client, session, _ = make_client(
        FakeResponse(payload=[]),
        default_headers={"Authorization": "Bearer token"},
    )

    client.post("games", body={"fields": "*"}, headers={"X-Trace": "1"})

    method, url, kwargs = session.requests[0]
    assert method == "POST"
    assert url == "https://api.example.test/3/games"
    assert kwargs["json"] == {"fields": "*"}
    assert kwargs["headers"]["Authorization"] == "Bearer token"
    assert kwargs["headers"]["X-Trace"] == "1"
    assert kwargs["headers"]["Accept"] == "application/json"


def test_raw_body_is_sent_as_data():
    client, session, _ = make_client(FakeResponse(payload=[]))

    client.call("games", CallOptions(method="post", body="fields *; limit 10;"))

    method, _, kwargs = session.requests[0]
    assert method == "POST"
    assert kwargs["data"] == "fields *; limit 10;"
    assert "json" not in kwargs


def test_client_requires_a_name():
    with pytest.raises(ValueError):
        ResilientClient("")


# =============================================================================
# Stats
# =============================================================================

def test_stats_count_calls_attempts_and_failures():
    client, _, _ = make_client(
        FakeResponse(503),
        FakeResponse(payload={}),
        FakeResponse(404),
        retries=1,
    )

    client.get("popular", params={"page": 1})
    with pytest.raises(NotFound):
        client.get("movie/0")

    stats = client.stats()
    assert stats["name"] == "tmdb"
    assert stats["calls"] == 2
    assert stats["errors"] == 2
    assert stats["failures"] == 1
    assert stats["errorRate"] == "50.00%"
    assert stats["lastCallAt"] is not None

    popular = stats["targets"]["popular"]
    assert popular["calls"] == 1
    assert popular["attempts"] == 2
    assert popular["errors"] == 1
    assert popular["failures"] == 0


def test_reset_stats_and_close():
    client, session, _ = make_client(FakeResponse(payload={}))
    client.get("popular")

    client.reset_stats()
    assert client.stats()["calls"] == 0
    assert client.stats()["errorRate"] == "0%"

    client.close()
    assert session.closed
