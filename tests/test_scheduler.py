"""
Refresh scheduler tests: sweeps, failure isolation, pacing, lifecycle.
"""
import pytest

from discovery_cache.cache.keys import build_key
from discovery_cache.refresh.refresher import CacheRefresher
from discovery_cache.refresh.registry import FetcherRegistry
from discovery_cache.refresh.scheduler import (
    DEFAULT_SCHEDULE,
    RefreshScheduler,
    ScheduledSweep,
    SweepKind,
)


class RecordingFetcher:
    """Fetch function that records calls and fails for chosen categories."""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    def __call__(self, options):
        self.calls.append(options.get("category"))
        if options.get("category") in self.failing:
            raise RuntimeError(f"upstream down for {options['category']}")
        return {"data": [options.get("category")]}


def _seed(store, provider, endpoint, category, ttl=60):
    dimensions = {"category": category}
    key = build_key(provider, endpoint, dimensions)
    store.upsert(key, provider, endpoint, dimensions, {"data": []}, ttl)
    return key


def _scheduler(store, registry, delays, **kwargs):
    refresher = CacheRefresher(store, registry)
    return RefreshScheduler(store, refresher, sleep=delays.append, **kwargs)


# =============================================================================
# Sweeps
# =============================================================================

def test_expired_sweep_isolates_failures(store, clock):
    """Five expired entries, the third fails: 4 success, 1 failed, all attempted"""
    fetcher = RecordingFetcher(failing={"c3"})
    registry = FetcherRegistry()
    registry.register("tmdb", "popular", fetcher)
    for index in range(1, 6):
        _seed(store, "tmdb", "popular", f"c{index}", ttl=index)
    clock.advance(seconds=3600)

    delays = []
    summary = _scheduler(store, registry, delays, refresh_delay=0.5).refresh_expired(10)

    assert summary.kind is SweepKind.EXPIRED
    assert summary.total == 5
    assert summary.success == 4
    assert summary.failed == 1
    assert fetcher.calls == ["c1", "c2", "c3", "c4", "c5"]
    assert delays == [0.5] * 4
    assert len(store.list_expired(10)) == 1


def test_expired_sweep_respects_batch_size(store, clock):
    registry = FetcherRegistry()
    registry.register("tmdb", "popular", RecordingFetcher())
    for index in range(4):
        _seed(store, "tmdb", "popular", f"c{index}")
    clock.advance(seconds=120)

    summary = _scheduler(store, registry, []).refresh_expired(2)

    assert summary.total == 2
    assert summary.success == 2
    assert len(store.list_expired(10)) == 2


def test_unexpected_refresher_error_does_not_stop_sweep(store, clock, monkeypatch):
    registry = FetcherRegistry()
    registry.register("tmdb", "popular", RecordingFetcher())
    for index in range(3):
        _seed(store, "tmdb", "popular", f"c{index}")
    clock.advance(seconds=120)

    refresher = CacheRefresher(store, registry)
    original = refresher.refresh_entry

    def flaky(entry):
        if entry.category == "c1":
            raise RuntimeError("bug")
        return original(entry)

    monkeypatch.setattr(refresher, "refresh_entry", flaky)
    scheduler = RefreshScheduler(store, refresher, sleep=lambda seconds: None)

    summary = scheduler.refresh_expired(10)
    assert summary.success == 2
    assert summary.failed == 1


def test_provider_sweep_only_touches_that_provider(store):
    tmdb = RecordingFetcher()
    rawg = RecordingFetcher()
    registry = FetcherRegistry()
    registry.register("tmdb", "trending", tmdb)
    registry.register("rawg", "popular", rawg)
    _seed(store, "tmdb", "trending", "movie", ttl=3600)
    _seed(store, "tmdb", "trending", "tv", ttl=60)
    _seed(store, "rawg", "popular", "games", ttl=60)

    summary = _scheduler(store, registry, []).refresh_provider("tmdb")

    assert summary.provider == "tmdb"
    assert summary.success == 2
    # soonest-expiring first; valid entries are refreshed too
    assert tmdb.calls == ["tv", "movie"]
    assert rawg.calls == []


def test_provider_sweep_limit(store):
    fetcher = RecordingFetcher()
    registry = FetcherRegistry()
    registry.register("tmdb", "trending", fetcher)
    for index in range(5):
        _seed(store, "tmdb", "trending", f"c{index}")

    summary = _scheduler(store, registry, [], provider_limit=3).refresh_provider("tmdb")
    assert summary.total == 3


def test_refresh_all_includes_valid_entries(store):
    fetcher = RecordingFetcher()
    registry = FetcherRegistry()
    registry.register("tmdb", "trending", fetcher)
    registry.register("jikan", "top", fetcher)
    _seed(store, "tmdb", "trending", "movie", ttl=86400)
    _seed(store, "jikan", "top", "anime", ttl=86400)

    summary = _scheduler(store, registry, []).refresh_all()

    assert summary.kind is SweepKind.ALL
    assert summary.total == 2
    assert summary.success == 2
    assert fetcher.calls == ["anime", "movie"]


def test_empty_sweep(store):
    summary = _scheduler(store, FetcherRegistry(), []).refresh_expired()
    assert summary.total == 0
    assert summary.success == 0
    assert summary.failed == 0


def test_purge_sweep(store, clock):
    _seed(store, "tmdb", "trending", "movie")
    clock.advance(days=100)
    _seed(store, "tmdb", "trending", "tv")

    scheduler = _scheduler(store, FetcherRegistry(), [], purge_days=90)
    summary = scheduler.purge()

    assert summary.purged == 1
    assert summary.to_dict()["purged"] == 1
    assert len(store.list_all()) == 1
    assert scheduler.purge(days_threshold=1).purged == 0


def test_run_scheduled_pauses_between_providers(store):
    fetcher = RecordingFetcher()
    registry = FetcherRegistry()
    registry.register("tmdb", "popular", fetcher)
    registry.register("rawg", "popular", fetcher)
    _seed(store, "tmdb", "popular", "movie")
    _seed(store, "rawg", "popular", "games")

    delays = []
    scheduler = _scheduler(store, registry, delays, provider_pause=2.0)
    sweep = ScheduledSweep("popular", "0 3 * * *", SweepKind.PROVIDER, ("tmdb", "rawg"))
    summaries = scheduler.run_scheduled(sweep)

    assert [summary.provider for summary in summaries] == ["tmdb", "rawg"]
    assert delays == [2.0]
    assert fetcher.calls == ["movie", "games"]


def test_run_sweep_dispatch(store):
    scheduler = _scheduler(store, FetcherRegistry(), [])

    assert scheduler.run_sweep(SweepKind.STATS).kind is SweepKind.STATS
    assert scheduler.run_sweep(SweepKind.PURGE, days_threshold=30).kind is SweepKind.PURGE
    with pytest.raises(ValueError):
        scheduler.run_sweep(SweepKind.PROVIDER)


def test_sweeps_on_unavailable_store_are_empty(disabled_store):
    scheduler = _scheduler(disabled_store, FetcherRegistry(), [])

    assert scheduler.refresh_expired().total == 0
    assert scheduler.refresh_all().total == 0
    assert scheduler.purge().purged == 0


# =============================================================================
# Lifecycle
# =============================================================================

def test_start_is_noop_when_store_disabled(disabled_store):
    scheduler = _scheduler(disabled_store, FetcherRegistry(), [])

    assert scheduler.start() is False
    assert not scheduler.running
    assert scheduler.jobs() == []


def test_start_registers_default_schedule(store):
    scheduler = _scheduler(store, FetcherRegistry(), [])
    try:
        assert scheduler.start()
        assert scheduler.running
        assert scheduler.start()

        jobs = {job["id"]: job for job in scheduler.jobs()}
        assert set(jobs) == {sweep.job_id for sweep in DEFAULT_SCHEDULE}
        assert all(job["next_run_time"] for job in jobs.values())
    finally:
        scheduler.stop()

    assert not scheduler.running
    assert scheduler.jobs() == []


def test_default_schedule_is_staggered():
    provider_crons = [s.cron for s in DEFAULT_SCHEDULE if s.kind is SweepKind.PROVIDER]
    assert len(provider_crons) == len(set(provider_crons))
    assert any(s.kind is SweepKind.EXPIRED for s in DEFAULT_SCHEDULE)
    assert any(s.kind is SweepKind.PURGE for s in DEFAULT_SCHEDULE)
