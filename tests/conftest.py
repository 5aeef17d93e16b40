"""
Shared fixtures: a file-backed SQLite cache store with a controllable clock.
"""
from datetime import datetime, timedelta

import pytest

from discovery_cache.cache.store import CacheStore
from discovery_cache.db import create_db_engine


class FakeClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, days: float = 0) -> None:
        self.current += timedelta(seconds=seconds, days=days)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """Cache store on a temporary SQLite file; access updates run inline."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    cache_store = CacheStore(engine, clock=clock, detach_access_updates=False)
    yield cache_store
    cache_store.close()


@pytest.fixture
def unreachable_store(tmp_path):
    """Store whose database file lives in a directory that does not exist."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'cache.db'}")
    cache_store = CacheStore(engine, detach_access_updates=False)
    yield cache_store
    cache_store.close()


@pytest.fixture
def disabled_store():
    return CacheStore(engine=None, enabled=False)


@pytest.fixture
def trending_payload():
    """Twelve-item payload shaped like a discovery list."""
    return {"data": [{"id": i, "title": f"Movie {i}"} for i in range(12)]}
