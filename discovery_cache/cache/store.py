"""
Persistent cache store backed by a single SQL table.

Every operation degrades instead of raising when the database is disabled or
unreachable: reads return None, writes return False, listings return [].
The request path keeps working, just uncached.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from discovery_cache.db import create_db_engine, init_db, make_session_factory
from discovery_cache.errors import StoreUnavailable
from discovery_cache.models import DiscoveryCacheEntry
from .core import CacheEntryInfo, CacheEnvelope, count_results

logger = logging.getLogger("cache.store")

# Dialects with an atomic INSERT .. ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _is_connection_error(error: Exception) -> bool:
    """Errors meaning the database itself is gone, not that one statement failed."""
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the cache table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CacheStore:
    """
    Durable key/value cache with expiration and usage counters.

    - get: non-expired payload only, bumps fetch_count/last_accessed_at best-effort
    - upsert: single atomic insert-or-update, bumps refresh_count/updated_at
    - list_expired / list_all / list_by_provider: inputs for refresh sweeps
    - purge_stale: drops rows not read for N days
    """

    def __init__(
        self,
        engine: Optional[Engine],
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
        detach_access_updates: bool = True,
        reconnect_interval: float = 30.0,
    ):
        """
        Args:
            engine: SQLAlchemy engine (None disables the store)
            enabled: Master switch from configuration
            clock: Returns the current naive UTC time (injectable for tests)
            detach_access_updates: Run read-side counter updates in the background
            reconnect_interval: Seconds between attempts to reach an unavailable database
        """
        self._engine = engine
        self.enabled = enabled and engine is not None
        self._clock = clock
        self._reconnect_interval = reconnect_interval
        self._available = False
        self._last_init_attempt = 0.0
        self._session_factory = None
        self._insert = None

        self._touch_pool: Optional[ThreadPoolExecutor] = None

        if not self.enabled:
            logger.info("Cache store disabled")
            return

        if detach_access_updates:
            self._touch_pool = ThreadPoolExecutor(
                max_workers=2,
                thread_name_prefix="cache-touch",
            )

        dialect = engine.dialect.name
        if dialect not in _UPSERT_INSERTS:
            raise ValueError(f"Unsupported cache database dialect: {dialect}")

        self._insert = _UPSERT_INSERTS[dialect]
        self._session_factory = make_session_factory(engine)
        self._connect()

    @classmethod
    def from_settings(cls, settings) -> "CacheStore":
        """Build the store (and its engine) from application settings."""
        if not settings.cache_enabled:
            return cls(engine=None, enabled=False)

        engine = create_db_engine(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            connect_timeout=settings.database_connect_timeout_seconds,
        )
        return cls(engine=engine)

    # ===== CONNECTION =====

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    @property
    def is_available(self) -> bool:
        return self.enabled and self._available

    def now(self) -> datetime:
        return self._clock()

    def _connect(self) -> None:
        self._last_init_attempt = time.monotonic()
        self._available = init_db(self._engine)

    @contextmanager
    def _session(self):
        """Transactional session; raises StoreUnavailable when the store can't be used."""
        if not self.enabled:
            raise StoreUnavailable("Cache store is disabled")

        if not self._available:
            if time.monotonic() - self._last_init_attempt >= self._reconnect_interval:
                self._connect()
            if not self._available:
                raise StoreUnavailable("Cache database is unreachable")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _degraded(self, operation: str, error: Exception) -> None:
        if isinstance(error, StoreUnavailable):
            logger.debug(f"Cache {operation} skipped: {error}")
            return

        logger.warning(f"Cache {operation} failed, continuing uncached: {error}")
        if _is_connection_error(error):
            # same backoff as a failed startup
            self._available = False
            self._last_init_attempt = time.monotonic()
            logger.warning(
                f"Cache database connection lost, retrying in {self._reconnect_interval:.0f}s"
            )

    # ===== READS =====

    def get(self, cache_key: str) -> Optional[Any]:
        """
        Return the payload for a key if it has not expired.

        Never-cached and expired keys both return None.
        """
        row = self._read(cache_key)
        return row.payload if row is not None else None

    def get_envelope(self, cache_key: str) -> Optional[CacheEnvelope]:
        """Like get(), wrapped in a typed envelope."""
        row = self._read(cache_key)
        if row is None:
            return None

        dimensions = {}
        if row.category is not None:
            dimensions["category"] = row.category
        if row.period is not None:
            dimensions["period"] = row.period

        return CacheEnvelope.wrap(
            cache_key=cache_key,
            provider=row.provider,
            endpoint=row.endpoint,
            dimensions=dimensions,
            payload=row.payload,
        )

    def _read(self, cache_key: str):
        now = self.now()
        entry = DiscoveryCacheEntry
        try:
            with self._session() as session:
                row = session.execute(
                    select(
                        entry.provider,
                        entry.endpoint,
                        entry.category,
                        entry.period,
                        entry.payload,
                        entry.result_count,
                        entry.updated_at,
                        entry.expires_at,
                    ).where(
                        entry.cache_key == cache_key,
                        entry.expires_at > now,
                    )
                ).first()
        except (StoreUnavailable, SQLAlchemyError, ValueError) as e:
            # ValueError: stored payload no longer decodes
            self._degraded("get", e)
            return None

        if row is None:
            logger.debug(f"Cache MISS: {cache_key}")
            return None

        self._record_access(cache_key, now)

        age_min = round((now - row.updated_at).total_seconds() / 60)
        ttl_min = round((row.expires_at - now).total_seconds() / 60)
        logger.debug(
            f"Cache HIT: {cache_key} [age={age_min}min, ttl={ttl_min}min, results={row.result_count}]"
        )
        return row

    def get_entry(self, cache_key: str) -> Optional[CacheEntryInfo]:
        """Row metadata regardless of expiration. Does not count as an access."""
        try:
            with self._session() as session:
                row = session.get(DiscoveryCacheEntry, cache_key)
                return CacheEntryInfo.from_row(row) if row is not None else None
        except (StoreUnavailable, SQLAlchemyError, ValueError) as e:
            self._degraded("get_entry", e)
            return None

    def _record_access(self, cache_key: str, accessed_at: datetime) -> None:
        """Bump fetch_count/last_accessed_at. Failures never reach the reader."""
        if self._touch_pool is None:
            self._touch(cache_key, accessed_at)
            return

        try:
            self._touch_pool.submit(self._touch, cache_key, accessed_at)
        except RuntimeError as e:
            # Pool already shut down
            logger.debug(f"Access update dropped for {cache_key}: {e}")

    def _touch(self, cache_key: str, accessed_at: datetime) -> None:
        entry = DiscoveryCacheEntry
        try:
            with self._session() as session:
                session.execute(
                    update(entry)
                    .where(entry.cache_key == cache_key)
                    .values(
                        fetch_count=entry.fetch_count + 1,
                        last_accessed_at=accessed_at,
                    )
                )
        except Exception as e:
            logger.debug(f"Access update failed for {cache_key}: {e}")

    # ===== WRITES =====

    def upsert(
        self,
        cache_key: str,
        provider: str,
        endpoint: str,
        dimensions: Optional[Dict[str, Any]],
        payload: Any,
        ttl_seconds: int,
    ) -> bool:
        """
        Insert a key, or overwrite it in the same statement on conflict.

        The overwrite path replaces payload/result_count/expires_at, sets
        updated_at and increments refresh_count. Concurrent writers for one
        key serialize on the primary key constraint.

        Returns:
            True if the row was written
        """
        now = self.now()
        dimensions = dimensions or {}
        result_count = count_results(payload)
        entry = DiscoveryCacheEntry

        try:
            with self._session() as session:
                stmt = self._insert(entry).values(
                    cache_key=cache_key,
                    provider=provider,
                    endpoint=endpoint,
                    category=dimensions.get("category"),
                    period=dimensions.get("period"),
                    payload=payload,
                    result_count=result_count,
                    fetch_count=0,
                    refresh_count=0,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                    last_accessed_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[entry.cache_key],
                    set_={
                        "payload": stmt.excluded.payload,
                        "result_count": stmt.excluded.result_count,
                        "updated_at": stmt.excluded.updated_at,
                        "expires_at": stmt.excluded.expires_at,
                        "refresh_count": entry.refresh_count + 1,
                    },
                )
                session.execute(stmt)
        except (StoreUnavailable, SQLAlchemyError) as e:
            self._degraded("upsert", e)
            return False

        logger.debug(
            f"Cache SAVE: {cache_key} [results={result_count}, ttl={ttl_seconds / 3600:.1f}h]"
        )
        return True

    def delete(self, cache_key: str) -> bool:
        """Remove one key. Returns True if a row was removed."""
        try:
            with self._session() as session:
                result = session.execute(
                    delete(DiscoveryCacheEntry).where(DiscoveryCacheEntry.cache_key == cache_key)
                )
                removed = result.rowcount or 0
        except (StoreUnavailable, SQLAlchemyError) as e:
            self._degraded("delete", e)
            return False

        logger.debug(f"Cache DELETE: {cache_key}")
        return removed > 0

    def clear_all(self) -> int:
        """Remove every row. Returns the number of rows removed."""
        try:
            with self._session() as session:
                result = session.execute(delete(DiscoveryCacheEntry))
                removed = result.rowcount or 0
        except (StoreUnavailable, SQLAlchemyError) as e:
            self._degraded("clear_all", e)
            return 0

        logger.info(f"Cache cleared: {removed} entries removed")
        return removed

    def purge_stale(self, days_threshold: int = 90) -> int:
        """
        Delete rows not read for more than `days_threshold` days,
        whatever their expiration state.

        Returns:
            Number of rows removed
        """
        cutoff = self.now() - timedelta(days=days_threshold)
        try:
            with self._session() as session:
                result = session.execute(
                    delete(DiscoveryCacheEntry).where(
                        DiscoveryCacheEntry.last_accessed_at < cutoff
                    )
                )
                removed = result.rowcount or 0
        except (StoreUnavailable, SQLAlchemyError) as e:
            self._degraded("purge_stale", e)
            return 0

        if removed:
            logger.info(f"Purge: {removed} entries removed (unused > {days_threshold}d)")
        return removed

    # ===== LISTINGS =====

    def list_expired(self, limit: int = 10) -> List[CacheEntryInfo]:
        """Expired entries, most-requested first, then soonest-expired."""
        entry = DiscoveryCacheEntry
        return self._list(
            "list_expired",
            select(entry)
            .where(entry.expires_at <= self.now())
            .order_by(entry.fetch_count.desc(), entry.expires_at.asc())
            .limit(limit),
        )

    def list_all(self) -> List[CacheEntryInfo]:
        """Every entry, in stable provider/endpoint/category order."""
        entry = DiscoveryCacheEntry
        return self._list(
            "list_all",
            select(entry).order_by(
                entry.provider, entry.endpoint, entry.category, entry.cache_key
            ),
        )

    def list_by_provider(self, provider: str, limit: int = 20) -> List[CacheEntryInfo]:
        """Entries of one provider, soonest-expiring first."""
        entry = DiscoveryCacheEntry
        return self._list(
            "list_by_provider",
            select(entry)
            .where(entry.provider == provider)
            .order_by(entry.expires_at.asc())
            .limit(limit),
        )

    def _list(self, operation: str, statement) -> List[CacheEntryInfo]:
        try:
            with self._session() as session:
                rows = session.execute(statement).scalars().all()
                return [CacheEntryInfo.from_row(row) for row in rows]
        except (StoreUnavailable, SQLAlchemyError, ValueError) as e:
            self._degraded(operation, e)
            return []

    # ===== STATS =====

    def stats(self) -> Optional[Dict[str, Any]]:
        """
        Aggregates per provider/endpoint plus a global roll-up.

        Returns:
            {"global": {...}, "by_provider": [...]} or None if unavailable
        """
        now = self.now()
        entry = DiscoveryCacheEntry
        valid = func.coalesce(func.sum(case((entry.expires_at > now, 1), else_=0)), 0)
        expired = func.coalesce(func.sum(case((entry.expires_at <= now, 1), else_=0)), 0)
        total_items = func.coalesce(func.sum(entry.result_count), 0)
        total_fetches = func.coalesce(func.sum(entry.fetch_count), 0)

        try:
            with self._session() as session:
                per_endpoint = session.execute(
                    select(
                        entry.provider,
                        entry.endpoint,
                        func.count().label("total_entries"),
                        total_items.label("total_items"),
                        total_fetches.label("total_fetches"),
                        func.avg(entry.refresh_count).label("avg_refreshes"),
                        func.min(entry.updated_at).label("oldest_update"),
                        func.max(entry.updated_at).label("latest_update"),
                        valid.label("valid_entries"),
                        expired.label("expired_entries"),
                    )
                    .group_by(entry.provider, entry.endpoint)
                    .order_by(entry.provider, entry.endpoint)
                ).all()

                accessed_today = func.coalesce(
                    func.sum(case((entry.last_accessed_at > now - timedelta(hours=24), 1), else_=0)),
                    0,
                )
                overall = session.execute(
                    select(
                        func.count().label("total_entries"),
                        total_items.label("total_items"),
                        total_fetches.label("total_fetches"),
                        valid.label("valid_entries"),
                        expired.label("expired_entries"),
                        accessed_today.label("accessed_today"),
                    )
                ).one()
        except (StoreUnavailable, SQLAlchemyError) as e:
            self._degraded("stats", e)
            return None

        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() + "Z" if value else None

        return {
            "global": {
                "total_entries": int(overall.total_entries),
                "total_items": int(overall.total_items),
                "total_fetches": int(overall.total_fetches),
                "valid_entries": int(overall.valid_entries),
                "expired_entries": int(overall.expired_entries),
                "accessed_today": int(overall.accessed_today),
            },
            "by_provider": [
                {
                    "provider": row.provider,
                    "endpoint": row.endpoint,
                    "total_entries": int(row.total_entries),
                    "total_items": int(row.total_items),
                    "total_fetches": int(row.total_fetches),
                    "avg_refreshes": int(round(float(row.avg_refreshes or 0))),
                    "oldest_update": iso(row.oldest_update),
                    "latest_update": iso(row.latest_update),
                    "valid_entries": int(row.valid_entries),
                    "expired_entries": int(row.expired_entries),
                }
                for row in per_endpoint
            ],
        }

    # ===== LIFECYCLE =====

    def close(self) -> None:
        """Stop background access updates and release connections."""
        if self._touch_pool is not None:
            self._touch_pool.shutdown(wait=True)
            self._touch_pool = None
        if self._engine is not None:
            self._engine.dispose()
