"""
Cache refresh scheduler using APScheduler.

Staggered cron sweeps keep popular keys warm before they expire, plus a
daily purge of long-unused rows. Within one sweep, refreshes run one at a
time with a fixed delay between calls so an upstream never sees a burst.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from discovery_cache.cache.core import CacheEntryInfo
from discovery_cache.cache.store import CacheStore
from .refresher import CacheRefresher

logger = logging.getLogger("cache.scheduler")


class SweepKind(Enum):
    """What one sweep does."""
    PROVIDER = "provider"     # refresh the entries of one provider
    EXPIRED = "expired"       # refresh the N most-urgent expired entries
    ALL = "all"               # refresh every entry, expired or not
    PURGE = "purge"           # delete long-unused entries
    STATS = "stats"           # log the cache roll-up


@dataclass(frozen=True)
class ScheduledSweep:
    """A cron-triggered sweep."""
    job_id: str
    cron: str                               # 5-field crontab expression
    kind: SweepKind
    providers: Tuple[str, ...] = ()         # PROVIDER sweeps, run in order
    batch_size: Optional[int] = None        # EXPIRED sweeps
    description: str = ""


@dataclass
class SweepSummary:
    """Outcome of one sweep."""
    kind: SweepKind
    provider: Optional[str] = None
    total: int = 0
    success: int = 0
    failed: int = 0
    purged: int = 0
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
        }
        if self.provider is not None:
            result["provider"] = self.provider
        if self.kind is SweepKind.PURGE:
            result["purged"] = self.purged
        if self.error:
            result["error"] = self.error
        return result


# Daily sweeps are staggered so providers are never refreshed at the same time
DEFAULT_SCHEDULE: Tuple[ScheduledSweep, ...] = (
    ScheduledSweep("tmdb-trending", "0 2 * * *", SweepKind.PROVIDER, ("tmdb",),
                   description="TMDB trending"),
    ScheduledSweep("jikan-trending", "30 2 * * *", SweepKind.PROVIDER, ("jikan",),
                   description="Jikan trending"),
    ScheduledSweep("tmdb-rawg-popular", "0 3 * * *", SweepKind.PROVIDER, ("tmdb", "rawg"),
                   description="TMDB/RAWG popular"),
    ScheduledSweep("igdb-popular", "30 3 * * *", SweepKind.PROVIDER, ("igdb",),
                   description="IGDB popular"),
    ScheduledSweep("deezer-charts", "0 4 * * *", SweepKind.PROVIDER, ("deezer",),
                   description="Deezer charts"),
    ScheduledSweep("itunes-charts", "30 4 * * *", SweepKind.PROVIDER, ("itunes",),
                   description="iTunes charts"),
    ScheduledSweep("expired-refresh", "0 */6 * * *", SweepKind.EXPIRED,
                   description="Expired entries refresh"),
    ScheduledSweep("purge-stale", "0 5 * * *", SweepKind.PURGE,
                   description="Purge long-unused entries"),
    ScheduledSweep("stats-monitor", "0 * * * *", SweepKind.STATS,
                   description="Cache stats"),
)


class RefreshScheduler:
    """
    Owns the cron jobs and the sweep logic behind them.

    The manual triggers (refresh_provider, refresh_expired, refresh_all,
    purge) run the same code as the scheduled jobs, synchronously.
    """

    def __init__(
        self,
        store: CacheStore,
        refresher: CacheRefresher,
        schedule: Sequence[ScheduledSweep] = DEFAULT_SCHEDULE,
        refresh_delay: float = 0.5,
        provider_pause: float = 2.0,
        provider_limit: int = 20,
        expired_batch_size: int = 20,
        purge_days: int = 90,
        timezone: str = "UTC",
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            store: Cache store to sweep
            refresher: Refreshes individual entries
            schedule: Cron sweeps registered on start()
            refresh_delay: Seconds between two refreshes of one sweep
            provider_pause: Seconds between providers of a multi-provider sweep
            provider_limit: Max entries per provider sweep
            expired_batch_size: Default batch size of expired sweeps
            purge_days: Default staleness threshold of purge sweeps
            timezone: Timezone of the cron expressions
            sleep: Sleep function (injectable for tests)
        """
        self._store = store
        self._refresher = refresher
        self._schedule = tuple(schedule)
        self._refresh_delay = refresh_delay
        self._provider_pause = provider_pause
        self._provider_limit = provider_limit
        self._expired_batch_size = expired_batch_size
        self._purge_days = purge_days
        self._timezone = timezone
        self._sleep = sleep
        self._scheduler: Optional[BackgroundScheduler] = None

    @classmethod
    def from_settings(
        cls,
        store: CacheStore,
        refresher: CacheRefresher,
        settings,
        **kwargs,
    ) -> "RefreshScheduler":
        options = dict(
            refresh_delay=settings.refresh_delay_seconds,
            provider_pause=settings.refresh_provider_pause_seconds,
            provider_limit=settings.refresh_provider_limit,
            expired_batch_size=settings.refresh_expired_batch_size,
            purge_days=settings.purge_days_threshold,
            timezone=settings.scheduler_timezone,
        )
        options.update(kwargs)
        return cls(store, refresher, **options)

    # ===== LIFECYCLE =====

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> bool:
        """
        Register the cron sweeps and start the background scheduler.

        Returns:
            True if the scheduler is running; False when the cache is disabled
        """
        if not self._store.enabled:
            logger.info("Cache scheduler not started (cache store disabled)")
            return False

        if self.running:
            return True

        scheduler = BackgroundScheduler(timezone=self._timezone)
        for sweep in self._schedule:
            scheduler.add_job(
                self.run_scheduled,
                trigger=CronTrigger.from_crontab(sweep.cron, timezone=self._timezone),
                id=sweep.job_id,
                name=sweep.description or sweep.job_id,
                args=[sweep],
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(f"Cache scheduler started: {len(self._schedule)} jobs")
        for sweep in self._schedule:
            logger.info(f"   - {sweep.cron:<12} -> {sweep.description or sweep.job_id}")
        return True

    def stop(self) -> None:
        """Remove all jobs and stop the scheduler. In-flight sweeps finish on their own."""
        if self._scheduler is None:
            return
        logger.info("Stopping cache scheduler...")
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Cache scheduler stopped")

    def jobs(self) -> List[Dict[str, Any]]:
        """Registered jobs with their next run time."""
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    # ===== SWEEPS =====

    def run_scheduled(self, sweep: ScheduledSweep) -> List[SweepSummary]:
        """Job body for one cron sweep."""
        logger.info(f"[CRON {sweep.cron}] {sweep.description or sweep.job_id}...")

        if sweep.kind is SweepKind.PROVIDER:
            summaries = []
            for index, provider in enumerate(sweep.providers):
                if index:
                    self._sleep(self._provider_pause)
                summaries.append(self.run_sweep(SweepKind.PROVIDER, provider=provider))
            return summaries

        return [self.run_sweep(sweep.kind, batch_size=sweep.batch_size)]

    def run_sweep(
        self,
        kind: SweepKind,
        provider: Optional[str] = None,
        batch_size: Optional[int] = None,
        days_threshold: Optional[int] = None,
    ) -> SweepSummary:
        """Run one sweep of the given kind now."""
        if kind is SweepKind.PROVIDER:
            if not provider:
                raise ValueError("A provider sweep needs a provider")
            return self.refresh_provider(provider)
        if kind is SweepKind.EXPIRED:
            return self.refresh_expired(batch_size)
        if kind is SweepKind.ALL:
            return self.refresh_all()
        if kind is SweepKind.PURGE:
            return self.purge(days_threshold)
        if kind is SweepKind.STATS:
            return self.log_stats()
        raise ValueError(f"Unknown sweep kind: {kind}")

    def refresh_provider(self, provider: str, limit: Optional[int] = None) -> SweepSummary:
        """Refresh the soonest-expiring entries of one provider."""
        entries = self._store.list_by_provider(provider, limit or self._provider_limit)
        return self._refresh_entries(SweepKind.PROVIDER, entries, provider=provider)

    def refresh_expired(self, batch_size: Optional[int] = None) -> SweepSummary:
        """Refresh the next batch of expired entries, most-requested first."""
        entries = self._store.list_expired(batch_size or self._expired_batch_size)
        return self._refresh_entries(SweepKind.EXPIRED, entries)

    def refresh_all(self) -> SweepSummary:
        """Refresh every entry, including ones that are still valid."""
        logger.info("Forced refresh of ALL entries (including valid ones)")
        entries = self._store.list_all()
        return self._refresh_entries(SweepKind.ALL, entries)

    def purge(self, days_threshold: Optional[int] = None) -> SweepSummary:
        """Delete entries unused for more than days_threshold days."""
        days = days_threshold if days_threshold is not None else self._purge_days
        started = time.monotonic()
        removed = self._store.purge_stale(days)
        summary = SweepSummary(
            kind=SweepKind.PURGE,
            purged=removed,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(f"Purge complete: {removed} entries removed (> {days}d)")
        return summary

    def log_stats(self) -> SweepSummary:
        """Log the global cache roll-up."""
        stats = self._store.stats()
        if stats and stats["global"]["total_entries"] > 0:
            overall = stats["global"]
            logger.info(
                f"Cache stats: {overall['total_entries']} entries "
                f"({overall['valid_entries']} valid, {overall['expired_entries']} expired), "
                f"{len(stats['by_provider'])} provider endpoints"
            )
        return SweepSummary(kind=SweepKind.STATS)

    def _refresh_entries(
        self,
        kind: SweepKind,
        entries: List[CacheEntryInfo],
        provider: Optional[str] = None,
    ) -> SweepSummary:
        """Refresh entries one at a time; a failure never stops the sweep."""
        summary = SweepSummary(kind=kind, provider=provider, total=len(entries))
        label = f"{kind.value}" + (f" ({provider})" if provider else "")

        if not entries:
            logger.debug(f"No cache entries to refresh for {label} sweep")
            return summary

        logger.info(f"Refreshing {len(entries)} cache entries [{label}]...")
        started = time.monotonic()

        for index, entry in enumerate(entries):
            if index:
                self._sleep(self._refresh_delay)
            try:
                ok = self._refresher.refresh_entry(entry)
            except Exception as e:
                logger.error(f"Unexpected error refreshing {entry.cache_key}: {e}")
                ok = False

            if ok:
                summary.success += 1
            else:
                summary.failed += 1

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Refresh complete [{label}]: {summary.success} success, "
            f"{summary.failed} failed ({summary.duration_ms}ms)"
        )
        return summary
