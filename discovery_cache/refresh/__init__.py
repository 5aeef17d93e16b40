"""
Proactive cache refresh: fetcher registry, refresher and scheduler.
"""
from .registry import FetchFunction, FetcherRegistry, FetcherSpec
from .refresher import CacheRefresher
from .scheduler import (
    DEFAULT_SCHEDULE,
    RefreshScheduler,
    ScheduledSweep,
    SweepKind,
    SweepSummary,
)

__all__ = [
    "FetchFunction",
    "FetcherRegistry",
    "FetcherSpec",
    "CacheRefresher",
    "DEFAULT_SCHEDULE",
    "RefreshScheduler",
    "ScheduledSweep",
    "SweepKind",
    "SweepSummary",
]
