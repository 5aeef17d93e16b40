"""
Administrative endpoints for the discovery cache.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Path, Query, Request

from discovery_cache.db import get_pool_stats
from discovery_cache.services import CacheServices

logger = logging.getLogger("admin")

router = APIRouter(prefix="/cache", tags=["cache"])


def _services(request: Request) -> CacheServices:
    services = getattr(request.app.state, "cache", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Cache services not initialized")
    return services


def _require_store(services: CacheServices) -> None:
    if not services.store.enabled:
        raise HTTPException(status_code=503, detail="Cache store is disabled")


@router.get("/stats")
def cache_stats(request: Request) -> Dict[str, Any]:
    """Cache roll-up, connection pool, refresher and upstream client stats."""
    services = _services(request)
    return {
        "enabled": services.store.enabled,
        "available": services.store.is_available,
        "cache": services.store.stats(),
        "pool": get_pool_stats(services.store.engine),
        "refresher": services.refresher.stats(),
        "clients": {name: client.stats() for name, client in services.clients.items()},
    }


@router.get("/scheduler")
def scheduler_jobs(request: Request) -> Dict[str, Any]:
    """Scheduled sweeps and their next run time."""
    services = _services(request)
    return {
        "running": services.scheduler.running,
        "jobs": services.scheduler.jobs(),
    }


@router.post("/refresh/{provider}")
def refresh_provider(request: Request, provider: str = Path(..., min_length=1)) -> Dict[str, Any]:
    """Refresh one provider's entries now."""
    services = _services(request)
    _require_store(services)
    logger.info(f"Manual refresh: {provider}")
    summary = services.scheduler.refresh_provider(provider)
    return {"success": True, "summary": summary.to_dict()}


@router.post("/refresh")
def refresh_expired(
    request: Request,
    batch_size: int = Query(default=10, ge=1, le=500, description="Expired entries to refresh"),
) -> Dict[str, Any]:
    """Refresh the next batch of expired entries now."""
    services = _services(request)
    _require_store(services)
    logger.info(f"Manual refresh: {batch_size} expired entries")
    summary = services.scheduler.refresh_expired(batch_size)
    return {"success": True, "summary": summary.to_dict()}


@router.post("/refresh-all")
def refresh_all(request: Request) -> Dict[str, Any]:
    """Refresh every entry, expired or not."""
    services = _services(request)
    _require_store(services)
    summary = services.scheduler.refresh_all()
    return {"success": True, "summary": summary.to_dict()}


@router.delete("/clear")
def clear_cache(request: Request) -> Dict[str, Any]:
    """Delete every cache entry."""
    services = _services(request)
    _require_store(services)
    deleted = services.store.clear_all()
    return {"success": True, "deleted": deleted}


@router.delete("/entries/{cache_key:path}")
def delete_entry(request: Request, cache_key: str) -> Dict[str, Any]:
    """Delete one cache entry."""
    services = _services(request)
    _require_store(services)
    if not services.store.delete(cache_key):
        raise HTTPException(status_code=404, detail=f"No cache entry '{cache_key}'")
    return {"success": True, "cache_key": cache_key}
