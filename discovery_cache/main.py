"""
Discovery Cache - FastAPI application
Administrative surface and lifecycle of the cache refresh subsystem
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from discovery_cache import admin
from discovery_cache.services import CacheServices, build_services
from config.settings import settings

# Version tracking
APP_VERSION = "v1.0.0"
APP_NAME = "Discovery Cache"

logging.basicConfig(level=settings.log_level.upper())
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logger = logging.getLogger("main")


def create_app(services: Optional[CacheServices] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Prebuilt components; built from settings at startup if omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "cache", None) is None:
            app.state.cache = build_services(settings)
        app.state.cache.start()
        try:
            yield
        finally:
            app.state.cache.shutdown()

    app = FastAPI(
        title=APP_NAME,
        description="Persistent discovery cache with scheduled refresh",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.cache = services
    app.include_router(admin.router)

    @app.get("/health")
    def health():
        """Health check."""
        cache = getattr(app.state, "cache", None)
        return {
            "status": "ok",
            "version": APP_VERSION,
            "cache_enabled": bool(cache and cache.store.enabled),
            "cache_available": bool(cache and cache.store.is_available),
            "scheduler_running": bool(cache and cache.scheduler.running),
        }

    return app


app = create_app()
