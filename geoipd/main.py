import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from .api.health import router as health_router
from .api.lookup import router as lookup_router
from .api.prometheus import router as prometheus_router
from .config import API_VERSION, Settings, load_settings
from .manager import DatabaseManager
from .middleware import TracingMiddleware
from .pipeline import DatabaseFiles, UpdatePipeline
from .scheduler import RefreshScheduler
from .transport import HTTPFetcher

logger = logging.getLogger("geoipd")


def build_manager(settings: Settings) -> DatabaseManager:
    """Wire the production pipeline (requests + maxminddb) into a manager"""
    pipeline = UpdatePipeline(
        files=DatabaseFiles(settings.data_dir, settings.edition),
        download_url=settings.download_url,
        fetch=HTTPFetcher(timeout=settings.http_timeout),
    )
    return DatabaseManager(pipeline, cache_size=settings.cache_size, license_key=settings.license_key)


def create_app(settings: Optional[Settings] = None, manager: Optional[DatabaseManager] = None) -> FastAPI:
    settings = settings or load_settings()
    manager = manager or build_manager(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info("geoipd starting up", extra={"component": "api", "event": "starting",
                                                 "edition": settings.edition,
                                                 "data_dir": str(settings.data_dir)})

        # Must not serve without a database: a failed startup refresh aborts startup
        try:
            await run_in_threadpool(manager.refresh)
        except Exception:
            logger.critical("failed to set up geoip database", exc_info=True,
                            extra={"component": "api", "event": "startup_failed"})
            raise

        scheduler = None
        if settings.scheduler_enabled:
            scheduler = RefreshScheduler(manager, settings.refresh_interval)
            scheduler.start()
        application.state.scheduler = scheduler

        logger.info("geoipd ready", extra={"component": "api", "event": "ready"})
        try:
            yield
        finally:
            logger.info("geoipd shutting down", extra={"component": "api", "event": "stopping"})
            if scheduler is not None:
                await run_in_threadpool(scheduler.stop, settings.shutdown_timeout)
            manager.close()

    app = FastAPI(title="geoipd", version=API_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.manager = manager
    app.state.scheduler = None

    app.add_middleware(TracingMiddleware)

    app.include_router(lookup_router)
    app.include_router(health_router)
    app.include_router(prometheus_router)
    return app
