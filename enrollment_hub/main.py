from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from enrollment_hub.api.enrollments import router as enrollments_router
from enrollment_hub.api.health import router as health_router
from enrollment_hub.api.metrics_endpoint import router as metrics_router
from enrollment_hub.core.config import SETTINGS, Settings
from enrollment_hub.core.logging import setup_logging
from enrollment_hub.db.engine import async_session_factory, lifespan_db
from enrollment_hub.middleware.metrics import MetricsMiddleware
from enrollment_hub.repos.enrollment_source_repo import (
    EnrollmentSourceRepo,
    InMemoryEnrollmentSourceRepo,
)
from enrollment_hub.repos.pg_enrollment_source_repo import PgEnrollmentSourceRepo
from enrollment_hub.services.unification import UnificationEngine
from enrollment_hub.services.unified_cache import UnifiedEnrollmentCache

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


def build_enrollment_source() -> EnrollmentSourceRepo:
    if async_session_factory is not None:
        return PgEnrollmentSourceRepo(async_session_factory)
    return InMemoryEnrollmentSourceRepo()


def build_enrollment_cache(
    source: EnrollmentSourceRepo, settings: Settings = SETTINGS
) -> UnifiedEnrollmentCache:
    engine = UnificationEngine(source, inactivity_days=settings.inactivity_days)
    return UnifiedEnrollmentCache(
        engine,
        ttl_seconds=settings.unified_cache_ttl_seconds,
        refresh_threshold_seconds=settings.unified_cache_refresh_threshold_seconds,
        await_timeout_seconds=settings.unified_cache_await_timeout_seconds,
    )


def create_app(
    *,
    source: EnrollmentSourceRepo | None = None,
    settings: Settings = SETTINGS,
) -> FastAPI:
    """Composition root: one source, one engine, one cache per app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        async with lifespan_db():
            enrollment_source = source if source is not None else build_enrollment_source()
            cache = build_enrollment_cache(enrollment_source, settings)
            app.state.enrollment_source = enrollment_source
            app.state.enrollment_cache = cache
            if settings.warm_up_on_startup:
                await cache.start()
            try:
                yield
            finally:
                await cache.shutdown()

    app = FastAPI(
        title="enrollment-hub",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
    )
    app.add_middleware(MetricsMiddleware)

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(enrollments_router)
    return app


app = create_app()

logger.info(
    "enrollment-hub configured  env=%s log_level=%s port=%d cache_ttl=%.0fs",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.unified_cache_ttl_seconds,
)
