"""FastAPI application entry point for the NSAP analytics API."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from errors import register_error_handlers
from services.analytics import AnalyticsService
from services.cache import AnalyticsCache, CacheSweeper
from services.cache import cache as shared_cache
from services.data_source import DataSource, SupabaseDataSource

# Structured logging: JSON for production, human-readable for local
if settings.is_production:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}',
        stream=sys.stdout,
    )
else:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = settings.validate()
    if missing:
        logger.warning("Missing env vars (report queries will fail): %s", ", ".join(missing))
    app.state.sweeper.start()
    try:
        yield
    finally:
        await app.state.sweeper.stop()


def create_app(
    cache: AnalyticsCache | None = None,
    data_source: DataSource | None = None,
) -> FastAPI:
    app = FastAPI(title="NSAP Analytics API", version="1.0.0", lifespan=lifespan)

    if cache is None:
        cache = shared_cache
    if data_source is None:
        data_source = SupabaseDataSource(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.data_source_timeout,
        )

    app.state.cache = cache
    app.state.sweeper = CacheSweeper(cache, interval_ms=settings.cache_sweep_interval_ms)
    app.state.analytics = AnalyticsService(cache, data_source)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Centralized error handlers
    register_error_handlers(app)

    from routes.health import router as health_router
    from routes.analytics import router as analytics_router
    from routes.cache import router as cache_router

    app.include_router(health_router)
    app.include_router(analytics_router)
    app.include_router(cache_router)

    return app


app = create_app()
