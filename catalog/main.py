"""FastAPI application factory and main entry point."""

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from catalog.cache import TTLCache
from catalog.config import get_settings
from catalog.services.stats import CityStatsService

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown events."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    if settings.is_sqlite:
        settings.database_path.parent.mkdir(parents=True, exist_ok=True)

    # Tables are managed by alembic; see manage.py init-db for local setups
    yield

    logger.info("Shutting down application")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.city_stats = CityStatsService(
        TTLCache(ttl_seconds=settings.stats_cache_ttl_seconds, max_entries=64),
        default_radius_km=settings.cluster_radius_km,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    from catalog.routers import stats

    app.include_router(stats.router, prefix=settings.api_prefix)

    return app


# Create app instance for uvicorn
app = create_app()
