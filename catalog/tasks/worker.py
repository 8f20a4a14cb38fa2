"""ARQ worker configuration."""

from urllib.parse import urlparse

from arq.connections import RedisSettings
from loguru import logger

from catalog.config import get_settings
from catalog.database import get_engine
from catalog.logging_setup import setup_logging
from catalog.services.ingestion import IngestionCoordinator
from catalog.tasks.ingestion import TASK_FUNCTIONS

settings = get_settings()


def get_redis_settings() -> RedisSettings:
    """Get Redis settings from app config."""
    # redis://[:password@]host:port[/db]
    url = urlparse(settings.redis_url)
    return RedisSettings(
        host=url.hostname or "localhost",
        port=url.port or 6379,
        password=url.password,
        database=int(url.path.lstrip("/") or 0),
    )


async def startup(ctx: dict) -> None:
    """Worker startup handler."""
    setup_logging(settings)
    logger.info("ARQ Worker starting up...")
    ctx["coordinator"] = IngestionCoordinator.from_engine(get_engine(), settings)


async def shutdown(ctx: dict) -> None:
    """Worker shutdown handler."""
    logger.info("ARQ Worker shutting down...")
    await get_engine().dispose()


class WorkerSettings:
    """ARQ Worker settings."""

    redis_settings = get_redis_settings()

    functions = TASK_FUNCTIONS

    on_startup = startup
    on_shutdown = shutdown

    max_jobs = settings.worker_max_jobs
    job_timeout = settings.worker_job_timeout
    max_tries = settings.worker_max_tries
    keep_result = 3600  # Keep results for 1 hour
