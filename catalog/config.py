"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=("../.env", ".env"),  # Check parent dir first, then current
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Event Catalog API"
    app_version: str = "1.0.0"
    debug: bool = False

    # API
    api_prefix: str = "/api"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Database
    database_url: str = "sqlite+aiosqlite:///./instance/catalog.db"

    # Redis (for ARQ task queue)
    redis_url: str = "redis://localhost:6379"

    # Fingerprint lock
    lock_backend: Literal["auto", "advisory", "table"] = "auto"
    lock_timeout_seconds: float = 30.0
    lock_poll_interval_seconds: float = 0.05
    lock_lease_seconds: float = 300.0

    # Clustering / dashboard stats
    cluster_radius_km: float = 20.0
    stats_cache_ttl_seconds: float = 600.0

    # Reference data (countries)
    reference_cache_ttl_seconds: float = 3600.0
    reference_cache_max_entries: int = 1024

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/catalog.log"
    log_error_file: str = "logs/errors.log"
    log_rotation: str = "10 MB"
    log_retention_days: int = 30

    # Worker
    worker_max_jobs: int = 10
    worker_job_timeout: int = 300
    worker_max_tries: int = 5
    lock_retry_defer_seconds: int = 15

    @property
    def database_path(self) -> Path:
        """Extract the database file path from the URL."""
        # Handle sqlite+aiosqlite:///./instance/catalog.db format
        path_str = self.database_url.replace("sqlite+aiosqlite:///", "")
        return Path(path_str)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
