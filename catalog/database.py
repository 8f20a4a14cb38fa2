"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.config import get_settings


def _normalize_database_url(db_url: str) -> str:
    """Normalize database URL to ensure async driver is used."""
    # Ensure aiosqlite driver is used for SQLite
    if db_url.startswith("sqlite:///"):
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    # Same for PostgreSQL with asyncpg
    elif db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    prefix = "sqlite+aiosqlite:///"
    path = db_url[len(prefix):] if db_url.startswith(prefix) else ""
    if path and path != ":memory:" and not Path(path).is_absolute():
        resolved = (Path.cwd() / path).resolve()
        resolved.parent.mkdir(parents=True, exist_ok=True)
        db_url = prefix + str(resolved)

    return db_url


# Writers queue for up to a minute before "database is locked"
SQLITE_BUSY_TIMEOUT_MS = 60000

# Execution option read by the "begin" hook; see writer_engine()
SQLITE_BEGIN_OPTION = "sqlite_begin"

SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    f"busy_timeout={SQLITE_BUSY_TIMEOUT_MS}",
    "synchronous=NORMAL",
    "foreign_keys=ON",
)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    # Autocommit at the driver level; SQLAlchemy emits BEGIN via _begin_transaction
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma}")
    cursor.close()


def _begin_transaction(conn):
    """Open the SQLite transaction, taking the write lock up front for writers.

    A deferred transaction that reads and then writes fails with
    "database is locked" if another writer committed in between; IMMEDIATE
    makes concurrent writers queue on busy_timeout instead. Readers stay
    deferred so an open read never blocks a writer. Emitting BEGIN here also
    makes SAVEPOINT work under aiosqlite.
    """
    mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION, "deferred")
    conn.exec_driver_sql("BEGIN IMMEDIATE" if mode == "immediate" else "BEGIN")


def writer_engine(engine: AsyncEngine) -> AsyncEngine:
    """``engine`` with SQLite transactions opened as ``BEGIN IMMEDIATE``.

    For sessions that read before they write. Other dialects ignore the option.
    """
    return engine.execution_options(**{SQLITE_BEGIN_OPTION: "immediate"})


def configure_sqlite_engine(engine: AsyncEngine) -> AsyncEngine:
    """Install the SQLite connection and transaction hooks on ``engine``."""
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
    event.listen(engine.sync_engine, "begin", _begin_transaction)
    return engine


@lru_cache
def get_engine() -> AsyncEngine:
    """Get cached async engine instance."""
    settings = get_settings()
    db_url = _normalize_database_url(settings.database_url)

    # For SQLite, configure for better concurrency
    if "sqlite" in db_url:
        engine = create_async_engine(
            db_url,
            echo=settings.debug,
            future=True,
            connect_args={
                "check_same_thread": False,
                "timeout": 60,
            },
        )
        return configure_sqlite_engine(engine)

    return create_async_engine(
        db_url,
        echo=settings.debug,
        future=True,
        pool_pre_ping=True,
    )


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    # Register every table on the metadata
    import catalog.models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def get_session_factory(
    engine: AsyncEngine | None = None,
    writer: bool = False,
) -> async_sessionmaker[AsyncSession]:
    """Session factory for services and workers running outside FastAPI.

    ``writer=True`` for sessions that read, then write (see ``writer_engine``).
    """
    engine = engine or get_engine()
    if writer:
        engine = writer_engine(engine)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides an async database session."""
    async with get_session_factory()() as session:
        yield session
