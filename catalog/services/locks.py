"""Named, hash-keyed locks shared by every worker process.

Ingestion serializes writers of the same canonical event on a 64-bit key
derived from the event fingerprint. Workers can live in different processes
or hosts, so the lock has to live in the database:

- ``AdvisoryLock`` uses PostgreSQL session-level advisory locks.
- ``TableLeaseLock`` inserts a row into ``ingestion_lock``; the primary key
  makes the insert an atomic test-and-set. Rows carry an expiry so a crashed
  worker cannot block a key forever. This is the backend for SQLite.

Both wait at most ``timeout`` seconds and raise ``LockTimeoutError``
otherwise. ``hold()`` releases on every exit path.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import timedelta

from loguru import logger
from sqlalchemy import delete, insert, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from catalog.config import Settings, get_settings
from catalog.database import SQLITE_BUSY_TIMEOUT_MS
from catalog.errors import LockTimeoutError
from catalog.models import IngestionLock, utc_now


def lock_key(fingerprint: str) -> int:
    """Signed 64-bit key from the first 8 bytes of a hex digest."""
    return int.from_bytes(bytes.fromhex(fingerprint[:16]), "big", signed=True)


@asynccontextmanager
async def _busy_timeout(conn: AsyncConnection, seconds: float) -> AsyncIterator[None]:
    """Cap how long SQLite waits for its write lock on ``conn``."""
    if conn.dialect.name != "sqlite":
        yield
        return
    await conn.exec_driver_sql(f"PRAGMA busy_timeout={int(seconds * 1000)}")
    await conn.commit()
    try:
        yield
    finally:
        await conn.exec_driver_sql(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        await conn.commit()


class NamedLock:
    """Base class: polling acquisition with a bounded wait.

    Subclasses provide ``hold(key, timeout=None)``, an async context manager.
    """

    def __init__(self, engine: AsyncEngine, timeout: float = 30.0, poll_interval: float = 0.05):
        self.engine = engine
        self.timeout = timeout
        self.poll_interval = poll_interval

    async def _poll(self, key: int, attempt: Callable[[float], Awaitable[bool]], timeout: float | None) -> None:
        """Call ``attempt(remaining_seconds)`` until it succeeds or the deadline passes."""
        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await attempt(max(deadline - loop.time(), 0.0)):
                return
            if loop.time() >= deadline:
                raise LockTimeoutError(key, timeout)
            await asyncio.sleep(self.poll_interval)


class AdvisoryLock(NamedLock):
    """PostgreSQL ``pg_try_advisory_lock`` on a dedicated connection."""

    @asynccontextmanager
    async def hold(self, key: int, timeout: float | None = None) -> AsyncIterator[None]:
        async with self.engine.connect() as conn:

            async def attempt(remaining: float) -> bool:
                acquired = await conn.scalar(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})
                await conn.commit()
                return bool(acquired)

            await self._poll(key, attempt, timeout)
            try:
                yield
            finally:
                # Closing the connection would also drop the lock, but pooled
                # connections are reused, so unlock explicitly
                await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
                await conn.commit()


class TableLeaseLock(NamedLock):
    """Lock rows in ``ingestion_lock`` with an expiry."""

    def __init__(
        self,
        engine: AsyncEngine,
        timeout: float = 30.0,
        poll_interval: float = 0.05,
        lease_seconds: float = 300.0,
    ):
        super().__init__(engine, timeout=timeout, poll_interval=poll_interval)
        self.lease_seconds = lease_seconds

    @asynccontextmanager
    async def hold(self, key: int, timeout: float | None = None) -> AsyncIterator[None]:
        owner = uuid.uuid4().hex

        async def attempt(remaining: float) -> bool:
            now = utc_now()
            try:
                async with self.engine.connect() as conn, _busy_timeout(conn, remaining), conn.begin():
                    # Reclaim leases abandoned by crashed workers
                    await conn.execute(
                        delete(IngestionLock).where(
                            IngestionLock.key == key, IngestionLock.expires_at < now
                        )
                    )
                    await conn.execute(
                        insert(IngestionLock).values(
                            key=key,
                            owner=owner,
                            acquired_at=now,
                            expires_at=now + timedelta(seconds=self.lease_seconds),
                        )
                    )
            except IntegrityError:
                return False
            except OperationalError as exc:
                # Another transaction held the SQLite write lock past our deadline
                if "locked" not in str(exc.orig).lower():
                    raise
                return False
            return True

        await self._poll(key, attempt, timeout)
        try:
            yield
        finally:
            async with self.engine.begin() as conn:
                await conn.execute(
                    delete(IngestionLock).where(IngestionLock.key == key, IngestionLock.owner == owner)
                )


def create_lock(engine: AsyncEngine, settings: Settings | None = None) -> NamedLock:
    """Pick the lock backend for ``engine`` according to ``settings.lock_backend``."""
    settings = settings or get_settings()
    backend = settings.lock_backend
    if backend == "auto":
        backend = "advisory" if engine.dialect.name == "postgresql" else "table"

    if backend == "advisory":
        lock_cls, extra = AdvisoryLock, {}
    else:
        lock_cls, extra = TableLeaseLock, {"lease_seconds": settings.lock_lease_seconds}

    logger.debug(f"Using {lock_cls.__name__} for ingestion locks")
    return lock_cls(
        engine,
        timeout=settings.lock_timeout_seconds,
        poll_interval=settings.lock_poll_interval_seconds,
        **extra,
    )
