"""Tests for the named fingerprint lock."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import insert, select

from catalog.config import Settings
from catalog.database import writer_engine
from catalog.errors import LockTimeoutError
from catalog.models import IngestionLock, utc_now
from catalog.services.locks import AdvisoryLock, TableLeaseLock, create_lock


async def held_keys(engine) -> list[int]:
    async with engine.connect() as conn:
        return list((await conn.execute(select(IngestionLock.key))).scalars())


async def test_hold_and_release(async_engine):
    lock = TableLeaseLock(async_engine, timeout=1.0, poll_interval=0.01)
    async with lock.hold(42):
        assert await held_keys(async_engine) == [42]
    assert await held_keys(async_engine) == []


async def test_released_on_error(async_engine):
    lock = TableLeaseLock(async_engine, timeout=1.0, poll_interval=0.01)
    with pytest.raises(RuntimeError):
        async with lock.hold(42):
            raise RuntimeError("boom")
    assert await held_keys(async_engine) == []


async def test_timeout_when_held(async_engine):
    lock = TableLeaseLock(async_engine, timeout=0.1, poll_interval=0.01)
    async with lock.hold(7):
        with pytest.raises(LockTimeoutError) as exc_info:
            async with lock.hold(7):
                pass
    assert exc_info.value.key == 7
    assert exc_info.value.retryable


async def test_wait_is_bounded_while_another_writer_holds_the_database(async_engine):
    lock = TableLeaseLock(async_engine, timeout=0.3, poll_interval=0.01)
    loop = asyncio.get_running_loop()

    async with writer_engine(async_engine).begin() as other_writer:
        await other_writer.execute(select(IngestionLock.key))
        started = loop.time()
        with pytest.raises(LockTimeoutError):
            async with lock.hold(11):
                pass
        # busy_timeout alone would wait a full minute
        assert loop.time() - started < 5

    async with lock.hold(11):
        assert await held_keys(async_engine) == [11]


async def test_distinct_keys_do_not_block(async_engine):
    lock = TableLeaseLock(async_engine, timeout=0.1, poll_interval=0.01)
    async with lock.hold(1):
        async with lock.hold(2):
            assert sorted(await held_keys(async_engine)) == [1, 2]


async def test_serializes_holders(async_engine):
    lock = TableLeaseLock(async_engine, timeout=5.0, poll_interval=0.01)
    inside = 0
    peak = 0

    async def worker():
        nonlocal inside, peak
        async with lock.hold(99):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(worker() for _ in range(5)))
    assert peak == 1


async def test_expired_lease_is_reclaimed(async_engine):
    now = utc_now()
    async with async_engine.begin() as conn:
        await conn.execute(
            insert(IngestionLock).values(
                key=5, owner="crashed", acquired_at=now - timedelta(hours=1), expires_at=now - timedelta(minutes=1)
            )
        )

    lock = TableLeaseLock(async_engine, timeout=0.5, poll_interval=0.01)
    async with lock.hold(5):
        pass
    assert await held_keys(async_engine) == []


async def test_create_lock_picks_backend(async_engine):
    assert isinstance(create_lock(async_engine, Settings(lock_backend="auto")), TableLeaseLock)
    assert isinstance(create_lock(async_engine, Settings(lock_backend="advisory")), AdvisoryLock)

    lock = create_lock(async_engine, Settings(lock_backend="table", lock_timeout_seconds=3, lock_lease_seconds=60))
    assert lock.timeout == 3
    assert lock.lease_seconds == 60
