"""Find-or-create with a single retry on unique-constraint races."""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from catalog.errors import ConstraintRaceError, PersistenceError
from catalog.telemetry import TelemetryEvent, emit

T = TypeVar("T")


async def find_or_create(
    session: AsyncSession,
    entity: str,
    find: Callable[[], Awaitable[T | None]],
    create: Callable[[], Awaitable[T]],
) -> tuple[T, bool]:
    """Return ``(row, created)``.

    ``create`` runs inside a SAVEPOINT and must flush. When a concurrent
    writer inserted the same row first, the savepoint is rolled back and
    ``find`` runs again. A second collision raises ``PersistenceError``.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(ConstraintRaceError),
            reraise=True,
        ):
            with attempt:
                found = await find()
                if found is not None:
                    return found, False
                try:
                    async with session.begin_nested():
                        row = await create()
                except IntegrityError as exc:
                    emit(
                        TelemetryEvent.constraint_race,
                        f"Unique constraint race creating {entity}, re-reading",
                        entity=entity,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    raise ConstraintRaceError(entity, str(exc.orig)) from exc
                return row, True
    except ConstraintRaceError as exc:
        raise PersistenceError(entity, exc.message) from exc
