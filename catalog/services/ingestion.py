"""Ingestion coordinator: collapse repeated scrapes into canonical events.

``process_event`` is the only write path for events:

1. validate the payload and compute the fingerprint
2. take the named lock for the fingerprint (bounded wait)
3. in one transaction, find the canonical event by fingerprint, falling back
   to this source's binding for the same external id
4. merge the occurrence and binding into it, or resolve the venue and create
   event, occurrence and binding together
5. commit, then release the lock

Calls sharing a fingerprint are serialized by the lock; different
fingerprints never wait on each other.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from catalog.cache import TTLCache
from catalog.config import Settings, get_settings
from catalog.database import get_session_factory
from catalog.errors import (
    CatalogError,
    ConstraintRaceError,
    LockTimeoutError,
    MissingRequiredFieldError,
    PersistenceError,
    classify_error,
)
from catalog.models import (
    CanonicalEvent,
    Event,
    EventKind,
    EventOccurrence,
    EventOccurrenceRead,
    EventSource,
    EventSourceRead,
    IngestOutcome,
    Source,
    utc_now,
)
from catalog.services.countries import CountryResolver
from catalog.services.external_ids import external_id_problem
from catalog.services.fingerprint import Fingerprint, compute_fingerprint, resolve_kind
from catalog.services.locations import LocationResolver
from catalog.services.locks import NamedLock, create_lock
from catalog.services.text import parse_datetime
from catalog.telemetry import TelemetryEvent, emit


def occurrence_key(starts_at: datetime, timed: bool) -> str:
    """Identity of an occurrence within its event: the date, plus HH:MM when timed."""
    return starts_at.strftime("%Y-%m-%dT%H:%M" if timed else "%Y-%m-%d")


@dataclass
class ParsedEvent:
    """Validated ``event_data``."""

    external_id: str
    title: str
    starts_at: datetime
    timed: bool
    ends_at: datetime | None
    venue_data: dict
    kind: EventKind
    source_url: str | None = None
    image_url: str | None = None
    metadata: dict | None = None

    @property
    def occurrence_key(self) -> str:
        return occurrence_key(self.starts_at, self.timed)

    @classmethod
    def from_event_data(cls, event_data: dict) -> "ParsedEvent":
        if not isinstance(event_data, dict):
            raise MissingRequiredFieldError("event_data")

        external_id = event_data.get("external_id")
        if external_id is None or not str(external_id).strip():
            raise MissingRequiredFieldError("external_id")

        title = " ".join(str(event_data.get("title") or "").split())
        if not title:
            raise MissingRequiredFieldError("title", external_id=external_id)

        venue_data = event_data.get("venue_data")
        if not isinstance(venue_data, dict) or not str(venue_data.get("name") or "").strip():
            raise MissingRequiredFieldError("venue_data.name", external_id=external_id)

        raw_start = event_data.get("start_at", event_data.get("starts_at"))
        try:
            starts_at, timed = parse_datetime(raw_start)
            ends_at, _ = parse_datetime(event_data.get("end_at", event_data.get("ends_at")))
        except ValueError as exc:
            raise MissingRequiredFieldError("start_at", external_id=external_id, detail=str(exc)) from exc
        if starts_at is None:
            raise MissingRequiredFieldError("start_at", external_id=external_id)

        metadata = dict(event_data.get("metadata") or {})
        if event_data.get("recurrence_rule"):
            metadata["recurrence_rule"] = event_data["recurrence_rule"]

        return cls(
            external_id=str(external_id).strip(),
            title=title,
            starts_at=starts_at,
            timed=timed,
            ends_at=ends_at,
            venue_data=venue_data,
            kind=resolve_kind(event_data),
            source_url=event_data.get("source_url"),
            image_url=event_data.get("image_url"),
            metadata=metadata or None,
        )


class IngestionCoordinator:
    """Deduplicating upsert of scraped events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: NamedLock,
        locations: LocationResolver,
        lock_timeout: float | None = None,
        read_session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        # Upserts read, then write: on SQLite this factory must open writer
        # transactions (see catalog.database.writer_engine)
        self.session_factory = session_factory
        self.read_session_factory = read_session_factory or session_factory
        self.lock = lock
        self.locations = locations
        self.lock_timeout = lock_timeout

    @classmethod
    def from_engine(cls, engine: AsyncEngine, settings: Settings | None = None) -> "IngestionCoordinator":
        """Wire up lock, caches and resolvers from settings."""
        settings = settings or get_settings()
        countries = CountryResolver(
            TTLCache(
                ttl_seconds=settings.reference_cache_ttl_seconds,
                max_entries=settings.reference_cache_max_entries,
            )
        )
        return cls(
            session_factory=get_session_factory(engine, writer=True),
            read_session_factory=get_session_factory(engine),
            lock=create_lock(engine, settings),
            locations=LocationResolver(countries),
            lock_timeout=settings.lock_timeout_seconds,
        )

    async def process_event(
        self,
        event_data: dict,
        source_id: int,
        source_priority: int | None = None,
    ) -> CanonicalEvent:
        """Create or merge the canonical event for one scraped listing.

        Raises a ``CatalogError`` subclass on failure; ``exc.retryable`` tells
        the job runner whether trying again later can help.
        """
        try:
            parsed = ParsedEvent.from_event_data(event_data)
            city = await self._canonical_city(parsed.venue_data)
            fingerprint = compute_fingerprint(
                parsed.title, parsed.venue_data, parsed.kind, parsed.starts_at, city=city
            )
            self._check_external_id(parsed, source_id)
            async with self.lock.hold(fingerprint.lock_key, timeout=self.lock_timeout):
                return await self._upsert_with_retry(parsed, fingerprint, source_id, source_priority)
        except LockTimeoutError as exc:
            emit(
                TelemetryEvent.lock_timeout,
                f"Lock timeout for source {source_id} external_id {_get(event_data, 'external_id')!r}",
                source_id=source_id,
                external_id=_get(event_data, "external_id"),
                lock_key=exc.key,
                timeout=exc.timeout,
            )
            self._report_failure(exc, event_data, source_id)
            raise
        except Exception as exc:
            # Anything outside the taxonomy is logged verbatim as unknown_error
            self._report_failure(exc, event_data, source_id)
            raise

    async def _canonical_city(self, venue_data: dict) -> str | None:
        """Stored spelling of the payload's city, so alternate names fingerprint alike."""
        async with self.read_session_factory() as session:
            return await self.locations.canonical_city_name(session, venue_data)

    async def _upsert_with_retry(
        self,
        parsed: ParsedEvent,
        fingerprint: Fingerprint,
        source_id: int,
        source_priority: int | None,
    ) -> CanonicalEvent:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception_type(ConstraintRaceError),
                reraise=True,
            ):
                with attempt:
                    try:
                        return await self._upsert(parsed, fingerprint, source_id, source_priority)
                    except IntegrityError as exc:
                        emit(
                            TelemetryEvent.constraint_race,
                            f"Constraint race on event upsert, re-reading (attempt {attempt.retry_state.attempt_number})",
                            entity="event",
                            fingerprint=fingerprint.digest,
                            external_id=parsed.external_id,
                        )
                        raise ConstraintRaceError("event", str(exc.orig)) from exc
        except ConstraintRaceError as exc:
            raise PersistenceError("event", exc.message) from exc

    async def _upsert(
        self,
        parsed: ParsedEvent,
        fingerprint: Fingerprint,
        source_id: int,
        source_priority: int | None,
    ) -> CanonicalEvent:
        async with self.session_factory() as session:
            async with session.begin():
                source = await session.get(Source, source_id)
                if source is None:
                    raise MissingRequiredFieldError("source_id", source_id=source_id)
                priority = source.priority if source_priority is None else source_priority

                event = await self._find_event(session, fingerprint, source_id, parsed.external_id)
                if event is None:
                    event = await self._create(session, parsed, fingerprint, source, priority)
                    outcome = IngestOutcome.created
                else:
                    emit(
                        TelemetryEvent.duplicate_detected,
                        f"Duplicate of event {event.id}: {parsed.title!r} from source {source.slug}",
                        event_id=event.id,
                        fingerprint=fingerprint.digest,
                        source_id=source_id,
                        external_id=parsed.external_id,
                    )
                    outcome = await self._merge(session, event, parsed, source, priority)

                return await self._canonical(session, event, outcome)

    async def _find_event(
        self,
        session: AsyncSession,
        fingerprint: Fingerprint,
        source_id: int,
        external_id: str,
    ) -> Event | None:
        result = await session.exec(select(Event).where(Event.fingerprint == fingerprint.digest))
        event = result.first()
        if event is not None:
            return event

        # Same source, same id, different fingerprint: the title or venue was
        # edited upstream since the last scrape
        result = await session.exec(
            select(Event)
            .join(EventSource, EventSource.event_id == Event.id)
            .where(EventSource.source_id == source_id, EventSource.external_id == external_id)
        )
        return result.first()

    async def _create(
        self,
        session: AsyncSession,
        parsed: ParsedEvent,
        fingerprint: Fingerprint,
        source: Source,
        priority: int,
    ) -> Event:
        venue = await self.locations.resolve(session, parsed.venue_data, source=source.slug)
        now = utc_now()
        event = Event(
            title=parsed.title,
            kind=parsed.kind,
            venue_id=venue.id,
            fingerprint=fingerprint.digest,
            starts_at=parsed.starts_at,
            ends_at=parsed.ends_at or parsed.starts_at,
            image_url=parsed.image_url,
            source_priority=priority,
            extra_metadata=parsed.metadata,
            created_at=now,
            updated_at=now,
            last_seen_at=now,
        )
        session.add(event)
        await session.flush()

        session.add(
            EventOccurrence(
                event_id=event.id,
                occurrence_key=parsed.occurrence_key,
                starts_at=parsed.starts_at,
                ends_at=parsed.ends_at,
                timed=parsed.timed,
                external_id=parsed.external_id,
            )
        )
        session.add(
            EventSource(
                event_id=event.id,
                source_id=source.id,
                external_id=parsed.external_id,
                source_url=parsed.source_url,
                priority=priority,
            )
        )
        await session.flush()

        emit(
            TelemetryEvent.event_created,
            f"Created event {event.id}: {event.title!r} at venue {venue.id}",
            event_id=event.id,
            venue_id=venue.id,
            fingerprint=fingerprint.digest,
            source_id=source.id,
            external_id=parsed.external_id,
            kind=parsed.kind.value,
        )
        return event

    async def _merge(
        self,
        session: AsyncSession,
        event: Event,
        parsed: ParsedEvent,
        source: Source,
        priority: int,
    ) -> IngestOutcome:
        now = utc_now()
        outcome = IngestOutcome.unchanged

        result = await session.exec(
            select(EventOccurrence).where(
                EventOccurrence.event_id == event.id,
                EventOccurrence.occurrence_key == parsed.occurrence_key,
            )
        )
        occurrence = result.first()
        if occurrence is None:
            session.add(
                EventOccurrence(
                    event_id=event.id,
                    occurrence_key=parsed.occurrence_key,
                    starts_at=parsed.starts_at,
                    ends_at=parsed.ends_at,
                    timed=parsed.timed,
                    external_id=parsed.external_id,
                )
            )
            outcome = IngestOutcome.merged
            emit(
                TelemetryEvent.occurrence_added,
                f"Added occurrence {parsed.occurrence_key} to event {event.id}",
                event_id=event.id,
                occurrence_key=parsed.occurrence_key,
                source_id=source.id,
            )
        else:
            changed = False
            if parsed.ends_at is not None and occurrence.ends_at != parsed.ends_at:
                occurrence.ends_at = parsed.ends_at
                changed = True
            if occurrence.external_id is None:
                occurrence.external_id = parsed.external_id
                changed = True
            if changed:
                occurrence.updated_at = now
                session.add(occurrence)
                outcome = IngestOutcome.merged
                emit(
                    TelemetryEvent.occurrence_updated,
                    f"Updated occurrence {parsed.occurrence_key} of event {event.id}",
                    event_id=event.id,
                    occurrence_key=parsed.occurrence_key,
                )

        await self._upsert_binding(session, event, parsed, source, priority, now)

        if event.starts_at is None or parsed.starts_at < event.starts_at:
            event.starts_at = parsed.starts_at
            outcome = IngestOutcome.merged
        latest = parsed.ends_at or parsed.starts_at
        if event.ends_at is None or latest > event.ends_at:
            event.ends_at = latest
            outcome = IngestOutcome.merged

        if priority >= event.source_priority:
            if event.title != parsed.title:
                event.title = parsed.title
                outcome = IngestOutcome.merged
            if parsed.image_url and event.image_url != parsed.image_url:
                event.image_url = parsed.image_url
                outcome = IngestOutcome.merged
            if parsed.metadata:
                metadata = {**(event.extra_metadata or {}), **parsed.metadata}
                if metadata != event.extra_metadata:
                    event.extra_metadata = metadata
                    outcome = IngestOutcome.merged
            event.source_priority = priority

        event.last_seen_at = now
        if outcome is IngestOutcome.merged:
            event.updated_at = now
        session.add(event)
        await session.flush()
        return outcome

    async def _upsert_binding(
        self,
        session: AsyncSession,
        event: Event,
        parsed: ParsedEvent,
        source: Source,
        priority: int,
        now: datetime,
    ) -> None:
        result = await session.exec(
            select(EventSource).where(
                EventSource.source_id == source.id,
                EventSource.external_id == parsed.external_id,
            )
        )
        binding = result.first()
        if binding is None:
            session.add(
                EventSource(
                    event_id=event.id,
                    source_id=source.id,
                    external_id=parsed.external_id,
                    source_url=parsed.source_url,
                    priority=priority,
                    first_seen_at=now,
                    last_seen_at=now,
                )
            )
            return

        if binding.event_id != event.id:
            logger.warning(
                f"Binding {source.slug}:{parsed.external_id} points at event {binding.event_id}, "
                f"fingerprint matched event {event.id}; leaving binding in place"
            )
        if parsed.source_url:
            binding.source_url = parsed.source_url
        binding.priority = priority
        binding.last_seen_at = now
        session.add(binding)

    async def _canonical(self, session: AsyncSession, event: Event, outcome: IngestOutcome) -> CanonicalEvent:
        await session.flush()
        occurrences = (
            await session.exec(
                select(EventOccurrence)
                .where(EventOccurrence.event_id == event.id)
                .order_by(EventOccurrence.starts_at, EventOccurrence.occurrence_key)
            )
        ).all()
        sources = (
            await session.exec(
                select(EventSource).where(EventSource.event_id == event.id).order_by(EventSource.id)
            )
        ).all()
        return CanonicalEvent(
            id=event.id,
            venue_id=event.venue_id,
            title=event.title,
            kind=event.kind,
            fingerprint=event.fingerprint,
            outcome=outcome,
            occurrences=[EventOccurrenceRead.model_validate(o) for o in occurrences],
            sources=[EventSourceRead.model_validate(s) for s in sources],
        )

    def _check_external_id(self, parsed: ParsedEvent, source_id: int) -> None:
        if parsed.kind is EventKind.single:
            return
        problem = external_id_problem(parsed.kind, parsed.external_id)
        if problem:
            emit(
                TelemetryEvent.external_id_convention_violation,
                problem,
                source_id=source_id,
                external_id=parsed.external_id,
                kind=parsed.kind.value,
            )

    def _report_failure(self, exc: Exception, event_data: Any, source_id: int) -> None:
        kind = classify_error(exc)
        context = exc.context if isinstance(exc, CatalogError) else {"error": repr(exc)}
        emit(
            TelemetryEvent.ingestion_failed,
            f"Ingestion failed ({kind.value}): {exc}",
            kind=kind.value,
            retryable=kind.retryable,
            source_id=source_id,
            external_id=_get(event_data, "external_id"),
            title=_get(event_data, "title"),
            **{k: v for k, v in context.items() if k not in ("source_id", "external_id", "title")},
        )


def _get(event_data: Any, key: str) -> Any:
    return event_data.get(key) if isinstance(event_data, dict) else None
