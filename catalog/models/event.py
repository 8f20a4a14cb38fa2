"""Canonical event model with its occurrences and source bindings."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from catalog.models.common import utc_now


class EventKind(str, Enum):
    """How an event repeats, which decides how its fingerprint is built.

    - single: one-off event; fingerprint includes its calendar day
    - multi_date: festival/run over several listed dates
    - showtime: cinema screenings, one occurrence per show
    - recurring: weekly pattern (quiz nights, residencies)
    """

    single = "single"
    multi_date = "multi_date"
    showtime = "showtime"
    recurring = "recurring"

    @classmethod
    def from_signal(cls, value) -> "EventKind":
        """Map a scraper's free-text type hint onto a kind. Unknown hints are ``single``."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.single
        text = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(text)
        except ValueError:
            pass
        for kind, hints in _KIND_HINTS.items():
            if text in hints:
                return kind
        return cls.single

    @property
    def is_time_bucketed(self) -> bool:
        return self is EventKind.single


_KIND_HINTS = {
    EventKind.recurring: {"weekly", "monthly", "pattern", "recurrence", "recurrent", "regular", "series"},
    EventKind.multi_date: {"multi", "multidate", "festival", "run", "exhibition", "multiple_dates"},
    EventKind.showtime: {"screening", "showing", "movie", "film", "cinema", "performance"},
    EventKind.single: {"one_off", "oneoff", "once", "event", "concert"},
}


class EventBase(SQLModel):
    """Base model for canonical events."""

    title: str = Field(max_length=512)
    kind: EventKind = Field(default=EventKind.single, index=True)
    venue_id: int | None = Field(default=None, foreign_key="venue.id", index=True)

    # Span of all known occurrences
    starts_at: datetime | None = Field(default=None, index=True)
    ends_at: datetime | None = Field(default=None)

    image_url: str | None = Field(default=None, max_length=2048)
    # Priority of the source that last set the display fields
    source_priority: int = Field(default=0)
    extra_metadata: dict | None = Field(default=None, sa_column=Column(JSON))


class Event(EventBase, table=True):
    """Canonical event. At most one row per fingerprint."""

    __tablename__ = "event"

    id: int | None = Field(default=None, primary_key=True)
    fingerprint: str = Field(max_length=64, unique=True, index=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_seen_at: datetime = Field(default_factory=utc_now)


class EventOccurrenceBase(SQLModel):
    """Base model for occurrences."""

    starts_at: datetime
    ends_at: datetime | None = Field(default=None)
    # False when the source only gave a date
    timed: bool = Field(default=False)
    external_id: str | None = Field(default=None, max_length=512)


class EventOccurrence(EventOccurrenceBase, table=True):
    """One calendar instance of a canonical event."""

    __tablename__ = "event_occurrence"
    __table_args__ = (UniqueConstraint("event_id", "occurrence_key", name="uq_occurrence_event_key"),)

    id: int | None = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    # "YYYY-MM-DD" for untimed, "YYYY-MM-DDTHH:MM" for timed occurrences
    occurrence_key: str = Field(max_length=20)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class EventOccurrenceRead(EventOccurrenceBase):
    """Schema for reading an occurrence."""

    occurrence_key: str


class EventSourceBase(SQLModel):
    """Base model for source bindings."""

    source_id: int = Field(foreign_key="source.id", index=True)
    external_id: str = Field(max_length=512)
    source_url: str | None = Field(default=None, max_length=2048)
    priority: int = Field(default=0)


class EventSource(EventSourceBase, table=True):
    """Binding between a canonical event and one source's identifier for it."""

    __tablename__ = "event_source"
    __table_args__ = (UniqueConstraint("source_id", "external_id", name="uq_event_source_external_id"),)

    id: int | None = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    first_seen_at: datetime = Field(default_factory=utc_now)
    last_seen_at: datetime = Field(default_factory=utc_now)


class EventSourceRead(EventSourceBase):
    """Schema for reading a source binding."""

    last_seen_at: datetime


class IngestOutcome(str, Enum):
    created = "created"
    merged = "merged"
    unchanged = "unchanged"


class CanonicalEvent(SQLModel):
    """What ``process_event`` returns."""

    id: int
    venue_id: int | None
    title: str
    kind: EventKind
    fingerprint: str
    outcome: IngestOutcome
    occurrences: list[EventOccurrenceRead]
    sources: list[EventSourceRead]
